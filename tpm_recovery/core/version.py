# core/version.py - release version of tpm-recovery
"""
Reported by ``tpm-recovery --version`` and written to the log banner at the
start of every session.
"""

VERSION = "0.0.1"

# Highest config file schema this release understands (see core/config.py)
CONFIG_SCHEMA_VERSION = 1

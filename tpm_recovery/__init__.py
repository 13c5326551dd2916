# tpm-recovery: recovery-boot reconciliation of TPM ownership and NVRAM spaces
from tpm_recovery.core.version import VERSION

__version__ = VERSION

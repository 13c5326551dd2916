# core/paths.py - SINGLE SOURCE OF TRUTH for all filesystem paths
"""
All filesystem paths MUST be defined here as Path objects.
No other module may construct filesystem paths.

RULES:
- All paths are Path objects internally
- Convert to str() ONLY at I/O boundaries (subprocess, logging handlers, print)
"""

import os
from pathlib import Path
from typing import Optional


class Paths:
    """
    Centralized path definitions. All paths are Path objects.

    Usage:
        from tpm_recovery.core.paths import Paths
        log_file = Paths.default_log_file()
    """

    # Environment variable naming an explicit config file
    CONFIG_ENV_VAR = "TPM_RECOVERY_CONFIG"

    # System-wide config, optional
    SYSTEM_CONFIG_FILE = Path("/etc/tpm-recovery/config.json")

    # Recovery images mount the stateful partition here
    STATEFUL_DIR = Path("/mnt/stateful_partition")

    LOG_FILE_NAME = "tpm-recovery.log"

    @classmethod
    def default_log_file(cls) -> Path:
        """Return the log file on the stateful partition, falling back to /tmp."""
        if cls.STATEFUL_DIR.is_dir():
            return cls.STATEFUL_DIR / cls.LOG_FILE_NAME
        return Path("/tmp") / cls.LOG_FILE_NAME

    @classmethod
    def config_file(cls, explicit: Optional[Path] = None) -> Optional[Path]:
        """
        Resolve which config file to load.

        Order: explicit argument, $TPM_RECOVERY_CONFIG, the system file if it
        exists. Returns None when no config file applies (defaults only).
        """
        if explicit is not None:
            return Path(explicit)
        env_value = os.environ.get(cls.CONFIG_ENV_VAR)
        if env_value:
            return Path(env_value)
        if cls.SYSTEM_CONFIG_FILE.is_file():
            return cls.SYSTEM_CONFIG_FILE
        return None

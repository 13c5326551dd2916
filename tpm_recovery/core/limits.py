# core/limits.py - SINGLE SOURCE OF TRUTH for timeouts, delays and bounds
"""
All numeric limits, timeouts, and thresholds MUST be defined here.
No other module may define these values.
"""


class Limits:
    """Operational limits and thresholds."""

    # ==========================================================================
    # Daemon lifecycle (seconds)
    # ==========================================================================

    # tcsd needs time after spawn before it accepts connections
    DAEMON_SETTLE_DELAY = 2

    # Time between SIGTERM and SIGKILL when stopping tcsd
    DAEMON_STOP_GRACE = 1

    # Upper bound on reaping after SIGKILL
    DAEMON_REAP_TIMEOUT = 5

    # ==========================================================================
    # Subprocess timeouts (seconds)
    # ==========================================================================

    # tpmc commands (clear/enable/activate/definespace/read/write/flags)
    TPMC_TIMEOUT = 30

    # tpm_takeownership generates an SRK and can be slow on older parts
    TAKE_OWNERSHIP_TIMEOUT = 120

    # tpm_nvinfo / tpm_nvrelease
    NV_TOOL_TIMEOUT = 30

    # crossystem queries
    CROSSYSTEM_TIMEOUT = 10

    # pkill for stray daemons
    PROCESS_CHECK_TIMEOUT = 5

    # ==========================================================================
    # Logging
    # ==========================================================================

    # Maximum log file size before rotation (bytes)
    MAX_LOG_FILE_SIZE = 1 * 1024 * 1024  # 1 MB

    # Rotated log files kept next to the active one
    LOG_BACKUP_COUNT = 3

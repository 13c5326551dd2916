#!/usr/bin/env python3
"""
Preflight checks for a TPM recovery session.

Every check here is fatal: a failure raises RecoveryAbort and the session
never touches the TPM.

Checks:
1. Every configured tool is installed
2. The device booted the recovery firmware
3. The recovery reason is one that warrants TPM reconciliation
4. The developer switch did not change since boot
5. Physical presence can be asserted
"""

import logging
from pathlib import Path
from typing import Optional

from tpm_recovery.core.config import RecoveryConfig
from tpm_recovery.core.constants import BootReasons, FlagNames, ToolNames
from tpm_recovery.core.limits import Limits
from tpm_recovery.scripts.tpm_cli import (
    RecoveryAbort,
    TpmCommandInterface,
    TpmToolMissingError,
    resolve_tool,
    run_tool,
)

_preflight_logger = logging.getLogger("TpmRecovery.preflight")


def check_required_tools(config: RecoveryConfig) -> None:
    """Fail if any configured binary is missing."""
    missing = []
    for key in ToolNames.CONFIG_KEYS:
        try:
            resolve_tool(config.tool(key))
        except TpmToolMissingError:
            missing.append(config.tool(key))
    if missing:
        raise RecoveryAbort(f"Required tools not found: {', '.join(missing)}")


def read_crossystem(name: str, crossystem: str = ToolNames.CROSSYSTEM) -> Optional[str]:
    """Return the value of one crossystem property, or None if unreadable."""
    result = run_tool([resolve_tool(crossystem), name], Limits.CROSSYSTEM_TIMEOUT, _preflight_logger)
    if result is None or result.returncode != 0:
        return None
    return result.stdout.strip()


def parse_boot_reason(value: Optional[str]) -> Optional[int]:
    """crossystem prints recovery_reason in decimal; accept 0x.. too."""
    if value is None:
        return None
    try:
        return int(value, 0)
    except ValueError:
        return None


def check_recovery_boot(config: RecoveryConfig) -> int:
    """
    Confirm this is a recovery boot the tool should act on.

    Returns:
        The recovery reason code

    Raises:
        RecoveryAbort: On any mismatch
    """
    crossystem = config.tool("crossystem")

    mainfw_type = read_crossystem("mainfw_type", crossystem)
    if mainfw_type != BootReasons.MAINFW_RECOVERY:
        raise RecoveryAbort(f"Not a recovery boot (mainfw_type={mainfw_type!r})")

    reason = parse_boot_reason(read_crossystem("recovery_reason", crossystem))
    if reason is None or reason not in config.recognized_boot_reasons:
        raise RecoveryAbort(f"Unrecognized recovery reason {reason!r}")

    devsw_boot = read_crossystem("devsw_boot", crossystem)
    devsw_cur = read_crossystem("devsw_cur", crossystem)
    if devsw_boot is None or devsw_boot != devsw_cur:
        raise RecoveryAbort(f"Developer switch changed since boot ({devsw_boot!r} -> {devsw_cur!r})")

    _preflight_logger.info("Recovery boot confirmed (reason 0x%02x, devsw %s)", reason, devsw_boot)
    return reason


def configure_physical_presence(tpm: TpmCommandInterface) -> None:
    """
    Make sure physical presence is asserted for this boot.

    Command-based physical presence must be enabled in the persistent flags.
    If it is not and the lifetime lock is still open, the flags are
    finalized; if the lifetime lock is already set there is no way to enable
    it and the session aborts.
    """
    persistent = tpm.get_persistent_flags()
    if persistent is None:
        raise RecoveryAbort("Cannot read TPM persistent flags")

    if not persistent.get(FlagNames.PP_CMD_ENABLE, False):
        if persistent.get(FlagNames.PP_LIFETIME_LOCK, False):
            raise RecoveryAbort("Physical presence command is disabled and the lifetime lock is set")
        _preflight_logger.info("Finalizing physical presence flags")
        if not tpm.finalize_physical_presence_flags():
            raise RecoveryAbort("Could not finalize physical presence flags")

    if not tpm.set_physical_presence_on():
        raise RecoveryAbort("Could not assert physical presence")

    volatile = tpm.get_volatile_flags()
    if volatile is None or not volatile.get(FlagNames.PHYSICAL_PRESENCE, False):
        raise RecoveryAbort("Physical presence is not asserted after ppon")

    if volatile.get(FlagNames.GLOBAL_LOCK, False):
        _preflight_logger.warning("bGlobalLock is set; writes to the firmware space will fail until reboot")

    _preflight_logger.info("Physical presence asserted")


def run_preflight_checks(config: RecoveryConfig, skip_boot_checks: bool = False) -> None:
    """
    Run the checks that do not need the TPM.

    Physical presence is configured separately, from inside the session,
    after any stray tcsd is gone.
    """
    check_required_tools(config)
    if skip_boot_checks:
        _preflight_logger.warning("Skipping recovery boot checks")
        return
    check_recovery_boot(config)

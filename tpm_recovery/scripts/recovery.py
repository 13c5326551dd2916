#!/usr/bin/env python3
"""
TPM Recovery
============

Reconciles TPM ownership and the firmware/kernel NVRAM spaces during a
recovery boot, then leaves the TPM unowned.

Usage:
    tpm-recovery [--config FILE] [--log-file FILE] [--verbose] [--skip-preflight]

Exit status:
    0  session completed (individual spaces may still have failed)
    1  aborted: not a recoverable boot, tools missing, or physical presence unavailable
    2  invalid configuration
"""

import argparse
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Iterable, Optional, Type

from tpm_recovery.core.config import ConfigError, RecoveryConfig, load_config
from tpm_recovery.core.constants import MANAGED_SPACES, SpaceSchema
from tpm_recovery.core.limits import Limits
from tpm_recovery.core.paths import Paths
from tpm_recovery.core.session import OwnershipState, SessionContext
from tpm_recovery.core.version import VERSION
from tpm_recovery.scripts.daemon import DaemonLifecycle
from tpm_recovery.scripts.definer import SpaceDefiner
from tpm_recovery.scripts.fixer import SpaceFixer, SpaceOutcome
from tpm_recovery.scripts.ownership import OwnershipController
from tpm_recovery.scripts.preflight import configure_physical_presence, run_preflight_checks
from tpm_recovery.scripts.reclaimer import SpaceReclaimer
from tpm_recovery.scripts.report import render_summary
from tpm_recovery.scripts.tpm_cli import TpmCommandInterface, TpmError, format_index
from tpm_recovery.scripts.trousers_cli import TrousersTools

_recovery_logger = logging.getLogger("TpmRecovery.session")

EXIT_OK = 0
EXIT_ABORT = 1
EXIT_CONFIG = 2


# ============================================================
# LOGGING
# ============================================================


def setup_logging(log_file: Optional[Path], verbose: bool = False) -> logging.Logger:
    """
    Configure the TpmRecovery logger: rotating file plus stderr.

    Args:
        log_file: Log file path; None logs to stderr only
        verbose: Show DEBUG (command lines) on stderr as well

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger("TpmRecovery")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    stderr_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(stderr_handler)

    if log_file is not None:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                str(log_file),
                maxBytes=Limits.MAX_LOG_FILE_SIZE,
                backupCount=Limits.LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as e:
            logger.warning("Cannot open log file %s (%s), logging to stderr only", log_file, e)
        else:
            handler.setFormatter(
                logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
            )
            logger.addHandler(handler)

    return logger


# ============================================================
# SESSION
# ============================================================


class RecoverySession:
    """
    One recovery session: wires the components around a fresh SessionContext.

    The tpm and trousers collaborators default to the real tool wrappers
    built from config.
    """

    def __init__(
        self,
        config: RecoveryConfig,
        tpm: Optional[TpmCommandInterface] = None,
        trousers: Optional[TrousersTools] = None,
        daemon_cls: Type[DaemonLifecycle] = DaemonLifecycle,
    ):
        self.config = config
        self.context = SessionContext()
        self.tpm = tpm or TpmCommandInterface(config.tool("tpmc"), timeout=config.command_timeout_seconds)
        self.trousers = trousers or TrousersTools(
            take_ownership=config.tool("tpm_takeownership"),
            nvinfo=config.tool("tpm_nvinfo"),
            nvrelease=config.tool("tpm_nvrelease"),
        )
        self.daemon = daemon_cls(self.context, config)
        self.ownership = OwnershipController(self.context, self.daemon, self.tpm, self.trousers)
        self.reclaimer = SpaceReclaimer(self.daemon, self.ownership, self.trousers)
        self.definer = SpaceDefiner(self.daemon, self.ownership, self.reclaimer, self.tpm)
        self.fixer = SpaceFixer(self.daemon, self.reclaimer, self.definer, self.tpm)

    def run(self, schemas: Iterable[SpaceSchema] = MANAGED_SPACES) -> Dict[int, SpaceOutcome]:
        """
        Reconcile every schema, then return the TPM to the unowned state.

        Raises:
            RecoveryAbort: Physical presence could not be asserted (nothing
                was changed on the TPM)
            TpmToolMissingError: A tool disappeared mid-session (cleanup still runs)
        """
        _recovery_logger.info("TPM recovery %s starting", VERSION)
        self.daemon.stop_stray()
        configure_physical_presence(self.tpm)

        outcomes: Dict[int, SpaceOutcome] = {}
        try:
            for schema in schemas:
                outcomes[schema.index] = self.fixer.fix_space(schema)
        finally:
            self.cleanup()

        failed = [format_index(i) for i, outcome in outcomes.items() if outcome.is_failure]
        if failed:
            _recovery_logger.error("TPM recovery finished with failures: %s", ", ".join(failed))
        else:
            _recovery_logger.info("TPM recovery finished")
        return outcomes

    def cleanup(self) -> None:
        """Leave the TPM unowned and tcsd stopped, whatever happened before."""
        try:
            self.ownership.ensure_unowned()
        except TpmError as e:
            _recovery_logger.error("Could not return the TPM to the unowned state: %s", e)
        self.daemon.ensure_stopped()

        if self.context.ownership is not OwnershipState.UNOWNED:
            _recovery_logger.error("TPM ownership is %s at session end", self.context.ownership.value)


# ============================================================
# MAIN
# ============================================================


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tpm-recovery",
        description="Restore TPM NVRAM spaces during a recovery boot and leave the TPM unowned.",
    )
    parser.add_argument("--config", type=Path, help="JSON config file (default: $TPM_RECOVERY_CONFIG or system file)")
    parser.add_argument("--log-file", type=Path, help="Log file (default: on the stateful partition)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log tool command lines to stderr")
    parser.add_argument(
        "--skip-preflight",
        action="store_true",
        help="Skip recovery-boot checks (bench use only; tools and physical presence are still checked)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return EXIT_CONFIG

    log_file = args.log_file or config.log_file or Paths.default_log_file()
    setup_logging(log_file, verbose=args.verbose)

    try:
        run_preflight_checks(config, skip_boot_checks=args.skip_preflight)
        outcomes = RecoverySession(config).run()
    except TpmError as e:
        _recovery_logger.critical("TPM recovery aborted: %s", e)
        return EXIT_ABORT

    render_summary(outcomes)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

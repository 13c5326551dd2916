#!/usr/bin/env python3
"""
tcsd lifecycle

tcsd must be running for ownership provisioning and NVRAM listing/release,
and must be gone before tpmc talks to /dev/tpm0. The session owns at most one
tcsd process; this module is the only place that starts or stops it.
"""

import logging
import subprocess
import time

from tpm_recovery.core.config import RecoveryConfig
from tpm_recovery.core.constants import ToolNames
from tpm_recovery.core.limits import Limits
from tpm_recovery.core.session import SessionContext
from tpm_recovery.scripts.tpm_cli import TpmToolMissingError, resolve_tool, run_tool

_daemon_logger = logging.getLogger("TpmRecovery.daemon")


class DaemonLifecycle:
    """Start/stop the session's tcsd."""

    def __init__(self, session: SessionContext, config: RecoveryConfig):
        self.session = session
        self.config = config

    @property
    def is_running(self) -> bool:
        return self.session.daemon_running

    def ensure_running(self) -> None:
        """Start tcsd if needed and wait for it to settle."""
        if self.is_running:
            return

        tcsd = resolve_tool(self.config.tool("tcsd"))
        try:
            # -f keeps tcsd in the foreground so the handle is the daemon itself
            self.session.daemon = subprocess.Popen(
                [tcsd, "-f"],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise TpmToolMissingError(f"{tcsd} not found") from e

        _daemon_logger.info("Started tcsd (pid %d), waiting %ss", self.session.daemon.pid, self.config.daemon_settle_seconds)
        time.sleep(self.config.daemon_settle_seconds)

    def ensure_stopped(self) -> None:
        """SIGTERM, grace period, SIGKILL, reap. Never raises."""
        proc = self.session.daemon
        if proc is None:
            return

        if proc.poll() is not None:
            _daemon_logger.debug("tcsd (pid %d) already exited with %s", proc.pid, proc.returncode)
            self.session.daemon = None
            return

        try:
            proc.terminate()
            try:
                proc.wait(timeout=self.config.daemon_stop_grace_seconds)
            except subprocess.TimeoutExpired:
                _daemon_logger.warning("tcsd (pid %d) ignored SIGTERM, killing", proc.pid)
                proc.kill()
                proc.wait(timeout=Limits.DAEMON_REAP_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired) as e:
            _daemon_logger.error("Could not stop tcsd (pid %d): %s", proc.pid, e)
        else:
            _daemon_logger.info("Stopped tcsd (pid %d)", proc.pid)

        self.session.daemon = None

    def stop_stray(self) -> None:
        """
        Kill any tcsd not started by this session.

        The init system may have started one before recovery took over; the
        session cannot track that process, so it is removed up front.
        """
        try:
            result = run_tool(
                [resolve_tool(ToolNames.PKILL), "-x", ToolNames.TCSD],
                Limits.PROCESS_CHECK_TIMEOUT,
                _daemon_logger,
            )
        except TpmToolMissingError:
            _daemon_logger.warning("pkill not available, cannot check for a stray tcsd")
            return

        # pkill exits 1 when nothing matched
        if result is not None and result.returncode == 0:
            _daemon_logger.info("Stopped a tcsd left running from boot")
            time.sleep(self.config.daemon_stop_grace_seconds)

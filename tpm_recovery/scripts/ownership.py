#!/usr/bin/env python3
"""
TPM ownership controller

Drives OwnershipState between UNKNOWN, UNOWNED and OWNED_WELL_KNOWN.
Clearing the TPM is the only way back to UNOWNED and is treated as
authoritative: the state advances even if clear/enable/activate report
failure. Provisioning failures are tolerated the same way; whatever needed
ownership will report its own failure at the point of use.
"""

import logging
from typing import Optional

from tpm_recovery.core.session import OwnershipState, SessionContext
from tpm_recovery.scripts.daemon import DaemonLifecycle
from tpm_recovery.scripts.tpm_cli import TpmCommandInterface
from tpm_recovery.scripts.trousers_cli import TrousersTools

_ownership_logger = logging.getLogger("TpmRecovery.ownership")


class OwnershipController:
    """State machine over SessionContext.ownership."""

    def __init__(
        self,
        session: SessionContext,
        daemon: DaemonLifecycle,
        tpm: TpmCommandInterface,
        trousers: TrousersTools,
    ):
        self.session = session
        self.daemon = daemon
        self.tpm = tpm
        self.trousers = trousers

    @property
    def state(self) -> OwnershipState:
        return self.session.ownership

    def _transition(self, new_state: OwnershipState, previous: Optional[OwnershipState] = None) -> None:
        previous = previous or self.session.ownership
        if previous is not new_state:
            _ownership_logger.info("Ownership: %s -> %s", previous.value, new_state.value)
        self.session.ownership = new_state

    def clear_and_reenable(self) -> None:
        """Clear the TPM and bring it back enabled and active."""
        previous = self.session.ownership
        self.daemon.ensure_stopped()

        # Mid-clear the well-known owner no longer holds
        if self.session.ownership is OwnershipState.OWNED_WELL_KNOWN:
            self.session.ownership = OwnershipState.UNKNOWN

        for name, command in (
            ("clear", self.tpm.clear),
            ("enable", self.tpm.enable),
            ("activate", self.tpm.activate),
        ):
            if not command():
                _ownership_logger.error("tpmc %s failed", name)

        self._transition(OwnershipState.UNOWNED, previous)

    def ensure_owned(self) -> None:
        """Take ownership with the well-known secret unless already held."""
        if self.state is OwnershipState.OWNED_WELL_KNOWN:
            return

        self.clear_and_reenable()
        self.daemon.ensure_running()
        if not self.trousers.take_ownership():
            _ownership_logger.warning("Taking ownership failed, continuing as if owned")
        self._transition(OwnershipState.OWNED_WELL_KNOWN)

    def ensure_unowned(self) -> None:
        if self.state is OwnershipState.UNOWNED:
            return
        self.clear_and_reenable()

#!/usr/bin/env python3
"""
NVRAM space definer

Free NVRAM cannot be queried directly, so capacity is probed by defining a
disposable space of the requested size. If the probe fails, the reclaimer
releases one unexpected space and the probe is retried. The probe space is
deleted again (TPM 1.2 deletes a space when it is redefined with size 0)
before the real space is defined.

Definition happens while the TPM is unowned; reclamation happens while it is
owned. The ownership controller guards keep the two apart.
"""

import logging

from tpm_recovery.core.constants import Permissions, SpaceIndex
from tpm_recovery.scripts.daemon import DaemonLifecycle
from tpm_recovery.scripts.ownership import OwnershipController
from tpm_recovery.scripts.reclaimer import SpaceReclaimer
from tpm_recovery.scripts.tpm_cli import TpmCommandInterface, format_index

_define_logger = logging.getLogger("TpmRecovery.definer")


class SpaceDefiner:
    """Allocate NVRAM spaces, reclaiming room when the TPM is full."""

    def __init__(
        self,
        daemon: DaemonLifecycle,
        ownership: OwnershipController,
        reclaimer: SpaceReclaimer,
        tpm: TpmCommandInterface,
    ):
        self.daemon = daemon
        self.ownership = ownership
        self.reclaimer = reclaimer
        self.tpm = tpm

    def _prepare(self) -> None:
        self.ownership.ensure_unowned()
        self.daemon.ensure_stopped()

    def probe_capacity(self, size: int) -> bool:
        """
        Check that a space of ``size`` bytes fits, leaving nothing behind.

        A probe that cannot be deleted counts as no room: the leftover space
        is not on the allow-list, so the reclaimer releases it next.
        """
        self._prepare()
        if not self.tpm.define_space(SpaceIndex.PROBE, size, Permissions.PROBE):
            return False
        if not self.tpm.define_space(SpaceIndex.PROBE, 0, Permissions.PROBE):
            _define_logger.warning("Could not delete probe space %s", format_index(SpaceIndex.PROBE))
            return False
        return True

    def ensure_capacity(self, size: int) -> bool:
        """
        Probe, reclaiming one space per failed probe, until room is confirmed.

        Every successful make_room() removes one of the unexpected spaces
        listed after the first failed probe, so there are at most that many
        rounds.
        """
        if self.probe_capacity(size):
            return True

        candidates = self.reclaimer.list_unexpected_spaces()
        for attempt in range(1, len(candidates) + 1):
            _define_logger.warning("No room for %d bytes, reclaiming (%d/%d)", size, attempt, len(candidates))
            if not self.reclaimer.make_room():
                return False
            if self.probe_capacity(size):
                _define_logger.debug("Room for %d bytes confirmed after %d release(s)", size, attempt)
                return True

        _define_logger.error("No room for %d bytes after releasing %d space(s)", size, len(candidates))
        return False

    def define_space(self, index: int, size: int, permissions: int) -> bool:
        """
        Define a space, making room first if necessary.

        Returns:
            True if the space was defined, False on insufficient capacity or
            if the final define failed.
        """
        if not self.ensure_capacity(size):
            _define_logger.error("Insufficient capacity to define space %s (%d bytes)", format_index(index), size)
            return False

        self._prepare()
        defined = self.tpm.define_space(index, size, permissions)
        if defined:
            _define_logger.info(
                "Defined space %s (%d bytes, permissions %s)", format_index(index), size, format_index(permissions)
            )
        else:
            _define_logger.error("Defining space %s failed", format_index(index))
        return defined

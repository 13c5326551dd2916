#!/usr/bin/env python3
"""
NVRAM space reclaimer

Frees capacity by releasing spaces this tool does not recognize. Indices on
the allow-list (core.constants.is_expected_index) are never released.
Each make_room() call releases at most one space.
"""

import logging
from typing import List

from tpm_recovery.core.constants import is_expected_index
from tpm_recovery.scripts.daemon import DaemonLifecycle
from tpm_recovery.scripts.ownership import OwnershipController
from tpm_recovery.scripts.tpm_cli import format_index
from tpm_recovery.scripts.trousers_cli import TrousersTools

_reclaim_logger = logging.getLogger("TpmRecovery.reclaimer")


class SpaceReclaimer:
    """Identify and release unexpected NVRAM spaces."""

    def __init__(
        self,
        daemon: DaemonLifecycle,
        ownership: OwnershipController,
        trousers: TrousersTools,
    ):
        self.daemon = daemon
        self.ownership = ownership
        self.trousers = trousers

    def _prepare(self) -> None:
        # Listing and release both go through tcsd as the well-known owner
        self.ownership.ensure_owned()
        self.daemon.ensure_running()

    def list_unexpected_spaces(self) -> List[int]:
        """Return every defined index outside the allow-list, in listing order."""
        self._prepare()
        unexpected = [index for index in self.trousers.list_spaces() if not is_expected_index(index)]
        if unexpected:
            _reclaim_logger.info("Unexpected spaces: %s", ", ".join(format_index(i) for i in unexpected))
        else:
            _reclaim_logger.info("No unexpected spaces")
        return unexpected

    def release_space(self, index: int) -> bool:
        """Release one space with the empty owner credential."""
        self._prepare()
        released = self.trousers.release_space(index)
        if released:
            _reclaim_logger.info("Released space %s", format_index(index))
        else:
            _reclaim_logger.warning("Could not release space %s", format_index(index))
        return released

    def make_room(self) -> bool:
        """
        Release the first unexpected space that can be released.

        Returns:
            True once one release succeeds, False if there is nothing to
            release or every release failed.
        """
        candidates = self.list_unexpected_spaces()
        if not candidates:
            _reclaim_logger.error("No room can be reclaimed")
            return False

        for index in candidates:
            if self.release_space(index):
                return True

        _reclaim_logger.error("Every unexpected space refused release")
        return False

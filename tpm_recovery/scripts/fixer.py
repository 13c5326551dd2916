#!/usr/bin/env python3
"""
NVRAM space fixer

Reconciles one managed space against its SpaceSchema:

1. Observe: permissions (missing => nonexistent), tag (spaces with a tag),
   full-size read, permission bits.
2. A space that exists but fails any check is released. If the release
   fails the space is abandoned for this run.
3. A space that does not exist (any more) is defined and its expected
   content written at offset 0.

A correct space is left untouched, so running the fixer twice is safe.
A write failure after a successful define is logged only: the layout is
correct even if the content lags behind.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tpm_recovery.core.constants import SpaceSchema
from tpm_recovery.scripts.daemon import DaemonLifecycle
from tpm_recovery.scripts.definer import SpaceDefiner
from tpm_recovery.scripts.reclaimer import SpaceReclaimer
from tpm_recovery.scripts.tpm_cli import TpmCommandInterface, format_index

_fix_logger = logging.getLogger("TpmRecovery.fixer")


class SpaceOutcome(Enum):
    """Result of reconciling one space."""

    UNCHANGED = "unchanged"
    RESTORED = "restored"
    RESTORED_UNWRITTEN = "restored, content not written"
    FAILED = "could not restore"

    @property
    def is_failure(self) -> bool:
        return self is SpaceOutcome.FAILED

    def message(self) -> str:
        """Human-readable explanation for the summary report."""
        messages = {
            SpaceOutcome.UNCHANGED: "Space matched the expected layout; nothing was changed.",
            SpaceOutcome.RESTORED: "Space was recreated and its expected content written.",
            SpaceOutcome.RESTORED_UNWRITTEN: (
                "Space was recreated with the expected layout, but writing its content failed."
            ),
            SpaceOutcome.FAILED: "Space could not be recreated (release failed, no room could be reclaimed, or define failed).",
        }
        return messages[self]


@dataclass
class ObservedSpace:
    """What the TPM reported for one index during this run."""

    index: int
    exists: bool
    permissions: Optional[int] = None
    size_ok: bool = False
    tag: Optional[bytes] = None
    corrupt: bool = False
    reason: str = ""


class SpaceFixer:
    """Verify and repair managed NVRAM spaces."""

    def __init__(
        self,
        daemon: DaemonLifecycle,
        reclaimer: SpaceReclaimer,
        definer: SpaceDefiner,
        tpm: TpmCommandInterface,
    ):
        self.daemon = daemon
        self.reclaimer = reclaimer
        self.definer = definer
        self.tpm = tpm

    def observe(self, schema: SpaceSchema) -> ObservedSpace:
        """Query the TPM for one space and compare it to its schema."""
        # tpmc needs direct access to the TPM
        self.daemon.ensure_stopped()

        permissions = self.tpm.get_permissions(schema.index)
        if permissions is None:
            return ObservedSpace(index=schema.index, exists=False, reason="missing")

        observed = ObservedSpace(index=schema.index, exists=True, permissions=permissions)

        if schema.tag is not None:
            head = self.tpm.read(schema.index, schema.tag_span)
            observed.tag = head[schema.tag_offset :] if head is not None else None
            if observed.tag != schema.tag:
                observed.corrupt = True
                observed.reason = f"tag {observed.tag!r} != {schema.tag!r}"
                return observed

        observed.size_ok = self.tpm.read(schema.index, schema.size) is not None
        if not observed.size_ok:
            observed.corrupt = True
            observed.reason = f"cannot read {schema.size} bytes"
            return observed

        if permissions != schema.permissions:
            observed.corrupt = True
            observed.reason = f"permissions {format_index(permissions)} != {format_index(schema.permissions)}"

        return observed

    def fix_space(self, schema: SpaceSchema) -> SpaceOutcome:
        """Bring one space in line with its schema."""
        label = f"{schema.name} space {format_index(schema.index)}"
        observed = self.observe(schema)

        if observed.corrupt:
            _fix_logger.warning("%s is corrupt (%s), releasing it", label, observed.reason)
            # Only a released space may be defined again
            if not self.reclaimer.release_space(schema.index):
                _fix_logger.error("Could not restore %s: release failed", label)
                return SpaceOutcome.FAILED
        elif not observed.exists:
            _fix_logger.warning("%s does not exist", label)
        else:
            _fix_logger.info("%s is OK", label)
            return SpaceOutcome.UNCHANGED

        if not self.definer.define_space(schema.index, schema.size, schema.permissions):
            _fix_logger.error("Could not restore %s", label)
            return SpaceOutcome.FAILED

        self.daemon.ensure_stopped()
        if not self.tpm.write(schema.index, schema.content):
            _fix_logger.error("Writing %s failed; layout is restored but content is not", label)
            return SpaceOutcome.RESTORED_UNWRITTEN

        _fix_logger.info("Restored %s", label)
        return SpaceOutcome.RESTORED

# core/session.py - Per-session mutable state
"""
Ownership state and daemon handle for one recovery session.

Both live exactly as long as the session: the state starts UNKNOWN because
whatever the TPM carried over from the previous boot is never trusted, and
the daemon handle is only ever set by the daemon lifecycle component.
"""

import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class OwnershipState(Enum):
    """What this session knows about TPM ownership."""

    UNOWNED = "unowned"
    OWNED_WELL_KNOWN = "owned (well-known secret)"
    UNKNOWN = "unknown"


@dataclass
class SessionContext:
    """Mutable state shared by the ownership controller and daemon lifecycle."""

    ownership: OwnershipState = OwnershipState.UNKNOWN
    daemon: Optional[subprocess.Popen] = None

    @property
    def daemon_running(self) -> bool:
        return self.daemon is not None and self.daemon.poll() is None

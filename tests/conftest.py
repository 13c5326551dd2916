#!/usr/bin/env python3
"""
Pytest configuration and shared fixtures for tpm-recovery tests.

FakeTpm stands in for both the tpmc command interface and the TrouSerS
tools. It models NVRAM spaces, capacity, ownership and flags, records every
call, and fails the test on any call issued in the wrong ownership/daemon
state.
"""

import itertools
from typing import Dict, List, Optional

import pytest

from tpm_recovery.core.config import RecoveryConfig
from tpm_recovery.core.constants import FIRMWARE_SPACE, KERNEL_SPACE, FlagNames, SpaceSchema
from tpm_recovery.core.session import OwnershipState, SessionContext
from tpm_recovery.scripts.daemon import DaemonLifecycle
from tpm_recovery.scripts.recovery import RecoverySession

_pids = itertools.count(4000)


class FakeProcess:
    """Minimal Popen stand-in for the fake daemon."""

    def __init__(self):
        self.pid = next(_pids)
        self.returncode = None

    def poll(self):
        return self.returncode


class FakeDaemon(DaemonLifecycle):
    """DaemonLifecycle that never spawns a real tcsd."""

    def __init__(self, session: SessionContext, config: RecoveryConfig):
        super().__init__(session, config)
        self.starts = 0
        self.stops = 0
        self.stray_checks = 0

    def ensure_running(self) -> None:
        if self.is_running:
            return
        self.session.daemon = FakeProcess()
        self.starts += 1

    def ensure_stopped(self) -> None:
        if self.session.daemon is None:
            return
        self.session.daemon.returncode = 0
        self.session.daemon = None
        self.stops += 1

    def stop_stray(self) -> None:
        self.stray_checks += 1


class FakeTpm:
    """
    Scripted TPM: command interface + TrouSerS tools in one object.

    Attributes tests commonly tweak:
        spaces: index -> {"permissions": int, "data": bytearray}
        capacity: total NVRAM bytes available to defined spaces
        release_failures: indices whose release always fails
        write_fails / take_ownership_ok: failure injection
    """

    def __init__(self, capacity: int = 256):
        self.spaces: Dict[int, dict] = {}
        self.capacity = capacity
        self.owned = False
        self.release_failures = set()
        self.write_fails = False
        self.take_ownership_ok = True
        self.persistent_flags = {
            FlagNames.PP_LIFETIME_LOCK: True,
            FlagNames.PP_HW_ENABLE: False,
            FlagNames.PP_CMD_ENABLE: True,
        }
        self.volatile_flags = {
            FlagNames.PHYSICAL_PRESENCE: False,
            FlagNames.GLOBAL_LOCK: False,
        }
        self.calls: List[tuple] = []
        self.context: Optional[SessionContext] = None

    # -- setup helpers --------------------------------------------------------

    def attach(self, context: SessionContext) -> None:
        self.context = context

    def add_space(self, index: int, permissions: int, data: bytes, size: Optional[int] = None) -> None:
        size = len(data) if size is None else size
        self.spaces[index] = {"permissions": permissions, "data": bytearray(data.ljust(size, b"\x00"))}

    def add_schema_space(self, schema: SpaceSchema) -> None:
        self.add_space(schema.index, schema.permissions, schema.content)

    def used(self) -> int:
        return sum(len(space["data"]) for space in self.spaces.values())

    def calls_named(self, name: str, index: Optional[int] = None) -> List[tuple]:
        return [c for c in self.calls if c[0] == name and (index is None or c[1] == index)]

    # -- invariant checks -----------------------------------------------------

    def _require_daemon_stopped(self, name: str) -> None:
        if self.context is None:
            return
        assert not self.context.daemon_running, f"{name} issued while tcsd is running"

    def _require_direct_access(self, name: str) -> None:
        self._require_daemon_stopped(name)
        if self.context is None:
            return
        assert self.context.ownership is not OwnershipState.OWNED_WELL_KNOWN, f"{name} issued while owned"

    def _require_owner_path(self, name: str) -> None:
        if self.context is None:
            return
        assert self.context.ownership is not OwnershipState.UNKNOWN, f"{name} issued with unknown ownership"
        assert self.context.daemon_running, f"{name} issued without tcsd"

    # -- tpmc -----------------------------------------------------------------

    def clear(self) -> bool:
        self._require_direct_access("clear")
        self.calls.append(("clear",))
        self.owned = False
        return True

    def enable(self) -> bool:
        self._require_direct_access("enable")
        self.calls.append(("enable",))
        return True

    def activate(self) -> bool:
        self._require_direct_access("activate")
        self.calls.append(("activate",))
        return True

    def define_space(self, index: int, size: int, permissions: int) -> bool:
        self._require_direct_access("definespace")
        self.calls.append(("definespace", index, size, permissions))
        if size == 0:
            return self.spaces.pop(index, None) is not None
        if index in self.spaces or self.used() + size > self.capacity:
            return False
        self.spaces[index] = {"permissions": permissions, "data": bytearray(size)}
        return True

    def read(self, index: int, length: int) -> Optional[bytes]:
        self._require_daemon_stopped("read")
        self.calls.append(("read", index, length))
        space = self.spaces.get(index)
        if space is None or len(space["data"]) < length:
            return None
        return bytes(space["data"][:length])

    def write(self, index: int, data: bytes) -> bool:
        self._require_daemon_stopped("write")
        self.calls.append(("write", index, bytes(data)))
        space = self.spaces.get(index)
        if self.write_fails or space is None or len(data) > len(space["data"]):
            return False
        space["data"][: len(data)] = data
        return True

    def get_permissions(self, index: int) -> Optional[int]:
        self._require_daemon_stopped("getp")
        self.calls.append(("getp", index))
        space = self.spaces.get(index)
        return None if space is None else space["permissions"]

    def get_volatile_flags(self) -> Optional[Dict[str, bool]]:
        self.calls.append(("getvf",))
        return dict(self.volatile_flags)

    def get_persistent_flags(self) -> Optional[Dict[str, bool]]:
        self.calls.append(("getpf",))
        return dict(self.persistent_flags)

    def set_physical_presence_on(self) -> bool:
        self.calls.append(("ppon",))
        if not self.persistent_flags[FlagNames.PP_CMD_ENABLE]:
            return False
        self.volatile_flags[FlagNames.PHYSICAL_PRESENCE] = True
        return True

    def finalize_physical_presence_flags(self) -> bool:
        self.calls.append(("ppfin",))
        if self.persistent_flags[FlagNames.PP_LIFETIME_LOCK]:
            return False
        self.persistent_flags[FlagNames.PP_CMD_ENABLE] = True
        self.persistent_flags[FlagNames.PP_LIFETIME_LOCK] = True
        return True

    # -- TrouSerS -------------------------------------------------------------

    def take_ownership(self) -> bool:
        self._require_owner_path("take_ownership")
        self.calls.append(("take_ownership",))
        if self.take_ownership_ok:
            self.owned = True
        return self.take_ownership_ok

    def list_spaces(self) -> List[int]:
        self._require_owner_path("list_spaces")
        self.calls.append(("list_spaces",))
        return list(self.spaces)

    def release_space(self, index: int) -> bool:
        self._require_owner_path("release_space")
        self.calls.append(("release", index))
        if index in self.release_failures or not self.owned or index not in self.spaces:
            return False
        del self.spaces[index]
        return True


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def config():
    """Default config with no settle/grace delays."""
    cfg = RecoveryConfig.defaults()
    cfg.daemon_settle_seconds = 0
    cfg.daemon_stop_grace_seconds = 0
    return cfg


@pytest.fixture
def fake_tpm():
    return FakeTpm()


@pytest.fixture
def session(config, fake_tpm):
    """RecoverySession wired to FakeTpm and FakeDaemon."""
    recovery = RecoverySession(config, tpm=fake_tpm, trousers=fake_tpm, daemon_cls=FakeDaemon)
    fake_tpm.attach(recovery.context)
    return recovery


@pytest.fixture
def healthy_tpm(fake_tpm):
    """FakeTpm with both managed spaces already correct."""
    fake_tpm.add_schema_space(FIRMWARE_SPACE)
    fake_tpm.add_schema_space(KERNEL_SPACE)
    return fake_tpm

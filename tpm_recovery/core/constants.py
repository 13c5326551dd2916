# core/constants.py - SINGLE SOURCE OF TRUTH for indices, schemas and tool names
"""
All shared TPM constants MUST be defined here.
No other module may define these values.

Categories:
- SpaceIndex: NVRAM indices this tool knows about
- Permissions: TPM 1.2 NV attribute bits used by the managed spaces
- SpaceSchema / MANAGED_SPACES: expected layout of the firmware and kernel spaces
- is_expected_index(): allow-list of indices that are never reclaimed
- ToolNames: default binaries for the command interface and helpers
- BootReasons: recovery reasons that justify touching the TPM
"""

from dataclasses import dataclass
from typing import Optional, Tuple


# =============================================================================
# NVRAM indices
# =============================================================================


class SpaceIndex:
    """Well-known NVRAM indices (TPM 1.2 32-bit index namespace)."""

    # TPM_NV_INDEX_LOCK; never a real space but reported by some parts
    LOCK = 0xFFFFFFFF

    # TPM_NV_INDEX0 and TPM_NV_INDEX_DIR
    INDEX0 = 0x00000000
    DIR = 0x00000001

    # Verified-boot spaces
    FIRMWARE = 0x1007
    KERNEL = 0x1008

    # Disposable index used to probe free capacity; deleted right after
    PROBE = 0xCAFE

    # Reserved ranges (inclusive)
    TPM_RESERVED_RANGE = (0x0000F000, 0x0000FFFF)
    TCG_RESERVED_RANGE = (0x00010000, 0x0001FFFF)


class Permissions:
    """TPM_NV_PER_* attribute bits."""

    PPWRITE = 0x00000001
    GLOBALLOCK = 0x00008000

    FIRMWARE = GLOBALLOCK | PPWRITE  # 0x8001
    KERNEL = PPWRITE  # 0x1
    PROBE = PPWRITE


# Indices that must never be released to make room
_EXPECTED_INDICES = frozenset(
    {
        SpaceIndex.LOCK,
        SpaceIndex.INDEX0,
        SpaceIndex.DIR,
        SpaceIndex.FIRMWARE,
        SpaceIndex.KERNEL,
    }
)

_EXPECTED_RANGES = (SpaceIndex.TPM_RESERVED_RANGE, SpaceIndex.TCG_RESERVED_RANGE)


def is_expected_index(index: int) -> bool:
    """
    Check whether an NVRAM index belongs to the allow-list.

    Allow-listed indices are identified but never schema-checked and never
    released by the reclaimer.
    """
    if index in _EXPECTED_INDICES:
        return True
    return any(low <= index <= high for low, high in _EXPECTED_RANGES)


# =============================================================================
# Space schemas
# =============================================================================


@dataclass(frozen=True)
class SpaceSchema:
    """
    Expected layout of one managed NVRAM space.

    ``tag`` is an optional content marker checked at ``tag_offset`` before the
    full-size read; spaces without a tag are only checked for size and
    permissions.
    """

    name: str
    index: int
    size: int
    permissions: int
    content: bytes
    tag: Optional[bytes] = None
    tag_offset: int = 0

    def __post_init__(self):
        if len(self.content) != self.size:
            raise ValueError(f"{self.name}: content is {len(self.content)} bytes, size is {self.size}")
        if self.tag is not None and self.content[self.tag_offset : self.tag_offset + len(self.tag)] != self.tag:
            raise ValueError(f"{self.name}: content does not carry its own tag")

    @property
    def tag_span(self) -> int:
        """Bytes that must be read to see the whole tag."""
        if self.tag is None:
            return 0
        return self.tag_offset + len(self.tag)


FIRMWARE_SPACE = SpaceSchema(
    name="firmware",
    index=SpaceIndex.FIRMWARE,
    size=10,
    permissions=Permissions.FIRMWARE,
    content=bytes([0x02, 0x00, 0x01, 0x00, 0x01, 0x00, 0x00, 0x00, 0x00, 0x4F]),
)

KERNEL_SPACE = SpaceSchema(
    name="kernel",
    index=SpaceIndex.KERNEL,
    size=13,
    permissions=Permissions.KERNEL,
    content=b"GRWL" + bytes([0x02, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00]),
    tag=b"GRWL",
    tag_offset=0,
)

# Reconciled in this order, each independently
MANAGED_SPACES: Tuple[SpaceSchema, ...] = (FIRMWARE_SPACE, KERNEL_SPACE)


# =============================================================================
# External tools
# =============================================================================


class ToolNames:
    """Default binary names, resolved through PATH unless configured."""

    TPMC = "tpmc"
    TCSD = "tcsd"
    TAKE_OWNERSHIP = "tpm_takeownership"
    NVINFO = "tpm_nvinfo"
    NVRELEASE = "tpm_nvrelease"
    CROSSYSTEM = "crossystem"
    PKILL = "pkill"

    # Config keys under "tools" (see core/config.py)
    CONFIG_KEYS = ("tpmc", "tcsd", "tpm_takeownership", "tpm_nvinfo", "tpm_nvrelease", "crossystem")


class FlagNames:
    """Flag names as printed by ``tpmc getvf`` / ``tpmc getpf``."""

    PHYSICAL_PRESENCE = "physicalPresence"
    GLOBAL_LOCK = "bGlobalLock"
    PP_LIFETIME_LOCK = "physicalPresenceLifetimeLock"
    PP_HW_ENABLE = "physicalPresenceHWEnable"
    PP_CMD_ENABLE = "physicalPresenceCMDEnable"


# =============================================================================
# Boot signals
# =============================================================================


class BootReasons:
    """crossystem values that gate a recovery session."""

    MAINFW_RECOVERY = "recovery"

    # recovery_reason codes for which TPM reconciliation is warranted:
    # manual recovery, RO/RW TPM errors, TPM setup/lock failures and
    # TPM clear requests.
    RECOGNIZED = frozenset({0x02, 0x0A, 0x18, 0x19, 0x1A, 0x1B, 0x1C, 0x45, 0x46, 0x54})

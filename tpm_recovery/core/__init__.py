# tpm-recovery SSOT core modules
# This package contains all single-source-of-truth modules for the recovery runtime.
from .constants import FIRMWARE_SPACE, KERNEL_SPACE, MANAGED_SPACES, SpaceSchema, is_expected_index
from .limits import Limits
from .session import OwnershipState, SessionContext
from .version import VERSION

__all__ = [
    "VERSION",
    "Limits",
    # Space schemas
    "SpaceSchema",
    "FIRMWARE_SPACE",
    "KERNEL_SPACE",
    "MANAGED_SPACES",
    "is_expected_index",
    # Session state
    "OwnershipState",
    "SessionContext",
]

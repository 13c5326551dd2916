#!/usr/bin/env python3
"""
tpmc CLI Wrapper

Provides the command interface to the TPM used by the recovery session:
- clear / enable / activate
- NVRAM define, read, write and permission queries
- volatile and persistent flag queries
- physical presence assertion

Every call is synchronous. Success is the tool's exit status; only the read,
getp and flag commands have output that is parsed. tpmc talks to /dev/tpm0
directly, so tcsd must not be running while these commands are issued.
"""

import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from tpm_recovery.core.limits import Limits

_tpm_logger = logging.getLogger("TpmRecovery.tpmc")


class TpmError(Exception):
    """TPM tooling failed in a way the session cannot recover from."""

    pass


class TpmToolMissingError(TpmError):
    """A required binary is not installed or not executable."""

    pass


class RecoveryAbort(TpmError):
    """Preflight condition failed; the session must not touch the TPM."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


# ===========================================================================
# Subprocess plumbing shared by all tool wrappers
# ===========================================================================


def resolve_tool(tool: str) -> str:
    """
    Resolve a configured tool to an executable path.

    Bare names go through PATH; anything containing a separator must exist.

    Raises:
        TpmToolMissingError: If the tool cannot be found
    """
    if "/" in tool:
        if Path(tool).is_file():
            return tool
        raise TpmToolMissingError(f"{tool} not found")

    found = shutil.which(tool)
    if not found:
        raise TpmToolMissingError(f"{tool} not found in PATH")
    return found


def run_tool(
    argv: Sequence[str],
    timeout: float,
    logger: logging.Logger = _tpm_logger,
) -> Optional[subprocess.CompletedProcess]:
    """
    Run one tool invocation and capture its output.

    Returns:
        CompletedProcess (any exit status), or None on timeout

    Raises:
        TpmToolMissingError: If the executable vanished between resolve and run
    """
    argv = [str(a) for a in argv]
    logger.debug("exec: %s", " ".join(argv))
    try:
        result = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise TpmToolMissingError(f"{argv[0]} not found") from e
    except subprocess.TimeoutExpired:
        logger.warning("%s timed out after %ss", " ".join(argv), timeout)
        return None

    if result.returncode != 0:
        detail = (result.stderr or result.stdout or "").strip()
        logger.warning("%s failed (exit %d): %s", " ".join(argv), result.returncode, detail)
    return result


def format_index(value: int) -> str:
    """Format an index/size/permission argument the way tpmc expects it."""
    return f"0x{value:x}"


# ===========================================================================
# Output parsing
# ===========================================================================

_PERMISSIONS_RE = re.compile(r"permissions\s+(0x[0-9a-fA-F]+|\d+)")


def parse_hex_bytes(output: str) -> Optional[bytes]:
    """
    Parse ``tpmc read`` output: whitespace-separated hex bytes.

    Returns None if any token is not a byte.
    """
    values: List[int] = []
    for token in output.split():
        try:
            value = int(token, 16)
        except ValueError:
            return None
        if not 0 <= value <= 0xFF:
            return None
        values.append(value)
    return bytes(values)


def parse_permissions(output: str) -> Optional[int]:
    """Parse ``tpmc getp`` output, e.g. ``space 0x1008 has permissions 0x1``."""
    match = _PERMISSIONS_RE.search(output)
    if not match:
        return None
    return int(match.group(1), 0)


def parse_flags(output: str) -> Optional[Dict[str, bool]]:
    """
    Parse ``tpmc getvf`` / ``tpmc getpf`` output: one ``name value`` per line.

    Returns None if no flag line could be parsed.
    """
    flags: Dict[str, bool] = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) != 2:
            continue
        name, value = parts
        try:
            flags[name] = int(value, 0) != 0
        except ValueError:
            continue
    return flags or None


# ===========================================================================
# Command interface
# ===========================================================================


class TpmCommandInterface:
    """Synchronous request/response interface to the TPM via tpmc."""

    def __init__(self, tpmc: str = "tpmc", timeout: float = Limits.TPMC_TIMEOUT):
        self.tpmc = tpmc
        self.timeout = timeout

    def _run(self, *args) -> Optional[subprocess.CompletedProcess]:
        return run_tool([resolve_tool(self.tpmc), *args], self.timeout)

    def _ok(self, *args) -> bool:
        result = self._run(*args)
        return result is not None and result.returncode == 0

    def _output(self, *args) -> Optional[str]:
        result = self._run(*args)
        if result is None or result.returncode != 0:
            return None
        return result.stdout

    # -- ownership toggles ----------------------------------------------------

    def clear(self) -> bool:
        return self._ok("clear")

    def enable(self) -> bool:
        return self._ok("enable")

    def activate(self) -> bool:
        return self._ok("activate")

    # -- NVRAM ----------------------------------------------------------------

    def define_space(self, index: int, size: int, permissions: int) -> bool:
        """Define (or, with size 0, delete) an NVRAM space."""
        return self._ok("definespace", format_index(index), format_index(size), format_index(permissions))

    def read(self, index: int, length: int) -> Optional[bytes]:
        """
        Read ``length`` bytes from the start of a space.

        Returns None when the read fails, including when the space is
        smaller than ``length`` or the output is short.
        """
        output = self._output("read", format_index(index), format_index(length))
        if output is None:
            return None
        data = parse_hex_bytes(output)
        if data is None or len(data) < length:
            _tpm_logger.warning("Unexpected read output for %s: %r", format_index(index), output.strip())
            return None
        return data[:length]

    def write(self, index: int, data: bytes) -> bool:
        """Write ``data`` at offset 0 of a space."""
        return self._ok("write", format_index(index), *(f"{b:x}" for b in data))

    def get_permissions(self, index: int) -> Optional[int]:
        """Return the permission bits of a space, or None if it does not exist."""
        output = self._output("getp", format_index(index))
        if output is None:
            return None
        permissions = parse_permissions(output)
        if permissions is None:
            _tpm_logger.warning("Unexpected getp output for %s: %r", format_index(index), output.strip())
        return permissions

    # -- flags ----------------------------------------------------------------

    def get_volatile_flags(self) -> Optional[Dict[str, bool]]:
        output = self._output("getvf")
        return parse_flags(output) if output is not None else None

    def get_persistent_flags(self) -> Optional[Dict[str, bool]]:
        output = self._output("getpf")
        return parse_flags(output) if output is not None else None

    # -- physical presence ----------------------------------------------------

    def set_physical_presence_on(self) -> bool:
        return self._ok("ppon")

    def finalize_physical_presence_flags(self) -> bool:
        """Enable command-based physical presence and set the lifetime lock."""
        return self._ok("ppfin")

#!/usr/bin/env python3
"""
TrouSerS tools wrapper

Ownership provisioning and NVRAM listing/release go through tcsd, so every
call here requires the daemon to be running. The callers (ownership
controller and space reclaimer) guarantee that; this module only builds the
command lines and interprets exit status and output.
"""

import logging
import re
from typing import List

from tpm_recovery.core.limits import Limits
from tpm_recovery.scripts.tpm_cli import format_index, resolve_tool, run_tool

_trousers_logger = logging.getLogger("TpmRecovery.trousers")

# tpm_nvinfo prints e.g. "NVRAM index   : 0x00001007 (4103)"
_NVINFO_INDEX_RE = re.compile(r"^\s*NVRAM index\s*:\s*0x([0-9a-fA-F]+)", re.MULTILINE)


def parse_nvinfo(output: str) -> List[int]:
    """Extract NVRAM indices from tpm_nvinfo output, in output order."""
    return [int(match, 16) for match in _NVINFO_INDEX_RE.findall(output)]


class TrousersTools:
    """tpm_takeownership / tpm_nvinfo / tpm_nvrelease."""

    def __init__(
        self,
        take_ownership: str = "tpm_takeownership",
        nvinfo: str = "tpm_nvinfo",
        nvrelease: str = "tpm_nvrelease",
    ):
        self.take_ownership_tool = take_ownership
        self.nvinfo_tool = nvinfo
        self.nvrelease_tool = nvrelease

    def take_ownership(self) -> bool:
        """Take ownership with the well-known owner and SRK secrets."""
        result = run_tool(
            [resolve_tool(self.take_ownership_tool), "-y", "-z"],
            Limits.TAKE_OWNERSHIP_TIMEOUT,
            _trousers_logger,
        )
        return result is not None and result.returncode == 0

    def list_spaces(self) -> List[int]:
        """
        List every defined NVRAM index.

        A failed listing yields an empty list, which to the reclaimer is the
        same as "nothing to reclaim".
        """
        result = run_tool([resolve_tool(self.nvinfo_tool)], Limits.NV_TOOL_TIMEOUT, _trousers_logger)
        if result is None or result.returncode != 0:
            _trousers_logger.error("Could not list NVRAM spaces")
            return []
        return parse_nvinfo(result.stdout)

    def release_space(self, index: int) -> bool:
        """Release a space using an empty owner password."""
        result = run_tool(
            [resolve_tool(self.nvrelease_tool), "-i", format_index(index), "--pwdo="],
            Limits.NV_TOOL_TIMEOUT,
            _trousers_logger,
        )
        return result is not None and result.returncode == 0

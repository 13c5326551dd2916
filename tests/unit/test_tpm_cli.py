#!/usr/bin/env python3
"""
Unit tests for the tpmc command interface.

Tests:
1. Output parsers (read bytes, getp permissions, flag listings)
2. Command lines built for definespace / read / write
3. Exit status, timeouts and missing binaries map to the documented results
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from tpm_recovery.scripts.tpm_cli import (
    TpmCommandInterface,
    TpmToolMissingError,
    format_index,
    parse_flags,
    parse_hex_bytes,
    parse_permissions,
    resolve_tool,
)


def _completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def tpmc():
    with patch("tpm_recovery.scripts.tpm_cli.shutil.which", return_value="/usr/bin/tpmc"):
        yield TpmCommandInterface("tpmc", timeout=5)


class TestParsers:
    """Tests for tpmc output parsing."""

    def test_parse_hex_bytes(self):
        assert parse_hex_bytes("47 52 57 4c 2 0 0\n") == b"GRWL\x02\x00\x00"

    def test_parse_hex_bytes_rejects_garbage(self):
        assert parse_hex_bytes("47 52 zz") is None

    def test_parse_hex_bytes_rejects_out_of_range(self):
        assert parse_hex_bytes("100") is None

    def test_parse_permissions(self):
        assert parse_permissions("space 0x1007 has permissions 0x8001\n") == 0x8001

    def test_parse_permissions_missing(self):
        assert parse_permissions("error: bad index") is None

    def test_parse_flags(self):
        output = "deactivated 0\nphysicalPresence 1\nphysicalPresenceLock 0\nbGlobalLock 0\n"
        flags = parse_flags(output)
        assert flags == {
            "deactivated": False,
            "physicalPresence": True,
            "physicalPresenceLock": False,
            "bGlobalLock": False,
        }

    def test_parse_flags_ignores_noise(self):
        assert parse_flags("getvf:\nphysicalPresence 1\n") == {"physicalPresence": True}

    def test_parse_flags_empty(self):
        assert parse_flags("nothing useful here at all") is None

    def test_format_index(self):
        assert format_index(0x1007) == "0x1007"
        assert format_index(0) == "0x0"


class TestCommandLines:
    """Tests for argv construction."""

    def test_define_space_argv(self, tpmc):
        with patch("tpm_recovery.scripts.tpm_cli.subprocess.run", return_value=_completed()) as mock_run:
            assert tpmc.define_space(0x1007, 10, 0x8001) is True

        argv = mock_run.call_args[0][0]
        assert argv == ["/usr/bin/tpmc", "definespace", "0x1007", "0xa", "0x8001"]
        assert mock_run.call_args[1]["timeout"] == 5

    def test_write_argv_is_hex_bytes(self, tpmc):
        with patch("tpm_recovery.scripts.tpm_cli.subprocess.run", return_value=_completed()) as mock_run:
            assert tpmc.write(0x1008, b"GR\x00\xe8") is True

        assert mock_run.call_args[0][0] == ["/usr/bin/tpmc", "write", "0x1008", "47", "52", "0", "e8"]

    def test_read_returns_requested_length(self, tpmc):
        with patch("tpm_recovery.scripts.tpm_cli.subprocess.run", return_value=_completed("47 52 57 4c 2\n")) as mock_run:
            assert tpmc.read(0x1008, 4) == b"GRWL"

        assert mock_run.call_args[0][0] == ["/usr/bin/tpmc", "read", "0x1008", "0x4"]

    def test_read_short_output_is_failure(self, tpmc):
        with patch("tpm_recovery.scripts.tpm_cli.subprocess.run", return_value=_completed("47 52\n")):
            assert tpmc.read(0x1008, 13) is None

    def test_physical_presence_commands(self, tpmc):
        with patch("tpm_recovery.scripts.tpm_cli.subprocess.run", return_value=_completed()) as mock_run:
            tpmc.set_physical_presence_on()
            tpmc.finalize_physical_presence_flags()

        assert [c[0][0][1] for c in mock_run.call_args_list] == ["ppon", "ppfin"]


class TestFailureMapping:
    """Tests for exit status / timeout / missing binary handling."""

    def test_nonzero_exit_is_false(self, tpmc):
        with patch("tpm_recovery.scripts.tpm_cli.subprocess.run", return_value=_completed(returncode=1, stderr="TPM_E_FAIL")):
            assert tpmc.clear() is False

    def test_nonzero_exit_read_is_none(self, tpmc):
        with patch("tpm_recovery.scripts.tpm_cli.subprocess.run", return_value=_completed("0 0", returncode=1)):
            assert tpmc.read(0x1007, 2) is None

    def test_getp_failure_means_missing(self, tpmc):
        with patch("tpm_recovery.scripts.tpm_cli.subprocess.run", return_value=_completed(returncode=1)):
            assert tpmc.get_permissions(0x1007) is None

    def test_timeout_is_false(self, tpmc):
        with patch(
            "tpm_recovery.scripts.tpm_cli.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="tpmc", timeout=5),
        ):
            assert tpmc.enable() is False

    def test_flags_failure_is_none(self, tpmc):
        with patch("tpm_recovery.scripts.tpm_cli.subprocess.run", return_value=_completed(returncode=1)):
            assert tpmc.get_volatile_flags() is None
            assert tpmc.get_persistent_flags() is None

    def test_binary_vanished_raises(self, tpmc):
        with patch("tpm_recovery.scripts.tpm_cli.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(TpmToolMissingError):
                tpmc.activate()

    def test_missing_binary_raises(self):
        interface = TpmCommandInterface("tpmc")
        with patch("tpm_recovery.scripts.tpm_cli.shutil.which", return_value=None):
            with pytest.raises(TpmToolMissingError):
                interface.clear()


class TestResolveTool:
    """Tests for resolve_tool."""

    def test_path_lookup(self):
        with patch("tpm_recovery.scripts.tpm_cli.shutil.which", return_value="/usr/sbin/tcsd"):
            assert resolve_tool("tcsd") == "/usr/sbin/tcsd"

    def test_explicit_path_must_exist(self, tmp_path):
        tool = tmp_path / "tpmc"
        with pytest.raises(TpmToolMissingError):
            resolve_tool(str(tool))

        tool.write_text("#!/bin/sh\n")
        assert resolve_tool(str(tool)) == str(tool)

# core/config.py - Configuration loading and validation
"""
SINGLE SOURCE OF TRUTH for configuration handling.

This module provides:
- Built-in defaults taken from core.constants / core.limits
- JSON overlay loading with a deep merge that preserves unknown keys
- Type validation of every key the runtime reads

A missing config file is not an error: recovery images normally ship without
one and run on defaults.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

from tpm_recovery.core.constants import BootReasons, ToolNames
from tpm_recovery.core.limits import Limits
from tpm_recovery.core.paths import Paths
from tpm_recovery.core.version import CONFIG_SCHEMA_VERSION

_config_logger = logging.getLogger("TpmRecovery.config")


class ConfigError(Exception):
    """Configuration file is unreadable or invalid."""

    pass


# =============================================================================
# Defaults
# =============================================================================


def default_config_dict() -> Dict[str, Any]:
    """Return the built-in configuration as a plain dict (fresh copy)."""
    return {
        "schema_version": CONFIG_SCHEMA_VERSION,
        "tools": {
            "tpmc": ToolNames.TPMC,
            "tcsd": ToolNames.TCSD,
            "tpm_takeownership": ToolNames.TAKE_OWNERSHIP,
            "tpm_nvinfo": ToolNames.NVINFO,
            "tpm_nvrelease": ToolNames.NVRELEASE,
            "crossystem": ToolNames.CROSSYSTEM,
        },
        "log_file": None,
        "daemon_settle_seconds": Limits.DAEMON_SETTLE_DELAY,
        "daemon_stop_grace_seconds": Limits.DAEMON_STOP_GRACE,
        "command_timeout_seconds": Limits.TPMC_TIMEOUT,
        "recognized_boot_reasons": sorted(BootReasons.RECOGNIZED),
    }


def _deep_merge(base: dict, overlay: dict) -> None:
    """Deep merge overlay into base, preserving unknown keys."""
    for key, value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


# =============================================================================
# Typed view
# =============================================================================


@dataclass
class RecoveryConfig:
    """Validated configuration consumed by the recovery session."""

    tools: Dict[str, str]
    log_file: Optional[Path] = None
    daemon_settle_seconds: float = Limits.DAEMON_SETTLE_DELAY
    daemon_stop_grace_seconds: float = Limits.DAEMON_STOP_GRACE
    command_timeout_seconds: float = Limits.TPMC_TIMEOUT
    recognized_boot_reasons: FrozenSet[int] = BootReasons.RECOGNIZED
    extra: Dict[str, Any] = field(default_factory=dict)

    def tool(self, name: str) -> str:
        """Return the configured binary for a tool key (e.g. "tpmc")."""
        return self.tools[name]

    @classmethod
    def defaults(cls) -> "RecoveryConfig":
        return config_from_dict(default_config_dict())


def _require_number(raw: Dict[str, Any], key: str) -> float:
    value = raw[key]
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigError(f"'{key}' must be a non-negative number, got {value!r}")
    return value


def config_from_dict(raw: Dict[str, Any]) -> RecoveryConfig:
    """
    Validate a merged config dict and build a RecoveryConfig.

    Raises:
        ConfigError: If any known key has the wrong type
    """
    schema_version = raw.get("schema_version", CONFIG_SCHEMA_VERSION)
    if not isinstance(schema_version, int) or schema_version > CONFIG_SCHEMA_VERSION:
        raise ConfigError(f"Unsupported config schema_version {schema_version!r}")

    tools = raw.get("tools")
    if not isinstance(tools, dict):
        raise ConfigError("'tools' must be an object")
    for key in ToolNames.CONFIG_KEYS:
        value = tools.get(key)
        if not isinstance(value, str) or not value:
            raise ConfigError(f"'tools.{key}' must be a non-empty string")

    log_file = raw.get("log_file")
    if log_file is not None and not isinstance(log_file, str):
        raise ConfigError("'log_file' must be a string path or null")

    reasons = raw.get("recognized_boot_reasons")
    if not isinstance(reasons, list) or not all(isinstance(r, int) and not isinstance(r, bool) for r in reasons):
        raise ConfigError("'recognized_boot_reasons' must be a list of integers")

    known = set(default_config_dict())
    extra = {k: v for k, v in raw.items() if k not in known}
    if extra:
        _config_logger.debug("Ignoring unknown config keys: %s", ", ".join(sorted(extra)))

    return RecoveryConfig(
        tools={key: tools[key] for key in ToolNames.CONFIG_KEYS},
        log_file=Path(log_file) if log_file else None,
        daemon_settle_seconds=_require_number(raw, "daemon_settle_seconds"),
        daemon_stop_grace_seconds=_require_number(raw, "daemon_stop_grace_seconds"),
        command_timeout_seconds=_require_number(raw, "command_timeout_seconds"),
        recognized_boot_reasons=frozenset(reasons),
        extra=extra,
    )


def load_config(path: Optional[Path] = None) -> RecoveryConfig:
    """
    Load configuration, overlaying the resolved JSON file onto the defaults.

    Args:
        path: Explicit config file. When omitted, Paths.config_file() decides.

    Returns:
        Validated RecoveryConfig

    Raises:
        ConfigError: If the file is unreadable, not JSON, or invalid
    """
    merged = copy.deepcopy(default_config_dict())
    config_path = Paths.config_file(path)

    if config_path is None:
        _config_logger.debug("No config file, using defaults")
        return config_from_dict(merged)

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            overlay = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {config_path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e

    if not isinstance(overlay, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")

    _deep_merge(merged, overlay)
    _config_logger.info("Loaded config from %s", config_path)
    return config_from_dict(merged)

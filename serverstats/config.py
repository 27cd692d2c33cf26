"""Configuration loading for server-stats.

Loads settings from TOML config files with sensible defaults.
Search order: explicit --config path → ~/.config/server-stats/config.toml → defaults only.
"""

from __future__ import annotations

import math
import sys
import tomllib
from pathlib import Path
from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "command_timeout": 10.0,
    "failure_threshold": 3,  # of the five core metrics
    "psutil_fallback": True,
    "cpu": {"sampling_period": 1.0},
    "disk": {"path": "/", "reserved_tolerance": 10.0},
    "logins": {
        "log_files": [
            "/var/log/auth.log",
            "/var/log/secure",
            "/var/log/messages",
            "/var/log/authlog",
        ],
    },
    "report": {"width": 60},
}

_DEFAULT_PATH = Path.home() / ".config" / "server-stats" / "config.toml"


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base. Nested dicts are merged at the first level only."""
    merged = dict(base)
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def _read_toml(path: Path) -> dict[str, Any]:
    return tomllib.loads(path.read_text(encoding="utf-8"))


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults.

    Args:
        path: Explicit config file path (from --config). If None, tries the
              default location ~/.config/server-stats/config.toml.

    Returns:
        Merged configuration dict.

    Raises:
        SystemExit: If an explicit path doesn't exist or can't be parsed.
    """
    if path is not None:
        if not path.is_file():
            print(f"server-stats: config file not found: {path}", file=sys.stderr)
            raise SystemExit(1)
        try:
            user_config = _read_toml(path)
        except tomllib.TOMLDecodeError as e:
            print(f"server-stats: invalid TOML in {path}: {e}", file=sys.stderr)
            raise SystemExit(1) from e
        return _deep_merge(DEFAULT_CONFIG, user_config)

    if _DEFAULT_PATH.is_file():
        try:
            return _deep_merge(DEFAULT_CONFIG, _read_toml(_DEFAULT_PATH))
        except tomllib.TOMLDecodeError:
            print(
                f"server-stats: warning: ignoring invalid TOML in {_DEFAULT_PATH}",
                file=sys.stderr,
            )

    return dict(DEFAULT_CONFIG)


def is_duration(value: Any, allow_zero: bool = True) -> bool:
    """True for a finite, non-negative number of seconds (zero only if allowed)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if not math.isfinite(value):
        return False
    return value >= 0 if allow_zero else value > 0


def validate_config(config: dict[str, Any]) -> None:
    """Reject timing settings that would stall or crash collection.

    Raises:
        SystemExit: If ``cpu.sampling_period`` is negative or not finite, or
            ``command_timeout`` is not a positive finite number.
    """
    checks = (
        ("cpu.sampling_period", config["cpu"]["sampling_period"], True),
        ("command_timeout", config["command_timeout"], False),
    )
    for key, value, allow_zero in checks:
        if not is_duration(value, allow_zero):
            print(f"server-stats: invalid {key} in config: {value!r}", file=sys.stderr)
            raise SystemExit(1)


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(v) for v in value) + "]"
    return str(value)


def dump_default_config() -> str:
    """Return the default configuration as a TOML string."""
    lines = [
        "# server-stats configuration",
        "# Place this file at ~/.config/server-stats/config.toml",
        "",
    ]

    tables = {k: v for k, v in DEFAULT_CONFIG.items() if isinstance(v, dict)}
    for key, value in DEFAULT_CONFIG.items():
        if key not in tables:
            lines.append(f"{key} = {_toml_value(value)}")
    lines.append("")

    for table, settings in tables.items():
        lines.append(f"[{table}]")
        for key, value in settings.items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")

    return "\n".join(lines) + "\n"

"""Numeric validation and human-readable formatting.

Everything read from /proc or a subprocess is text. Nothing in the collectors
does arithmetic on it until it has passed ``is_number`` / ``is_integer``, and
every formatter degrades to ``"N/A"`` instead of raising, so the report can be
rendered without special-casing failures.
"""

from __future__ import annotations

import math
import os
import re

NA = "N/A"

BYTE_UNITS = ("B", "KB", "MB", "GB", "TB")

NAME_WIDTH = 15
NAME_KEEP = 12
ELLIPSIS = "..."

_NUMBER_RE = re.compile(r"[0-9]+(\.[0-9]+)?")


# ── Validation ──────────────────────────────────────────────────────────────


def is_number(value: object) -> bool:
    """True for an unsigned integer or decimal string such as ``"12.34"``."""
    return isinstance(value, str) and _NUMBER_RE.fullmatch(value) is not None


def is_integer(value: object) -> bool:
    """True for an unsigned integer string (tick counts, kB values, PIDs)."""
    return is_number(value) and "." not in value  # type: ignore[operator]


def _coerce(value: object) -> float | None:
    """Return a non-negative float for formatting, or None if unusable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value < 0 or not math.isfinite(value):
            return None
        return float(value)
    if is_number(value):
        return float(value)  # type: ignore[arg-type]
    return None


# ── Formatting ──────────────────────────────────────────────────────────────


def format_bytes(value: object, precision: int = 1) -> str:
    """Scale a byte count to B/KB/MB/GB/TB (capped at TB)."""
    size = _coerce(value)
    if size is None:
        return NA
    index = 0
    while size >= 1024 and index < len(BYTE_UNITS) - 1:
        size /= 1024
        index += 1
    return f"{size:.{precision}f} {BYTE_UNITS[index]}"


def format_percentage(value: object, precision: int = 1) -> str:
    number = _coerce(value)
    if number is None:
        return NA
    return f"{number:.{precision}f}%"


def format_decimal(value: object, precision: int = 2) -> str:
    number = _coerce(value)
    if number is None:
        return NA
    return f"{number:.{precision}f}"


def format_uptime(seconds: object) -> str:
    """Render an uptime the way ``uptime`` does: ``3 days, 4:05``."""
    number = _coerce(seconds)
    if number is None:
        return NA
    total = int(number)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60

    parts: list[str] = []
    if days:
        parts.append("1 day" if days == 1 else f"{days} days")
    if hours:
        parts.append(f"{hours}:{minutes:02d}")
    elif minutes:
        parts.append(f"{minutes} min")
    elif not days:
        parts.append("< 1 min")
    return ", ".join(parts)


def display_name(command: str) -> str:
    """Base name of a command, truncated to fit the process table."""
    command = command.strip()
    # Kernel threads ("[kworker/0:1]") have no path to strip
    if not command.startswith("["):
        command = os.path.basename(command.rstrip("/")) or command
    if len(command) > NAME_WIDTH:
        return command[:NAME_KEEP] + ELLIPSIS
    return command

"""Plain-text rendering of a collected Snapshot.

The renderer never fails on missing data: anything unavailable prints as
``N/A`` and the report always has the same sections in the same order.
"""

from __future__ import annotations

import datetime
from collections.abc import Callable

from serverstats.formatting import NA, format_bytes, format_percentage
from serverstats.models import FailedLogins, ProcessEntry, Snapshot, UserInfo

DEFAULT_WIDTH = 60
LABEL_WIDTH = 20
COLUMN_WIDTH = 12
TITLE = "Server Performance Stats"
CLOSING = "Server Stats Analysis Complete"
NO_PROCESSES = "  No process data available"


# ── Layout helpers ──────────────────────────────────────────────────────────


def aligned(label: str, value: str) -> str:
    return f"{label:<{LABEL_WIDTH}} {value}".rstrip()


def separator(width: int = DEFAULT_WIDTH) -> str:
    return "-" * width


def banner(title: str, width: int = DEFAULT_WIDTH) -> list[str]:
    return ["=" * width, title, "=" * width]


def table_row(*columns: object) -> str:
    return " ".join(f"{str(c):<{COLUMN_WIDTH}}" for c in columns).rstrip()


def _with_percent(size: str, percent: float | None) -> str:
    if size == NA:
        return NA
    return f"{size} ({format_percentage(percent)})"


# ── Sections ────────────────────────────────────────────────────────────────


def cpu_section(snapshot: Snapshot) -> list[str]:
    return ["CPU Usage:", aligned("  Current:", format_percentage(snapshot.cpu_usage))]


def memory_section(snapshot: Snapshot) -> list[str]:
    lines = ["Memory Usage:"]
    mem = snapshot.memory
    if mem is None:
        lines += [aligned(label, NA) for label in ("  Total:", "  Used:", "  Available:")]
        return lines
    lines.append(aligned("  Total:", format_bytes(mem.total_bytes)))
    lines.append(aligned("  Used:", _with_percent(format_bytes(mem.used_bytes), mem.used_percent)))
    lines.append(
        aligned(
            "  Available:",
            _with_percent(format_bytes(mem.available_bytes), mem.available_percent),
        )
    )
    return lines


def disk_section(snapshot: Snapshot) -> list[str]:
    lines = [f"Disk Usage ({snapshot.disk_path}):"]
    disk = snapshot.disk
    if disk is None:
        lines += [aligned(label, NA) for label in ("  Total:", "  Used:", "  Available:")]
        return lines
    lines.append(aligned("  Total:", format_bytes(disk.total_bytes)))
    lines.append(aligned("  Used:", _with_percent(format_bytes(disk.used_bytes), disk.used_percent)))
    lines.append(aligned("  Available:", format_bytes(disk.available_bytes)))
    return lines


def format_megabytes(mb: float) -> str:
    return format_bytes(mb * 1024 * 1024)


def process_table(
    title: str,
    entries: list[ProcessEntry],
    metric_header: str,
    format_value: Callable[[float], str],
) -> list[str]:
    lines = [title]
    if not entries:
        lines.append(NO_PROCESSES)
        return lines
    lines.append("")
    lines.append(table_row("PID", "Process", metric_header))
    lines.append(table_row(*["-" * COLUMN_WIDTH] * 3))
    for entry in entries:
        lines.append(table_row(entry.pid, entry.name, format_value(entry.metric)))
    return lines


def users_label(users: UserInfo | None) -> str:
    if users is None:
        return NA
    listed = ", ".join(users.names)
    if users.overflow:
        listed += ", ..."
    return f"{users.count} ({listed})"


def failed_logins_label(failed: FailedLogins) -> str:
    if failed.count is not None:
        return f"{failed.count} failed attempts today"
    if failed.permission_denied:
        return "Permission denied"
    return NA


def system_section(snapshot: Snapshot, width: int) -> list[str]:
    system = snapshot.system
    return [
        separator(width),
        "Additional System Information:",
        "",
        aligned("OS:", system.os_label or NA),
        aligned("Uptime:", system.uptime_label or NA),
        aligned("Load Average:", system.load_average_label or NA),
        aligned("Logged in Users:", users_label(snapshot.users)),
        aligned("Failed Logins:", failed_logins_label(snapshot.failed_logins)),
    ]


def footer(snapshot: Snapshot, width: int, now: datetime.datetime) -> list[str]:
    elapsed = NA if snapshot.elapsed is None else f"{snapshot.elapsed:.3f}s"
    return [
        separator(width),
        aligned("Execution Time:", elapsed),
        aligned("Generated:", now.strftime("%Y-%m-%d %H:%M:%S")),
        "",
        f"{CLOSING:^{width}}".rstrip(),
    ]


def render_report(
    snapshot: Snapshot,
    width: int = DEFAULT_WIDTH,
    now: datetime.datetime | None = None,
) -> str:
    """Render the full dashboard as one string ending in a newline."""
    now = now or datetime.datetime.now()
    lines = [""]
    lines += banner(TITLE, width)
    lines.append("")
    lines += cpu_section(snapshot)
    lines.append("")
    lines += memory_section(snapshot)
    lines.append("")
    lines += disk_section(snapshot)
    lines.append("")
    lines += process_table(
        "Top 5 Processes by CPU:", snapshot.cpu_processes, "CPU%", format_percentage
    )
    lines.append("")
    lines += process_table(
        "Top 5 Processes by Memory:", snapshot.memory_processes, "Memory", format_megabytes
    )
    lines.append("")
    lines += system_section(snapshot, width)
    lines.append("")
    lines += footer(snapshot, width, now)
    return "\n".join(lines) + "\n"

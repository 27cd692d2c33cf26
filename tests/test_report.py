"""Tests for serverstats.report."""

from __future__ import annotations

import datetime

from serverstats.models import (
    DiskUsage,
    FailedLogins,
    MemoryUsage,
    ProcessEntry,
    Snapshot,
    SystemInfo,
    UserInfo,
)
from serverstats.report import (
    CLOSING,
    NO_PROCESSES,
    TITLE,
    failed_logins_label,
    format_megabytes,
    process_table,
    render_report,
    users_label,
)

NOW = datetime.datetime(2026, 10, 18, 12, 30, 45)
GiB = 1024**3


def _full_snapshot() -> Snapshot:
    return Snapshot(
        cpu_usage=80.0,
        memory=MemoryUsage(16 * GiB, 8 * GiB, 8 * GiB, 50.0, 50.0),
        disk=DiskUsage("/", 100 * GiB, 40 * GiB, 60 * GiB, 40.0),
        disk_path="/",
        cpu_processes=[ProcessEntry(1234, "python3", 25.0)],
        memory_processes=[ProcessEntry(3456, "mysqld", 800.0)],
        system=SystemInfo("Ubuntu 22.04.3 LTS", "3 days, 4:00", "0.50, 0.40, 0.30"),
        users=UserInfo(2, ("alice", "bob")),
        failed_logins=FailedLogins(count=2, source="/var/log/auth.log"),
        elapsed=1.25,
    )


class TestLabels:
    def test_users(self) -> None:
        assert users_label(UserInfo(2, ("alice", "bob"))) == "2 (alice, bob)"

    def test_users_overflow(self) -> None:
        info = UserInfo(7, ("a", "b", "c", "d", "e"), overflow=2)
        assert users_label(info) == "7 (a, b, c, d, e, ...)"

    def test_no_users(self) -> None:
        assert users_label(None) == "N/A"

    def test_failed_logins(self) -> None:
        assert failed_logins_label(FailedLogins(count=0)) == "0 failed attempts today"
        assert failed_logins_label(FailedLogins(permission_denied=True)) == "Permission denied"
        assert failed_logins_label(FailedLogins()) == "N/A"


class TestRenderReport:
    def test_full_report(self) -> None:
        text = render_report(_full_snapshot(), now=NOW)
        assert TITLE in text
        assert "CPU Usage:" in text
        assert "80.0%" in text
        assert "16.0 GB" in text
        assert "8.0 GB (50.0%)" in text
        assert "Disk Usage (/):" in text
        assert "40.0 GB (40.0%)" in text
        assert "python3" in text
        assert "25.0%" in text
        assert "800.0 MB" in text
        assert "Ubuntu 22.04.3 LTS" in text
        assert "2 (alice, bob)" in text
        assert "2 failed attempts today" in text
        assert "1.250s" in text
        assert "2026-10-18 12:30:45" in text
        assert CLOSING in text
        assert "N/A" not in text

    def test_section_order(self) -> None:
        text = render_report(_full_snapshot(), now=NOW)
        headings = [
            "CPU Usage:",
            "Memory Usage:",
            "Disk Usage (/):",
            "Top 5 Processes by CPU:",
            "Top 5 Processes by Memory:",
            "Additional System Information:",
            "Execution Time:",
        ]
        positions = [text.index(h) for h in headings]
        assert positions == sorted(positions)

    def test_process_table_columns(self) -> None:
        lines = render_report(_full_snapshot(), now=NOW).splitlines()
        header = lines.index("PID          Process      CPU%")
        assert lines[header + 1] == "------------ ------------ ------------"
        assert lines[header + 2] == "1234         python3      25.0%"

    def test_empty_snapshot_is_complete(self) -> None:
        text = render_report(Snapshot(disk_path="/data"), now=NOW)
        assert "Disk Usage (/data):" in text
        assert text.count(NO_PROCESSES) == 2
        for label in ("Current:", "Total:", "Used:", "Available:", "OS:", "Uptime:",
                      "Load Average:", "Logged in Users:", "Failed Logins:",
                      "Execution Time:"):
            line = next(line for line in text.splitlines() if label in line)
            assert line.endswith("N/A"), line
        assert CLOSING in text

    def test_width(self) -> None:
        text = render_report(Snapshot(), width=40, now=NOW)
        assert "=" * 40 + "\n" in text
        assert "=" * 41 not in text


class TestProcessTable:
    def test_formatter_is_applied_to_metric(self) -> None:
        entries = [ProcessEntry(42, "worker", 3.0)]
        lines = process_table("Top:", entries, "Score", lambda value: f"{value:.0f} pts")
        assert lines[-1] == "42           worker       3 pts"

    def test_header_text_does_not_pick_formatter(self) -> None:
        entries = [ProcessEntry(7, "cache", 512.0)]
        lines = process_table("Top:", entries, "CPU%", format_megabytes)
        assert lines[-1].endswith("512.0 MB")

    def test_empty(self) -> None:
        assert process_table("Top:", [], "CPU%", format_megabytes) == ["Top:", NO_PROCESSES]


class TestSnapshotDefaults:
    def test_process_lists_start_empty_and_unshared(self) -> None:
        first, second = Snapshot(), Snapshot()
        assert first.cpu_processes == [] and first.memory_processes == []
        first.cpu_processes.append(ProcessEntry(1, "init", 0.1))
        assert second.cpu_processes == []
        assert first.memory_processes == []

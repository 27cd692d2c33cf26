"""Data models for server-stats.

Every result is produced fresh on each run. ``None`` (or an empty process
list) means "unavailable": all candidate sources for that metric failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

CORE_METRICS = ("cpu", "memory", "disk", "cpu_processes", "memory_processes")


@dataclass(slots=True, frozen=True)
class CpuSnapshot:
    """Cumulative CPU ticks from one read; only meaningful as a pair."""

    total: float
    idle: float


@dataclass(slots=True, frozen=True)
class MemoryUsage:
    total_bytes: int
    used_bytes: int
    available_bytes: int
    used_percent: float
    available_percent: float


@dataclass(slots=True, frozen=True)
class DiskUsage:
    path: str
    total_bytes: int
    used_bytes: int
    available_bytes: int
    used_percent: float


@dataclass(slots=True, frozen=True)
class ProcessEntry:
    pid: int
    name: str  # display name, already truncated
    metric: float  # CPU % or resident memory in MB


@dataclass(slots=True, frozen=True)
class SystemInfo:
    os_label: str | None = None
    uptime_label: str | None = None
    load_average_label: str | None = None


@dataclass(slots=True, frozen=True)
class UserInfo:
    count: int
    names: tuple[str, ...]
    overflow: int = 0


@dataclass(slots=True, frozen=True)
class FailedLogins:
    count: int | None = None
    permission_denied: bool = False
    source: str | None = None


@dataclass
class Snapshot:
    """Everything one collection pass produced."""

    cpu_usage: float | None = None
    memory: MemoryUsage | None = None
    disk: DiskUsage | None = None
    disk_path: str = "/"
    cpu_processes: list[ProcessEntry] = field(default_factory=list)
    memory_processes: list[ProcessEntry] = field(default_factory=list)
    system: SystemInfo = field(default_factory=SystemInfo)
    users: UserInfo | None = None
    failed_logins: FailedLogins = field(default_factory=FailedLogins)
    elapsed: float | None = None


@dataclass(slots=True, frozen=True)
class CollectionSummary:
    """Pass/fail tally of the core metrics for one run."""

    failed: tuple[str, ...]

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> CollectionSummary:
        status = {
            "cpu": snapshot.cpu_usage is not None,
            "memory": snapshot.memory is not None,
            "disk": snapshot.disk is not None,
            "cpu_processes": bool(snapshot.cpu_processes),
            "memory_processes": bool(snapshot.memory_processes),
        }
        return cls(failed=tuple(name for name in CORE_METRICS if not status[name]))

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    def exit_code(self, failure_threshold: int) -> int:
        """0 on full or partial success, 1 once too many core metrics failed."""
        return 1 if self.failed_count >= failure_threshold else 0

"""Top processes ranked by CPU share or resident memory.

Column positions depend on the tool and invocation syntax, so each source is
described by a ``ColumnLayout`` and the layouts are grouped per platform in
``STRATEGIES``.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import psutil

from serverstats.formatting import display_name, is_integer, is_number
from serverstats.models import ProcessEntry
from serverstats.sources import DARWIN, LINUX, Candidate, SourceReader, first_success

logger = logging.getLogger(__name__)

TOP_N = 5

_MEM_SIZE_RE = re.compile(r"([0-9]+(?:\.[0-9]+)?)([KkMmGgTt]?)[+-]?")
_MB_PER_UNIT = {"": 1 / 1024, "K": 1 / 1024, "M": 1.0, "G": 1024.0, "T": 1024.0**2}


class RankBy(Enum):
    """What the process list is sorted by."""

    CPU = "cpu"
    MEMORY = "memory"


class MetricKind(Enum):
    PERCENT = "percent"  # used as-is
    RSS_KB = "rss_kb"  # plain kB count
    MEM_SIZE = "mem_size"  # top's RES/MEM, optionally suffixed (1.2g, 512M)


@dataclass(frozen=True)
class ColumnLayout:
    """Where PID, metric and command live in one tool's output."""

    argv: tuple[str, ...]
    pid: int
    metric: int
    command: int
    kind: MetricKind
    command_rest: bool = False  # command may contain spaces and runs to end of line
    pid_rows_only: bool = False  # top: data rows are those starting with a PID

    @property
    def label(self) -> str:
        return " ".join(self.argv)


STRATEGIES: dict[tuple[str, RankBy], tuple[ColumnLayout, ...]] = {
    (LINUX, RankBy.CPU): (
        ColumnLayout(("ps", "aux", "--sort=-%cpu"), 1, 2, 10, MetricKind.PERCENT),
        ColumnLayout(
            ("ps", "-eo", "pid,pcpu,comm", "--sort=-pcpu"),
            0, 1, 2, MetricKind.PERCENT, command_rest=True,
        ),
        ColumnLayout(
            ("top", "-b", "-n", "1", "-o", "%CPU"),
            0, 8, 11, MetricKind.PERCENT, pid_rows_only=True,
        ),
    ),
    (LINUX, RankBy.MEMORY): (
        ColumnLayout(("ps", "aux", "--sort=-%mem"), 1, 5, 10, MetricKind.RSS_KB),
        ColumnLayout(
            ("ps", "-eo", "pid,rss,comm", "--sort=-rss"),
            0, 1, 2, MetricKind.RSS_KB, command_rest=True,
        ),
        ColumnLayout(
            ("top", "-b", "-n", "1", "-o", "%MEM"),
            0, 5, 11, MetricKind.MEM_SIZE, pid_rows_only=True,
        ),
    ),
    (DARWIN, RankBy.CPU): (
        ColumnLayout(
            ("ps", "-eo", "pid,pcpu,comm", "-r"),
            0, 1, 2, MetricKind.PERCENT, command_rest=True,
        ),
        ColumnLayout(("ps", "aux", "-r"), 1, 2, 10, MetricKind.PERCENT),
        ColumnLayout(
            ("top", "-l", "1", "-o", "cpu", "-n", str(TOP_N), "-stats", "pid,cpu,command"),
            0, 1, 2, MetricKind.PERCENT, command_rest=True, pid_rows_only=True,
        ),
    ),
    (DARWIN, RankBy.MEMORY): (
        ColumnLayout(
            ("ps", "-eo", "pid,rss,comm", "-m"),
            0, 1, 2, MetricKind.RSS_KB, command_rest=True,
        ),
        ColumnLayout(("ps", "aux", "-m"), 1, 5, 10, MetricKind.RSS_KB),
        ColumnLayout(
            ("top", "-l", "1", "-o", "rsize", "-n", str(TOP_N), "-stats", "pid,mem,command"),
            0, 1, 2, MetricKind.MEM_SIZE, command_rest=True, pid_rows_only=True,
        ),
    ),
}


# ── Parsing ─────────────────────────────────────────────────────────────────


def kb_to_mb(kb: int | float) -> float:
    return round(kb / 1024, 1)


def parse_mem_size(field: str) -> float | None:
    """Convert a top memory column (``123456``, ``512M``, ``1.2g``) to MB."""
    match = _MEM_SIZE_RE.fullmatch(field)
    if match is None:
        return None
    value, suffix = match.groups()
    return round(float(value) * _MB_PER_UNIT[suffix.upper()], 1)


def _metric(field: str, kind: MetricKind) -> float | None:
    if kind is MetricKind.MEM_SIZE:
        return parse_mem_size(field)
    if not is_number(field):
        return None
    if kind is MetricKind.RSS_KB:
        return kb_to_mb(float(field))
    return float(field)


def parse_row(line: str, layout: ColumnLayout) -> ProcessEntry | None:
    fields = line.split()
    if len(fields) <= max(layout.pid, layout.metric, layout.command):
        logger.debug("Too few columns in process row: %r", line)
        return None
    pid = fields[layout.pid]
    if not is_integer(pid) or int(pid) <= 0:
        logger.debug("Invalid PID in process row: %r", pid)
        return None
    metric = _metric(fields[layout.metric], layout.kind)
    if metric is None:
        logger.debug("Invalid metric in process row: %r", fields[layout.metric])
        return None
    if layout.command_rest:
        command = " ".join(fields[layout.command :])
    else:
        command = fields[layout.command]
    return ProcessEntry(pid=int(pid), name=display_name(command), metric=metric)


def rank(entries: list[ProcessEntry], limit: int = TOP_N) -> list[ProcessEntry]:
    """Stable descending sort by metric, capped at ``limit``."""
    return sorted(entries, key=lambda e: e.metric, reverse=True)[:limit]


def parse_process_listing(
    output: str, layout: ColumnLayout, limit: int = TOP_N
) -> list[ProcessEntry] | None:
    """Take the first ``limit`` data rows, skipping rows that fail validation."""
    lines = [line for line in output.splitlines() if line.strip()]
    if layout.pid_rows_only:
        rows = [line for line in lines if is_integer(line.split()[0])]
    else:
        rows = lines[1:]
    entries: list[ProcessEntry] = []
    for line in rows[:limit]:
        entry = parse_row(line, layout)
        if entry is not None:
            logger.debug(
                "Found process: PID=%d, Command=%s, Value=%s",
                entry.pid,
                entry.name,
                entry.metric,
            )
            entries.append(entry)
    return rank(entries, limit) or None


# ── psutil ──────────────────────────────────────────────────────────────────


def _psutil_processes(
    rank_by: RankBy, period: float, sleep: Callable[[float], None]
) -> list[ProcessEntry] | None:
    procs = list(psutil.process_iter(["pid", "name", "memory_info"]))
    if rank_by is RankBy.CPU:
        # First cpu_percent() call per process only primes the counter
        for proc in procs:
            try:
                proc.cpu_percent(None)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        sleep(period)

    entries: list[ProcessEntry] = []
    for proc in procs:
        try:
            info = proc.info
            if rank_by is RankBy.CPU:
                metric = float(proc.cpu_percent(None))
            else:
                mem = info.get("memory_info")
                if mem is None:
                    continue
                metric = kb_to_mb(mem.rss / 1024)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
        pid = info.get("pid") or 0
        if pid <= 0:
            continue
        entries.append(
            ProcessEntry(pid=pid, name=display_name(info.get("name") or "?"), metric=metric)
        )
    return rank(entries) or None


# ── Collector ───────────────────────────────────────────────────────────────


def _listing_candidate(layout: ColumnLayout) -> Candidate[list[ProcessEntry]]:
    def fetch(reader: SourceReader) -> list[ProcessEntry] | None:
        output = reader.run(list(layout.argv))
        return parse_process_listing(output, layout) if output is not None else None

    return Candidate(layout.label, fetch)


def process_candidates(
    rank_by: RankBy,
    platform: str = LINUX,
    *,
    psutil_fallback: bool = True,
    period: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> list[Candidate[list[ProcessEntry]]]:
    layouts = STRATEGIES.get((platform, rank_by), STRATEGIES[(LINUX, rank_by)])
    candidates = [_listing_candidate(layout) for layout in layouts]
    if psutil_fallback:

        def from_psutil(_reader: SourceReader) -> list[ProcessEntry] | None:
            try:
                return _psutil_processes(rank_by, period, sleep)
            except (psutil.Error, OSError) as e:
                logger.debug("psutil process scan failed: %s", e)
                return None

        candidates.append(Candidate("psutil", from_psutil))
    return candidates


def collect_top_processes(
    reader: SourceReader,
    rank_by: RankBy,
    platform: str = LINUX,
    *,
    psutil_fallback: bool = True,
    period: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> list[ProcessEntry]:
    """Up to five processes, heaviest first; empty when nothing worked."""
    logger.debug("Getting top %d processes by %s", TOP_N, rank_by.value)
    candidates = process_candidates(
        rank_by, platform, psutil_fallback=psutil_fallback, period=period, sleep=sleep
    )
    return first_success(f"top {rank_by.value} processes", candidates, reader) or []

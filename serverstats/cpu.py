"""CPU usage from two samples of cumulative tick counters."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable

import psutil

from serverstats.formatting import is_integer, is_number
from serverstats.models import CpuSnapshot
from serverstats.sources import DARWIN, LINUX, Candidate, SourceReader, first_success

logger = logging.getLogger(__name__)

PROC_STAT = "/proc/stat"

# user, nice, system, idle, iowait, irq, softirq, steal
_TICK_FIELDS = 8
_MIN_TICK_FIELDS = 4

_LINUX_TOP_RE = re.compile(
    r"%?Cpu\(s\):\s*([0-9.]+)\s*us,\s*([0-9.]+)\s*sy,.*?([0-9.]+)\s*id"
)
_DARWIN_TOP_RE = re.compile(
    r"CPU usage:\s*([0-9.]+)% user,\s*([0-9.]+)% sys,\s*([0-9.]+)% idle"
)


# ── /proc/stat ──────────────────────────────────────────────────────────────


def parse_cpu_line(line: str) -> CpuSnapshot | None:
    """Parse the aggregate ``cpu`` line into total and idle ticks.

    Guest columns past ``steal`` are already counted in user/nice and are
    ignored.
    """
    fields = line.split()
    values = fields[1 : 1 + _TICK_FIELDS]
    if len(values) < _MIN_TICK_FIELDS:
        logger.debug("Insufficient CPU statistics: %r", line.strip())
        return None
    if not all(is_integer(v) for v in values):
        logger.debug("Invalid CPU time value in: %r", line.strip())
        return None
    ticks = [int(v) for v in values]
    iowait = ticks[4] if len(ticks) > 4 else 0
    snapshot = CpuSnapshot(total=sum(ticks), idle=ticks[3] + iowait)
    logger.debug("CPU times - total: %d, idle: %d", snapshot.total, snapshot.idle)
    return snapshot


def read_cpu_snapshot(reader: SourceReader) -> CpuSnapshot | None:
    text = reader.read_file(PROC_STAT)
    if text is None:
        return None
    return parse_cpu_line(text.splitlines()[0])


def calculate_usage(before: CpuSnapshot, after: CpuSnapshot) -> float | None:
    """Busy share of the interval between two snapshots, clamped to 0-100."""
    total_delta = after.total - before.total
    idle_delta = after.idle - before.idle
    if total_delta <= 0:
        logger.warning("No CPU time difference detected, cannot calculate usage")
        return None
    usage = (total_delta - idle_delta) * 100 / total_delta
    return round(min(max(usage, 0.0), 100.0), 2)


def _sample(
    read: Callable[[], CpuSnapshot | None],
    period: float,
    sleep: Callable[[float], None],
) -> float | None:
    first = read()
    if first is None:
        return None
    sleep(period)
    second = read()
    if second is None:
        return None
    return calculate_usage(first, second)


# ── top ─────────────────────────────────────────────────────────────────────


def _clamp(value: float) -> float:
    return round(min(max(value, 0.0), 100.0), 2)


def parse_linux_top(output: str) -> float | None:
    """Usage from the last ``%Cpu(s):`` summary of ``top -b -n 2``."""
    matches = _LINUX_TOP_RE.findall(output)
    if not matches:
        logger.debug("No %%Cpu(s) summary line in top output")
        return None
    user, system, idle = matches[-1]
    if not (is_number(user) and is_number(system)):
        return None
    if is_number(idle):
        return _clamp(100.0 - float(idle))
    return _clamp(float(user) + float(system))


def parse_darwin_top(output: str) -> float | None:
    """Usage from the last ``CPU usage:`` summary of ``top -l 2``."""
    matches = _DARWIN_TOP_RE.findall(output)
    if not matches:
        logger.debug("No 'CPU usage' summary line in top output")
        return None
    user, system, _idle = matches[-1]
    if not (is_number(user) and is_number(system)):
        return None
    return _clamp(float(user) + float(system))


def _top_command(platform: str, period: float) -> list[str]:
    interval = f"{period:g}"
    if platform == DARWIN:
        return ["top", "-l", "2", "-n", "0", "-s", interval]
    return ["top", "-b", "-n", "2", "-d", interval]


_TOP_PARSERS: dict[str, Callable[[str], float | None]] = {
    LINUX: parse_linux_top,
    DARWIN: parse_darwin_top,
}


# ── psutil ──────────────────────────────────────────────────────────────────


def _psutil_snapshot() -> CpuSnapshot | None:
    try:
        times = psutil.cpu_times()
    except (psutil.Error, OSError) as e:
        logger.debug("psutil.cpu_times failed: %s", e)
        return None
    names = ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal")
    total = sum(getattr(times, name, 0.0) for name in names)
    idle = times.idle + getattr(times, "iowait", 0.0)
    return CpuSnapshot(total=total, idle=idle)


# ── Collector ───────────────────────────────────────────────────────────────


def cpu_candidates(
    platform: str,
    period: float,
    *,
    psutil_fallback: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> list[Candidate[float]]:
    top_parser = _TOP_PARSERS.get(platform, parse_linux_top)

    def from_proc_stat(reader: SourceReader) -> float | None:
        return _sample(lambda: read_cpu_snapshot(reader), period, sleep)

    def from_top(reader: SourceReader) -> float | None:
        output = reader.run(_top_command(platform, period))
        return top_parser(output) if output is not None else None

    def from_psutil(_reader: SourceReader) -> float | None:
        return _sample(_psutil_snapshot, period, sleep)

    candidates = [
        Candidate(PROC_STAT, from_proc_stat),
        Candidate("top", from_top),
    ]
    if psutil_fallback:
        candidates.append(Candidate("psutil", from_psutil))
    return candidates


def collect_cpu_usage(
    reader: SourceReader,
    platform: str = LINUX,
    period: float = 1.0,
    *,
    psutil_fallback: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> float | None:
    """CPU usage percentage over one sampling period, or None."""
    logger.debug("Getting CPU usage with %ss sampling period", f"{period:g}")
    candidates = cpu_candidates(
        platform, period, psutil_fallback=psutil_fallback, sleep=sleep
    )
    return first_success("CPU usage", candidates, reader)

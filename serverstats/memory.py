"""Memory usage from /proc/meminfo, ``free`` or psutil."""

from __future__ import annotations

import logging

import psutil

from serverstats.formatting import is_integer
from serverstats.models import MemoryUsage
from serverstats.sources import Candidate, SourceReader, first_success

logger = logging.getLogger(__name__)

PROC_MEMINFO = "/proc/meminfo"
KIB = 1024


def _percent(part: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(part * 100 / total, 2)


def build_usage(total: int, used: int, available: int) -> MemoryUsage:
    """Normalized result in bytes; percentages are computed independently."""
    return MemoryUsage(
        total_bytes=total,
        used_bytes=used,
        available_bytes=available,
        used_percent=_percent(used, total),
        available_percent=_percent(available, total),
    )


# ── /proc/meminfo ───────────────────────────────────────────────────────────


def _meminfo_fields(text: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for line in text.splitlines():
        label, sep, rest = line.partition(":")
        values = rest.split()
        if sep and values:
            fields[label.strip()] = values[0]
    return fields


def parse_meminfo(text: str) -> MemoryUsage | None:
    """Parse /proc/meminfo, accounting for reclaimable buffers and cache."""
    fields = _meminfo_fields(text)
    total = fields.get("MemTotal", "")
    free = fields.get("MemFree", "")
    if not is_integer(total):
        logger.debug("Invalid or missing MemTotal value")
        return None
    if not is_integer(free):
        logger.debug("Invalid or missing MemFree value")
        return None

    def optional(label: str) -> int:
        value = fields.get(label, "0")
        return int(value) if is_integer(value) else 0

    total_kb = int(total)
    available = fields.get("MemAvailable", "")
    if is_integer(available):
        available_kb = int(available)
        used_kb = total_kb - available_kb
        logger.debug("Using MemAvailable: used = %d - %d", total_kb, available_kb)
    else:
        used_kb = (
            total_kb
            - int(free)
            - optional("Buffers")
            - optional("Cached")
            - optional("Slab")
        )
        available_kb = total_kb - used_kb
        logger.debug("No MemAvailable, used = total - free - buffers - cached - slab")

    if used_kb < 0:
        logger.warning("Calculated negative memory usage, adjusting to 0")
        used_kb = 0

    return build_usage(total_kb * KIB, used_kb * KIB, available_kb * KIB)


# ── free ────────────────────────────────────────────────────────────────────


def parse_free(
    output: str, multiplier: int, *, available_column: bool
) -> MemoryUsage | None:
    """Parse the ``Mem:`` row of ``free``.

    With ``available_column`` the 7th field is read as available memory
    (procps >= 3.3.10); without it, free memory stands in for available.
    """
    row = next((line for line in output.splitlines() if line.startswith("Mem:")), None)
    if row is None:
        logger.debug("No 'Mem:' row in free output")
        return None
    fields = row.split()
    if len(fields) < 4:
        return None
    total, used, free = fields[1], fields[2], fields[3]
    if not (is_integer(total) and is_integer(used)):
        logger.debug("Invalid total/used memory in free output: %r", row)
        return None

    if available_column:
        # procps < 3.3.10 also has 7 columns, the last one being "cached"
        if len(fields) < 7 or "available" not in output.splitlines()[0]:
            logger.debug("free output has no available column")
            return None
        available = fields[6]
        if is_integer(available):
            available_units = int(available)
        else:
            available_units = int(total) - int(used)
    else:
        if not is_integer(free):
            return None
        available_units = int(free)

    return build_usage(
        int(total) * multiplier, int(used) * multiplier, available_units * multiplier
    )


# ── psutil ──────────────────────────────────────────────────────────────────


def _from_psutil(_reader: SourceReader) -> MemoryUsage | None:
    try:
        vm = psutil.virtual_memory()
    except (psutil.Error, OSError) as e:
        logger.debug("psutil.virtual_memory failed: %s", e)
        return None
    total = int(vm.total)
    available = int(vm.available)
    return build_usage(total, max(total - available, 0), available)


# ── Collector ───────────────────────────────────────────────────────────────


def _free_candidate(
    argv: list[str], multiplier: int, available_column: bool, label: str
) -> Candidate[MemoryUsage]:
    def fetch(reader: SourceReader) -> MemoryUsage | None:
        output = reader.run(argv)
        if output is None:
            return None
        return parse_free(output, multiplier, available_column=available_column)

    return Candidate(label, fetch)


def _from_meminfo(reader: SourceReader) -> MemoryUsage | None:
    text = reader.read_file(PROC_MEMINFO)
    return parse_meminfo(text) if text is not None else None


def memory_candidates(*, psutil_fallback: bool = True) -> list[Candidate[MemoryUsage]]:
    candidates = [
        Candidate(PROC_MEMINFO, _from_meminfo),
        _free_candidate(["free", "-b"], 1, True, "free -b"),
        _free_candidate(["free", "-k"], KIB, True, "free -k"),
        _free_candidate(["free", "-k"], KIB, False, "free -k (no available column)"),
        _free_candidate(["free"], KIB, False, "free"),
    ]
    if psutil_fallback:
        candidates.append(Candidate("psutil", _from_psutil))
    return candidates


def collect_memory_usage(
    reader: SourceReader, *, psutil_fallback: bool = True
) -> MemoryUsage | None:
    return first_success(
        "memory usage", memory_candidates(psutil_fallback=psutil_fallback), reader
    )

"""Disk usage of one filesystem from ``df`` or psutil."""

from __future__ import annotations

import logging
import re

import psutil

from serverstats.formatting import is_integer, is_number
from serverstats.models import DiskUsage
from serverstats.sources import Candidate, SourceReader, first_success

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 10.0  # percent of total attributable to reserved blocks

_BLOCK_HEADER_RE = re.compile(r"\b([0-9]+)([KMG]?)-blocks\b")
_SUFFIX = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3}


def declared_block_size(header: str, default: int) -> int:
    """Block size announced in a df header (``1K-blocks``, ``512-blocks``)."""
    match = _BLOCK_HEADER_RE.search(header)
    if match is None:
        return default
    return int(match.group(1)) * _SUFFIX[match.group(2)]


def parse_df_line(line: str, block_size: int = 1024, path: str = "/") -> DiskUsage | None:
    """Parse one df data line into bytes.

    When the filesystem name is too long, df wraps it onto its own line and
    the data line starts directly with the total.
    """
    fields = line.split()
    if len(fields) < 4:
        logger.debug("Insufficient fields in df output: %d (expected at least 4)", len(fields))
        return None
    if is_integer(fields[0]):
        total, used, available, percent = fields[0:4]
    elif len(fields) >= 5:
        total, used, available, percent = fields[1:5]
    else:
        logger.debug("Unexpected df output format: %r", line)
        return None

    for label, value in (("total", total), ("used", used), ("available", available)):
        if not is_integer(value):
            logger.debug("Invalid %s field in df output: %r", label, value)
            return None

    total_bytes = int(total) * block_size
    used_bytes = int(used) * block_size
    available_bytes = int(available) * block_size

    percent = percent.rstrip("%")
    if is_number(percent):
        used_percent = float(percent)
    else:
        logger.debug("Invalid usage percentage %r, calculating from totals", percent)
        used_percent = round(used_bytes * 100 / total_bytes, 1) if total_bytes else 0.0

    return DiskUsage(
        path=path,
        total_bytes=total_bytes,
        used_bytes=used_bytes,
        available_bytes=available_bytes,
        used_percent=used_percent,
    )


def parse_df(output: str, default_block_size: int, path: str = "/") -> DiskUsage | None:
    lines = [line for line in output.splitlines() if line.strip()]
    if len(lines) < 2:
        logger.debug("df output has no data line")
        return None
    block_size = declared_block_size(lines[0], default_block_size)
    logger.debug("Parsing df output with %d-byte blocks", block_size)
    return parse_df_line(lines[-1], block_size, path)


def check_consistency(usage: DiskUsage, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    """Warn when used + available strays too far from total."""
    if usage.total_bytes <= 0:
        return True
    accounted = usage.used_bytes + usage.available_bytes
    difference = abs(usage.total_bytes - accounted) * 100 / usage.total_bytes
    if difference > tolerance:
        logger.warning(
            "Disk usage values seem inconsistent: total=%d, used+available=%d "
            "(%.2f%% difference)",
            usage.total_bytes,
            accounted,
            difference,
        )
        return False
    return True


def check_filesystem(reader: SourceReader, path: str) -> bool:
    if not path:
        logger.warning("No filesystem specified")
        return False
    if not reader.exists(path):
        logger.warning("Filesystem path does not exist: %s", path)
        return False
    if not reader.is_readable(path):
        logger.warning("No read access to filesystem: %s", path)
        return False
    if reader.run(["df", path]) is None:
        logger.warning("Filesystem is not accessible or not mounted: %s", path)
        return False
    return True


# ── Collector ───────────────────────────────────────────────────────────────


def _df_candidate(argv: list[str], block_size: int, path: str) -> Candidate[DiskUsage]:
    def fetch(reader: SourceReader) -> DiskUsage | None:
        output = reader.run(argv)
        return parse_df(output, block_size, path) if output is not None else None

    return Candidate(" ".join(argv), fetch)


def disk_candidates(path: str, *, psutil_fallback: bool = True) -> list[Candidate[DiskUsage]]:
    def from_psutil(_reader: SourceReader) -> DiskUsage | None:
        try:
            du = psutil.disk_usage(path)
        except (psutil.Error, OSError) as e:
            logger.debug("psutil.disk_usage failed: %s", e)
            return None
        return DiskUsage(
            path=path,
            total_bytes=int(du.total),
            used_bytes=int(du.used),
            available_bytes=int(du.free),
            used_percent=float(du.percent),
        )

    candidates = [
        _df_candidate(["df", "-P", path], 512, path),
        _df_candidate(["df", "-k", path], 1024, path),
        _df_candidate(["df", path], 1024, path),
    ]
    if psutil_fallback:
        candidates.append(Candidate("psutil", from_psutil))
    return candidates


def collect_disk_usage(
    reader: SourceReader,
    path: str = "/",
    *,
    tolerance: float = DEFAULT_TOLERANCE,
    psutil_fallback: bool = True,
) -> DiskUsage | None:
    logger.debug("Getting disk usage for filesystem: %s", path)
    if not check_filesystem(reader, path):
        logger.warning("Cannot access filesystem: %s", path)
        return None
    usage = first_success(
        "disk usage", disk_candidates(path, psutil_fallback=psutil_fallback), reader
    )
    if usage is not None:
        check_consistency(usage, tolerance)
    return usage

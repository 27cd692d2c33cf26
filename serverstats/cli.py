"""Command-line entry point: collect one snapshot, print the report, exit.

Usage:
    server-stats [-d] [--config PATH] [--interval SECONDS] [--path PATH]
    server-stats --dump-config
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from serverstats.config import dump_default_config, is_duration, load_config, validate_config
from serverstats.cpu import collect_cpu_usage
from serverstats.disk import collect_disk_usage
from serverstats.memory import collect_memory_usage
from serverstats.models import CORE_METRICS, CollectionSummary, Snapshot
from serverstats.processes import RankBy, collect_top_processes
from serverstats.report import render_report
from serverstats.sources import SourceReader, detect_platform
from serverstats.sysinfo import (
    collect_failed_logins,
    collect_system_info,
    collect_user_info,
)

__version__ = "1.0.0"

logger = logging.getLogger("serverstats")


def sampling_period(value: str) -> float:
    try:
        period = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from None
    if not is_duration(period):
        raise argparse.ArgumentTypeError(f"must be a non-negative number of seconds: {value!r}")
    return period


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="server-stats",
        description="Print a one-shot snapshot of CPU, memory, disk and process usage.",
    )
    parser.add_argument(
        "-d", "--debug", action="store_true",
        help="Write diagnostic messages to stderr",
    )
    parser.add_argument(
        "-v", "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config", type=Path, default=None,
        help="Path to TOML config file (default: ~/.config/server-stats/config.toml)",
    )
    parser.add_argument(
        "--interval", type=sampling_period, default=None,
        help="CPU sampling period in seconds (default: from config, 1.0)",
    )
    parser.add_argument(
        "--path", default=None,
        help="Filesystem to report disk usage for (default: from config, /)",
    )
    parser.add_argument(
        "--dump-config", action="store_true",
        help="Print the default configuration as TOML and exit",
    )
    return parser


def configure_logging(debug: bool = False) -> None:
    """Send diagnostics to stderr so stdout carries only the report."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    logger.propagate = False


def collect_snapshot(
    reader: SourceReader,
    config: dict[str, Any],
    platform: str,
    sleep: Callable[[float], None] = time.sleep,
) -> Snapshot:
    """Run every collector once, in order, and time the whole pass."""
    start = time.monotonic()
    period = float(config["cpu"]["sampling_period"])
    disk_path = str(config["disk"]["path"])
    use_psutil = bool(config["psutil_fallback"])

    snapshot = Snapshot(disk_path=disk_path)
    snapshot.cpu_usage = collect_cpu_usage(
        reader, platform, period, psutil_fallback=use_psutil, sleep=sleep
    )
    snapshot.memory = collect_memory_usage(reader, psutil_fallback=use_psutil)
    snapshot.disk = collect_disk_usage(
        reader,
        disk_path,
        tolerance=float(config["disk"]["reserved_tolerance"]),
        psutil_fallback=use_psutil,
    )
    snapshot.cpu_processes = collect_top_processes(
        reader, RankBy.CPU, platform, psutil_fallback=use_psutil, period=period, sleep=sleep
    )
    snapshot.memory_processes = collect_top_processes(
        reader, RankBy.MEMORY, platform, psutil_fallback=use_psutil
    )
    snapshot.system = collect_system_info(reader, platform, psutil_fallback=use_psutil)
    snapshot.users = collect_user_info(reader, psutil_fallback=use_psutil)
    snapshot.failed_logins = collect_failed_logins(
        reader, config["logins"]["log_files"]
    )
    snapshot.elapsed = time.monotonic() - start
    return snapshot


def run(
    argv: Sequence[str] | None = None,
    reader: SourceReader | None = None,
    platform: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    args = build_parser().parse_args(argv)

    if args.dump_config:
        print(dump_default_config(), end="")
        return 0

    configure_logging(args.debug)
    config = load_config(args.config)
    if args.interval is not None:
        config["cpu"] = {**config["cpu"], "sampling_period": args.interval}
    if args.path is not None:
        config["disk"] = {**config["disk"], "path": args.path}
    validate_config(config)

    platform = platform or detect_platform()
    reader = reader or SourceReader(timeout=float(config["command_timeout"]))
    logger.debug("Collecting server statistics on %s", platform)

    snapshot = collect_snapshot(reader, config, platform, sleep)
    summary = CollectionSummary.from_snapshot(snapshot)
    print(render_report(snapshot, width=int(config["report"]["width"])), end="")

    if summary.failed:
        logger.warning(
            "%d of %d core metrics unavailable: %s",
            summary.failed_count,
            len(CORE_METRICS),
            ", ".join(summary.failed),
        )
    return summary.exit_code(int(config["failure_threshold"]))


def main() -> None:
    raise SystemExit(run())


if __name__ == "__main__":
    main()

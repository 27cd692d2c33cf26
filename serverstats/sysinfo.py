"""OS, uptime, load average, logged-in users and failed logins.

Each field resolves on its own; a missing one never blocks the others.
"""

from __future__ import annotations

import datetime
import logging
import re
import time
from collections.abc import Iterable, Sequence

import psutil

from serverstats.formatting import format_uptime, is_number
from serverstats.models import FailedLogins, SystemInfo, UserInfo
from serverstats.sources import DARWIN, LINUX, Candidate, SourceReader, first_success

logger = logging.getLogger(__name__)

OS_RELEASE = "/etc/os-release"
# (path, prefix) for distributions without os-release
RELEASE_FILES = (
    ("/etc/redhat-release", ""),
    ("/etc/debian_version", "Debian "),
    ("/etc/alpine-release", ""),
    ("/etc/arch-release", ""),
)
PROC_UPTIME = "/proc/uptime"
PROC_LOADAVG = "/proc/loadavg"

MAX_LISTED_USERS = 5

DEFAULT_LOG_FILES = (
    "/var/log/auth.log",
    "/var/log/secure",
    "/var/log/messages",
    "/var/log/authlog",
)
FAILURE_PATTERNS = (
    "Failed password",
    "authentication failure",
    "Invalid user",
    "Failed login",
    "Connection closed by authenticating user",
)
_FAILURE_RE = re.compile("|".join(re.escape(p) for p in FAILURE_PATTERNS), re.IGNORECASE)
JOURNALCTL = ("journalctl", "--since", "24 hours ago", "--no-pager", "-q")

_UPTIME_RE = re.compile(r"\bup\s+(.+?),\s+(?:\d+\s+users?|load averages?)")
_LOAD_RE = re.compile(
    r"load averages?:\s*([0-9.]+),?\s+([0-9.]+),?\s+([0-9.]+)"
)


# ── OS label ────────────────────────────────────────────────────────────────


def parse_os_release(text: str) -> str | None:
    """``PRETTY_NAME``, else ``NAME VERSION_ID``."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip().strip("\"'")
    if values.get("PRETTY_NAME"):
        return values["PRETTY_NAME"]
    name = values.get("NAME")
    if not name:
        return None
    version = values.get("VERSION_ID")
    return f"{name} {version}" if version else name


def _first_line(text: str | None) -> str | None:
    if text is None:
        return None
    lines = text.strip().splitlines()
    return lines[0].strip() if lines else None


def os_candidates(platform: str = LINUX) -> list[Candidate[str]]:
    def from_os_release(reader: SourceReader) -> str | None:
        text = reader.read_file(OS_RELEASE)
        return parse_os_release(text) if text is not None else None

    def release_file(path: str, prefix: str) -> Candidate[str]:
        def fetch(reader: SourceReader) -> str | None:
            line = _first_line(reader.read_file(path))
            return f"{prefix}{line}" if line else None

        return Candidate(path, fetch)

    def from_sw_vers(reader: SourceReader) -> str | None:
        name = _first_line(reader.run(["sw_vers", "-productName"]))
        version = _first_line(reader.run(["sw_vers", "-productVersion"]))
        if not name:
            return None
        return f"{name} {version}" if version else name

    def from_uname(reader: SourceReader) -> str | None:
        return _first_line(reader.run(["uname", "-sr"]))

    candidates = [Candidate(OS_RELEASE, from_os_release)]
    candidates += [release_file(path, prefix) for path, prefix in RELEASE_FILES]
    if platform == DARWIN:
        candidates.append(Candidate("sw_vers", from_sw_vers))
    candidates.append(Candidate("uname -sr", from_uname))
    return candidates


# ── Uptime and load ─────────────────────────────────────────────────────────


def parse_proc_uptime(text: str) -> str | None:
    fields = text.split()
    if not fields or not is_number(fields[0]):
        logger.debug("Invalid uptime seconds in %s", PROC_UPTIME)
        return None
    return format_uptime(float(fields[0]))


def parse_uptime_command(output: str) -> str | None:
    """The ``up ...`` part of ``uptime``: ``15 days, 3:42``."""
    match = _UPTIME_RE.search(output)
    if match is None:
        return None
    return " ".join(match.group(1).split()) or None


def parse_loadavg(text: str) -> str | None:
    fields = text.split()
    if len(fields) < 3 or not all(is_number(v) for v in fields[:3]):
        logger.debug("Invalid load values in %s", PROC_LOADAVG)
        return None
    return ", ".join(fields[:3])


def parse_uptime_load(output: str) -> str | None:
    """Load triple from ``load average:`` (Linux) or ``load averages:`` (macOS)."""
    match = _LOAD_RE.search(output)
    if match is None:
        return None
    return ", ".join(match.groups())


def uptime_candidates(*, psutil_fallback: bool = True) -> list[Candidate[str]]:
    def from_proc(reader: SourceReader) -> str | None:
        text = reader.read_file(PROC_UPTIME)
        return parse_proc_uptime(text) if text is not None else None

    def from_command(reader: SourceReader) -> str | None:
        output = reader.run(["uptime"])
        return parse_uptime_command(output) if output is not None else None

    def from_psutil(_reader: SourceReader) -> str | None:
        try:
            boot = psutil.boot_time()
        except (psutil.Error, OSError) as e:
            logger.debug("psutil.boot_time failed: %s", e)
            return None
        return format_uptime(max(time.time() - boot, 0.0))

    candidates = [Candidate(PROC_UPTIME, from_proc), Candidate("uptime", from_command)]
    if psutil_fallback:
        candidates.append(Candidate("psutil", from_psutil))
    return candidates


def load_candidates(*, psutil_fallback: bool = True) -> list[Candidate[str]]:
    def from_proc(reader: SourceReader) -> str | None:
        text = reader.read_file(PROC_LOADAVG)
        return parse_loadavg(text) if text is not None else None

    def from_command(reader: SourceReader) -> str | None:
        output = reader.run(["uptime"])
        return parse_uptime_load(output) if output is not None else None

    def from_psutil(_reader: SourceReader) -> str | None:
        try:
            loads = psutil.getloadavg()
        except (psutil.Error, OSError, AttributeError) as e:
            logger.debug("psutil.getloadavg failed: %s", e)
            return None
        return ", ".join(f"{v:.2f}" for v in loads)

    candidates = [Candidate(PROC_LOADAVG, from_proc), Candidate("uptime", from_command)]
    if psutil_fallback:
        candidates.append(Candidate("psutil", from_psutil))
    return candidates


def collect_system_info(
    reader: SourceReader, platform: str = LINUX, *, psutil_fallback: bool = True
) -> SystemInfo:
    logger.debug("Collecting system information")
    return SystemInfo(
        os_label=first_success("OS version", os_candidates(platform), reader),
        uptime_label=first_success(
            "uptime", uptime_candidates(psutil_fallback=psutil_fallback), reader
        ),
        load_average_label=first_success(
            "load average", load_candidates(psutil_fallback=psutil_fallback), reader
        ),
    )


# ── Users ───────────────────────────────────────────────────────────────────


def build_user_info(names: Iterable[str]) -> UserInfo | None:
    unique = sorted({name for name in names if name})
    if not unique:
        return None
    listed = tuple(unique[:MAX_LISTED_USERS])
    return UserInfo(count=len(unique), names=listed, overflow=len(unique) - len(listed))


def first_column(output: str) -> list[str]:
    return [line.split()[0] for line in output.splitlines() if line.strip()]


def user_candidates(*, psutil_fallback: bool = True) -> list[Candidate[UserInfo]]:
    def column_source(argv: Sequence[str]) -> Candidate[UserInfo]:
        def fetch(reader: SourceReader) -> UserInfo | None:
            output = reader.run(list(argv))
            return build_user_info(first_column(output)) if output is not None else None

        return Candidate(" ".join(argv), fetch)

    def from_users(reader: SourceReader) -> UserInfo | None:
        output = reader.run(["users"])
        return build_user_info(output.split()) if output is not None else None

    def from_psutil(_reader: SourceReader) -> UserInfo | None:
        try:
            sessions = psutil.users()
        except (psutil.Error, OSError) as e:
            logger.debug("psutil.users failed: %s", e)
            return None
        return build_user_info(s.name for s in sessions)

    candidates = [
        column_source(["who"]),
        column_source(["w", "-h"]),
        Candidate("users", from_users),
    ]
    if psutil_fallback:
        candidates.append(Candidate("psutil", from_psutil))
    return candidates


def collect_user_info(
    reader: SourceReader, *, psutil_fallback: bool = True
) -> UserInfo | None:
    return first_success(
        "logged-in users", user_candidates(psutil_fallback=psutil_fallback), reader
    )


# ── Failed logins ───────────────────────────────────────────────────────────


def date_stamps(today: datetime.date) -> tuple[str, ...]:
    """How ``today`` appears in a log line: syslog (``Oct  8``) or ISO."""
    return (f"{today:%b} {today.day:>2}", today.isoformat())


def count_failures(lines: Iterable[str], stamps: Sequence[str] = ()) -> int:
    """Lines matching a failure pattern and, if given, one of ``stamps``."""
    count = 0
    for line in lines:
        if not _FAILURE_RE.search(line):
            continue
        if stamps and not any(stamp in line for stamp in stamps):
            continue
        count += 1
    return count


def collect_failed_logins(
    reader: SourceReader,
    log_files: Sequence[str] = DEFAULT_LOG_FILES,
    today: datetime.date | None = None,
) -> FailedLogins:
    """Failed login attempts today, from the first readable auth log.

    Falls back to ``journalctl`` over the last 24 hours. When neither
    resolves, a log file that exists but cannot be read is reported as a
    permission problem.
    """
    logger.debug("Getting recent failed login attempts")
    stamps = date_stamps(today or datetime.date.today())

    for path in log_files:
        if not reader.is_readable(path):
            logger.debug("%s is not readable or does not exist", path)
            continue
        lines = reader.iter_lines(path)
        if lines is None:
            continue
        count = count_failures(lines, stamps)
        logger.debug("Found %d failed attempts in %s", count, path)
        return FailedLogins(count=count, source=path)

    output = reader.run(list(JOURNALCTL))
    if output is not None:
        count = count_failures(output.splitlines())
        logger.debug("Found %d failed attempts from journalctl", count)
        return FailedLogins(count=count, source="journalctl")

    restricted = [p for p in log_files if reader.exists(p) and not reader.is_readable(p)]
    if restricted:
        logger.warning(
            "Failed login information requires elevated privileges to access log files"
        )
        return FailedLogins(permission_denied=True)
    logger.warning("No accessible log files found for failed login attempts")
    return FailedLogins()

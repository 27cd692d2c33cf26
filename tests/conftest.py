"""Shared fixtures: a SourceReader that serves canned files and command output."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable, Iterator, Sequence
from typing import Any

import pytest

from serverstats.sources import SourceReader


class FakeReader(SourceReader):
    """In-memory stand-in for the host.

    ``files`` and ``commands`` map a path or a space-joined argv to its text.
    A list value is served one item per read, repeating the last item.
    Anything not listed is absent.
    """

    def __init__(
        self,
        files: dict[str, Any] | None = None,
        commands: dict[str, Any] | None = None,
        dirs: Sequence[str] = (),
        unreadable: Sequence[str] = (),
    ) -> None:
        super().__init__(timeout=1.0)
        self.files = {k: list(v) if isinstance(v, list) else v for k, v in (files or {}).items()}
        self.commands = {
            k: list(v) if isinstance(v, list) else v for k, v in (commands or {}).items()
        }
        self.dirs = set(dirs)
        self.unreadable = set(unreadable)
        self.calls: list[str] = []

    @staticmethod
    def _serve(table: dict[str, Any], key: str) -> str | None:
        value = table.get(key)
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if value is None or not value.strip():
            return None
        return value

    def read_file(self, path: str) -> str | None:
        if path in self.unreadable:
            return None
        return self._serve(self.files, path)

    def iter_lines(self, path: str) -> Iterator[str] | None:
        if path in self.unreadable:
            return None
        text = self._serve(self.files, path)
        return iter(text.splitlines(keepends=True)) if text is not None else None

    def run(self, argv: Sequence[str]) -> str | None:
        key = " ".join(argv)
        self.calls.append(key)
        return self._serve(self.commands, key)

    def exists(self, path: str) -> bool:
        return path in self.files or path in self.dirs or path in self.unreadable

    def is_readable(self, path: str) -> bool:
        return self.exists(path) and path not in self.unreadable


# ── Canned Linux host ──────────────────────────────────────────────────────

PROC_STAT_SAMPLES = [
    "cpu  100 0 100 700 100 0 0 0 0 0\ncpu0 50 0 50 350 50 0 0 0 0 0\n",
    "cpu  500 0 500 800 200 0 0 0 0 0\ncpu0 250 0 250 400 100 0 0 0 0 0\n",
]

MEMINFO = """\
MemTotal:       16384000 kB
MemFree:         2048000 kB
MemAvailable:    8192000 kB
Buffers:          512000 kB
Cached:          4096000 kB
Slab:             256000 kB
"""

DF_P = """\
Filesystem     1024-blocks     Used Available Capacity Mounted on
/dev/sda1        102400000 40960000  61440000      40% /
"""

PS_AUX_CPU = """\
USER         PID %CPU %MEM    VSZ   RSS TTY      STAT START   TIME COMMAND
root        1234 25.0  1.0 100000 204800 ?       Ssl  10:00   0:10 /usr/bin/python3 app.py
www         2345 12.5  0.5  50000 102400 ?       S    10:00   0:05 /usr/sbin/nginx -g daemon
root           2  7.0  0.0      0      0 ?       S    10:00   0:00 [kworker/0:1-events_unbound]
mysql       3456  3.2  8.0 900000 819200 ?       Sl   10:00   1:00 /usr/sbin/mysqld
root           1  0.1  0.1  20000   4096 ?       Ss   10:00   0:01 /sbin/init
root          99  0.0  0.0  10000   1024 ?       S    10:00   0:00 /usr/bin/sleep 60
"""

PS_AUX_MEM = """\
USER         PID %CPU %MEM    VSZ   RSS TTY      STAT START   TIME COMMAND
mysql       3456  3.2  8.0 900000 819200 ?       Sl   10:00   1:00 /usr/sbin/mysqld
root        1234 25.0  1.0 100000 204800 ?       Ssl  10:00   0:10 /usr/bin/python3 app.py
www         2345 12.5  0.5  50000 102400 ?       S    10:00   0:05 /usr/sbin/nginx -g daemon
root           1  0.1  0.1  20000   4096 ?       Ss   10:00   0:01 /sbin/init
root          99  0.0  0.0  10000   1024 ?       S    10:00   0:00 /usr/bin/sleep 60
"""

OS_RELEASE = 'NAME="Ubuntu"\nVERSION_ID="22.04"\nPRETTY_NAME="Ubuntu 22.04.3 LTS"\n'

WHO = """\
alice    pts/0        2026-10-18 09:00 (10.0.0.5)
bob      pts/1        2026-10-18 09:30 (10.0.0.6)
alice    pts/2        2026-10-18 10:00 (10.0.0.5)
"""


def auth_log(today: datetime.date) -> str:
    stamp = f"{today:%b} {today.day:>2}"
    return (
        f"{stamp} 10:00:01 host sshd[100]: Failed password for root from 1.2.3.4 port 22 ssh2\n"
        f"{stamp} 10:00:05 host sshd[101]: Invalid user admin from 1.2.3.4 port 22\n"
        f"{stamp} 10:01:00 host sshd[102]: Accepted publickey for alice from 10.0.0.5\n"
        "2001-01-01T00:00:01 host sshd[1]: Failed password for root from 5.6.7.8 port 22 ssh2\n"
    )


def linux_host() -> FakeReader:
    return FakeReader(
        files={
            "/proc/stat": list(PROC_STAT_SAMPLES),
            "/proc/meminfo": MEMINFO,
            "/proc/uptime": "273600.50 1000000.00\n",
            "/proc/loadavg": "0.50 0.40 0.30 1/123 4567\n",
            "/etc/os-release": OS_RELEASE,
            "/var/log/auth.log": auth_log(datetime.date.today()),
        },
        commands={
            "df /": DF_P,
            "df -P /": DF_P,
            "ps aux --sort=-%cpu": PS_AUX_CPU,
            "ps aux --sort=-%mem": PS_AUX_MEM,
            "who": WHO,
        },
        dirs=["/"],
    )


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    """Undo cli.configure_logging so caplog keeps seeing records."""
    root = logging.getLogger("serverstats")
    saved = (root.handlers[:], root.level, root.propagate)
    yield
    root.handlers[:], root.level, root.propagate = saved


@pytest.fixture
def linux_reader() -> FakeReader:
    return linux_host()


@pytest.fixture
def host_factory() -> Callable[[], FakeReader]:
    return linux_host


@pytest.fixture
def empty_reader() -> FakeReader:
    return FakeReader()


@pytest.fixture
def fake_reader() -> type[FakeReader]:
    return FakeReader


@pytest.fixture
def cpu_memory_reader() -> FakeReader:
    """Only /proc/stat and /proc/meminfo: three of five core metrics fail."""
    return FakeReader(
        files={"/proc/stat": list(PROC_STAT_SAMPLES), "/proc/meminfo": MEMINFO}
    )

"""Reading system data sources and walking fallback chains.

A source is either a pseudo-file (``/proc/stat``) or the captured output of
an external command (``df -P /``). Collectors only ever see text or ``None``;
why a source failed is logged here and nowhere else.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import sys
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Generic, TextIO, TypeVar

logger = logging.getLogger(__name__)

LINUX = "linux"
DARWIN = "darwin"

DEFAULT_TIMEOUT = 10.0

T = TypeVar("T")


def detect_platform() -> str:
    """Platform tag used to pick command syntax and column layouts."""
    return DARWIN if sys.platform == "darwin" else LINUX


class SourceReader:
    """Read pseudo-files and run commands, reporting failure as ``None``."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    def read_file(self, path: str) -> str | None:
        try:
            with open(path, encoding="utf-8", errors="replace") as f:
                text = f.read()
        except FileNotFoundError:
            logger.debug("%s does not exist", path)
            return None
        except OSError as e:
            logger.debug("%s is not readable: %s", path, e)
            return None
        if not text.strip():
            logger.debug("%s is empty", path)
            return None
        return text

    def iter_lines(self, path: str) -> Iterator[str] | None:
        """Lines of a possibly large file, read lazily; None if it cannot be opened."""
        try:
            f = open(path, encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug("%s is not readable: %s", path, e)
            return None
        return _stream(f, path)

    def run(self, argv: Sequence[str]) -> str | None:
        cmd = " ".join(shlex.quote(a) for a in argv)
        if shutil.which(argv[0]) is None:
            logger.debug("Command '%s' is not available", argv[0])
            return None
        logger.debug("Running: %s", cmd)
        try:
            result = subprocess.run(
                list(argv),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
                env={**os.environ, "LC_ALL": "C"},
                check=False,
            )
        except FileNotFoundError:
            logger.debug("Command '%s' not found", argv[0])
            return None
        except subprocess.TimeoutExpired:
            logger.debug("'%s' timed out after %.1fs", cmd, self.timeout)
            return None
        except OSError as e:
            logger.debug("'%s' could not be started: %s", cmd, e)
            return None
        if result.returncode != 0:
            logger.debug("'%s' exited with status %d", cmd, result.returncode)
            return None
        if not result.stdout.strip():
            logger.debug("'%s' produced no output", cmd)
            return None
        return result.stdout

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def is_readable(self, path: str) -> bool:
        return os.access(path, os.R_OK)


def _stream(f: TextIO, path: str) -> Iterator[str]:
    with f:
        try:
            yield from f
        except OSError as e:
            logger.debug("Stopped reading %s: %s", path, e)


# ── Fallback chains ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Candidate(Generic[T]):
    """One way of obtaining a metric: a label and a fetch function."""

    name: str
    fetch: Callable[[SourceReader], T | None]


def first_success(
    metric: str,
    candidates: Iterable[Candidate[T]],
    reader: SourceReader,
) -> T | None:
    """Try each candidate once, in order; return the first usable result."""
    for candidate in candidates:
        logger.debug("%s: trying %s", metric, candidate.name)
        result = candidate.fetch(reader)
        if result is not None:
            logger.debug("%s: resolved via %s", metric, candidate.name)
            return result
        logger.debug("%s: %s failed, falling back", metric, candidate.name)
    logger.warning("All %s collection methods failed", metric)
    return None

"""Tests for serverstats.memory."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from serverstats.memory import (
    build_usage,
    collect_memory_usage,
    parse_free,
    parse_meminfo,
)

MEMINFO_NO_AVAILABLE = """\
MemTotal:       16384000 kB
MemFree:         2048000 kB
Buffers:          512000 kB
Cached:          4096000 kB
Slab:             256000 kB
"""

FREE_B = """\
               total        used        free      shared  buff/cache   available
Mem:      8000000000  2000000000  1000000000    10000000  5000000000  6000000000
Swap:     2000000000           0  2000000000
"""

FREE_OLD = """\
             total       used       free     shared    buffers     cached
Mem:       8000000    7000000    1000000          0     200000    3000000
-/+ buffers/cache:    3800000    4200000
Swap:      2000000          0    2000000
"""

GiB_KB = 1024 * 1024


class TestBuildUsage:
    def test_percentages_independent(self) -> None:
        usage = build_usage(total=1000, used=600, available=300)
        assert usage.used_percent == 60.0
        assert usage.available_percent == 30.0

    def test_zero_total(self) -> None:
        usage = build_usage(total=0, used=0, available=0)
        assert usage.used_percent == 0.0
        assert usage.available_percent == 0.0


class TestParseMeminfo:
    def test_with_mem_available(self) -> None:
        usage = parse_meminfo(MEMINFO_NO_AVAILABLE + "MemAvailable:    8192000 kB\n")
        assert usage is not None
        assert usage.total_bytes == 16384000 * 1024
        assert usage.used_bytes == (16384000 - 8192000) * 1024
        assert usage.available_bytes == 8192000 * 1024
        assert usage.used_percent == 50.0
        assert usage.available_percent == 50.0

    def test_without_mem_available(self) -> None:
        usage = parse_meminfo(MEMINFO_NO_AVAILABLE)
        assert usage is not None
        # 16384000 - 2048000 - 512000 - 4096000 - 256000
        assert usage.used_bytes == 9472000 * 1024
        assert usage.available_bytes == 6912000 * 1024
        assert usage.used_percent == 57.81

    def test_invalid_optional_fields_count_as_zero(self) -> None:
        text = "MemTotal: 1000 kB\nMemFree: 400 kB\nBuffers: x kB\n"
        usage = parse_meminfo(text)
        assert usage is not None
        assert usage.used_bytes == 600 * 1024

    def test_negative_used_floored(self) -> None:
        text = "MemTotal: 1000 kB\nMemFree: 900 kB\nCached: 500 kB\n"
        usage = parse_meminfo(text)
        assert usage is not None
        assert usage.used_bytes == 0

    def test_missing_total(self) -> None:
        assert parse_meminfo("MemFree: 100 kB\n") is None

    def test_missing_free(self) -> None:
        assert parse_meminfo("MemTotal: 100 kB\n") is None


class TestParseFree:
    def test_available_column_in_bytes(self) -> None:
        usage = parse_free(FREE_B, 1, available_column=True)
        assert usage is not None
        assert usage.total_bytes == 8000000000
        assert usage.used_bytes == 2000000000
        assert usage.available_bytes == 6000000000
        assert usage.used_percent == 25.0

    def test_old_free_has_no_available_column(self) -> None:
        assert parse_free(FREE_OLD, 1024, available_column=True) is None

    def test_free_column_stands_in(self) -> None:
        usage = parse_free(FREE_OLD, 1024, available_column=False)
        assert usage is not None
        assert usage.available_bytes == 1000000 * 1024
        assert usage.used_bytes == 7000000 * 1024

    def test_non_numeric_available_derived(self) -> None:
        text = "      total used free shared buff/cache available\nMem: 1000 400 100 0 500 x\n"
        usage = parse_free(text, 1, available_column=True)
        assert usage is not None
        assert usage.available_bytes == 600

    def test_no_mem_row(self) -> None:
        assert parse_free("Swap: 1 2 3\n", 1, available_column=True) is None


class TestCollectMemoryUsage:
    def test_meminfo_preferred(self, linux_reader) -> None:
        usage = collect_memory_usage(linux_reader)
        assert usage is not None
        assert usage.used_percent == 50.0
        assert not any(call.startswith("free") for call in linux_reader.calls)

    def test_free_bytes_fallback(self, fake_reader) -> None:
        reader = fake_reader(commands={"free -b": FREE_B})
        usage = collect_memory_usage(reader, psutil_fallback=False)
        assert usage is not None
        assert usage.total_bytes == 8000000000

    def test_old_free_fallback(self, fake_reader) -> None:
        reader = fake_reader(commands={"free -k": FREE_OLD})
        usage = collect_memory_usage(reader, psutil_fallback=False)
        assert usage is not None
        assert usage.available_bytes == 1000000 * 1024

    @patch("serverstats.memory.psutil.virtual_memory")
    def test_psutil_last_resort(self, mock_vm: MagicMock, empty_reader) -> None:
        mock_vm.return_value = MagicMock(total=8 * GiB_KB * 1024, available=2 * GiB_KB * 1024)
        usage = collect_memory_usage(empty_reader)
        assert usage is not None
        assert usage.used_percent == 75.0
        assert usage.available_percent == 25.0

    def test_all_sources_absent(self, empty_reader) -> None:
        assert collect_memory_usage(empty_reader, psutil_fallback=False) is None

import math

import pytest

from mtcomm.perf import (
    LatencyStats,
    bandwidth_mb_s,
    format_table,
    latency_stats,
    message_sizes,
)


def test_message_sizes_double():
    assert list(message_sizes(16, 64)) == [16, 32, 64]


def test_message_sizes_default_range():
    sizes = list(message_sizes())
    assert sizes[0] == 16
    assert sizes[-1] == 1 << 24
    assert all(b == 2 * a for a, b in zip(sizes, sizes[1:]))


def test_message_sizes_rejects_non_positive():
    with pytest.raises(ValueError):
        list(message_sizes(0, 10))


def test_latency_mean_is_half_round_trip():
    stats = latency_stats([10.0, 20.0, 30.0])
    assert stats.mean_us == pytest.approx(10.0)


def test_latency_spread_non_negative_and_grows():
    narrow = latency_stats([100.0, 101.0, 99.0, 100.0])
    wide = latency_stats([50.0, 150.0, 10.0, 190.0])
    assert narrow.std_us >= 0
    assert wide.std_us > narrow.std_us
    assert wide.mean_us == pytest.approx(narrow.mean_us)


def test_latency_needs_two_samples():
    with pytest.raises(ValueError):
        latency_stats([5.0])


def test_bandwidth_one_mebibyte_per_second():
    assert bandwidth_mb_s(1048576, 1e6) == pytest.approx(1.0)


def test_bandwidth_scales_with_size():
    assert bandwidth_mb_s(2048, 10.0) == pytest.approx(2 * bandwidth_mb_s(1024, 10.0))


def test_bandwidth_rejects_zero_latency():
    with pytest.raises(ValueError):
        bandwidth_mb_s(16, 0.0)


def test_format_table_header():
    lines = format_table([]).splitlines()
    assert lines[0] == "   size   lat avg (ms)   lat std (ms)       Bw (MB/s)"
    assert set(lines[1]) == {"-"}
    assert len(lines) == 2


def test_format_table_rows():
    stats = [LatencyStats(1000.0, 500.0), LatencyStats(2000.0, 0.0)]
    lines = format_table(stats, 16).splitlines()
    assert len(lines) == 4
    first = lines[2].split()
    assert first[:3] == ["16", "1.0000", "0.5000"]
    assert first[3] == f"{bandwidth_mb_s(16, 1000.0):.4f}"
    assert lines[3].split()[0] == "32"
    assert lines[2].startswith("     16        ")


def test_format_table_row_count_matches_stats():
    stats = [latency_stats([float(i), float(i + 2)]) for i in range(1, 6)]
    text = format_table(stats, 64)
    assert len(text.splitlines()) == 2 + len(stats)
    assert all(not math.isnan(s.std_us) for s in stats)
"""Statistics and report of a point-to-point latency/bandwidth benchmark.

The client sends messages of doubling size and times each round trip; the
one-way latency is half the round trip.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

NROUND = 100
MIN_SIZE = 16
MAX_SIZE = 1 << 24

_HEADER = (
    "   size   lat avg (ms)   lat std (ms)       Bw (MB/s)\n"
    "-----------------------------------------------------\n"
)


@dataclass(frozen=True)
class LatencyStats:
    """One-way latency of one message size, in microseconds."""

    mean_us: float
    std_us: float


def message_sizes(minsize: int = MIN_SIZE, maxsize: int = MAX_SIZE) -> Iterator[int]:
    """Yield the message sizes from ``minsize`` doubling up to ``maxsize``."""
    if minsize <= 0:
        raise ValueError("the smallest message size must be positive")
    size = minsize
    while size <= maxsize:
        yield size
        size *= 2


def latency_stats(round_trips_us: Sequence[float]) -> LatencyStats:
    """Mean one-way latency and spread of a series of round-trip times."""
    n = len(round_trips_us)
    if n < 2:
        raise ValueError("at least two round trips are needed")
    mean = sum(t / 2.0 for t in round_trips_us) / n
    spread = sum((t - mean) ** 2 for t in round_trips_us)
    return LatencyStats(mean, math.sqrt(spread / (n - 1)))


def bandwidth_mb_s(size: int, mean_us: float) -> float:
    """Bandwidth in MiB/s of ``size`` bytes taking ``mean_us`` microseconds."""
    if mean_us <= 0:
        raise ValueError("the latency must be positive")
    return (size * 1e6) / (1048576 * mean_us)


def format_table(stats: Iterable[LatencyStats], minsize: int = MIN_SIZE) -> str:
    """Report table, one row per size starting at ``minsize`` and doubling."""
    rows = [_HEADER]
    for size, entry in zip(message_sizes(minsize, math.inf), stats):
        rows.append(
            f"{size:7d}        "
            f"{entry.mean_us / 1000.0:6.4f}         "
            f"{entry.std_us / 1000.0:6.4f}        "
            f"{bandwidth_mb_s(size, entry.mean_us):9.4f}\n"
        )
    return "".join(rows)
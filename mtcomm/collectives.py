"""Data layouts of the collective operations of a team.

A team of ``nparticipants`` members (rank 0 is the root) splits a buffer of
``datasize``-byte elements as evenly as it can. The first members get one
element more when the elements do not divide evenly. Every function here
works in bytes and raises :class:`ValueError` where the operation would be
refused.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import GATHER_THRESHOLD_MSG_SIZE

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Layout:
    """Byte counts and offsets of each member's block, and this rank's result.

    ``counts`` and ``displs`` describe the blocks of the distributed buffer,
    one per member. ``size`` is the number of bytes the operation returns for
    the calling rank. ``recv_counts`` and ``recv_displs`` describe the
    receive side where it differs from the send side (all-to-all only).
    ``uniform`` is True when every block has the same size and the operation
    may use the regular, non-vector form.
    """

    counts: tuple[int, ...]
    displs: tuple[int, ...]
    size: int
    recv_counts: tuple[int, ...] = ()
    recv_displs: tuple[int, ...] = ()
    uniform: bool = False

    def block(self, rank: int) -> slice:
        """Slice of the distributed buffer that belongs to ``rank``."""
        start = self.displs[rank]
        return slice(start, start + self.counts[rank])


def _check_team(datasize: int, nparticipants: int, rank: int | None = None) -> None:
    if datasize <= 0:
        raise ValueError("the element size must be positive")
    if nparticipants <= 0:
        raise ValueError("a team needs at least one participant")
    if rank is not None and not 0 <= rank < nparticipants:
        raise ValueError(f"rank {rank} is not in a team of {nparticipants}")


def _offsets(counts: list[int]) -> tuple[int, ...]:
    displs = []
    offset = 0
    for count in counts:
        displs.append(offset)
        offset += count
    return tuple(displs)


def partition(total: int, datasize: int, nparticipants: int) -> tuple[tuple[int, ...], tuple[int, ...]]:
    """Split ``total`` bytes into per-member (counts, displacements).

    ``total`` must be a whole number of ``datasize``-byte elements.
    """
    _check_team(datasize, nparticipants)
    if total < 0:
        raise ValueError("the buffer size cannot be negative")
    if total % datasize:
        raise ValueError(
            f"buffer of {total} bytes is not a multiple of the element size {datasize}"
        )
    datacount = total // datasize
    base = (datacount // nparticipants) * datasize
    extra = datacount % nparticipants
    counts = [base + (datasize if i < extra else 0) for i in range(nparticipants)]
    return tuple(counts), _offsets(counts)


def team_partition_size(count: int, nparticipants: int, rank: int) -> int:
    """Number of the ``count`` elements that falls to ``rank``."""
    _check_team(1, nparticipants, rank)
    if count < 0:
        raise ValueError("the element count cannot be negative")
    return count // nparticipants + (1 if rank < count % nparticipants else 0)


def broadcast_size(sendsize: int, recvsize: int, root: bool) -> int:
    """Bytes a broadcast delivers: the root's send size, else the receive size."""
    return sendsize if root else recvsize


def scatter_layout(
    sendsize: int, recvsize: int, datasize: int, nparticipants: int, rank: int
) -> Layout:
    """Layout of a scatter of ``sendsize`` bytes from the root."""
    _check_team(datasize, nparticipants, rank)
    if sendsize == 0:
        _log.warning("scatter: the send size is zero")
    counts, displs = partition(sendsize, datasize, nparticipants)
    if counts[rank] > recvsize:
        raise ValueError(
            f"receive buffer too small: {recvsize} instead of {counts[rank]} (team rank {rank})"
        )
    return Layout(counts, displs, counts[rank])


def gather_layout(
    sendsize: int, recvsize: int, datasize: int, nparticipants: int, rank: int
) -> Layout:
    """Layout of a gather of ``recvsize`` bytes at the root."""
    _check_team(datasize, nparticipants, rank)
    if recvsize == 0:
        _log.error("gather: the receive size is zero")
    counts, displs = partition(recvsize, datasize, nparticipants)
    datacount = recvsize // datasize
    base = (datacount // nparticipants) * datasize
    if datacount % nparticipants == 0 and base >= GATHER_THRESHOLD_MSG_SIZE:
        if base > sendsize:
            raise ValueError(f"sending buffer too small: {sendsize} instead of {base}")
        return Layout(counts, displs, base, uniform=True)
    if counts[rank] > sendsize:
        raise ValueError(f"sending buffer too small: {sendsize} instead of {counts[rank]}")
    return Layout(counts, displs, counts[rank])


def allgather_layout(
    sendsize: int, recvsize: int, datasize: int, nparticipants: int, rank: int
) -> Layout:
    """Layout of an all-gather of ``recvsize`` bytes at every member."""
    _check_team(datasize, nparticipants, rank)
    if recvsize == 0:
        _log.error("allgather: the receive size is zero")
    counts, displs = partition(recvsize, datasize, nparticipants)
    if counts[rank] > sendsize:
        raise ValueError(f"sending buffer too small: {sendsize} instead of {counts[rank]}")
    return Layout(counts, displs, counts[rank])


def alltoall_layout(
    sendsize: int, recvsize: int, datasize: int, nparticipants: int, rank: int
) -> Layout:
    """Layout of an all-to-all where every member sends ``sendsize`` bytes.

    Each sender splits its buffer with :func:`partition`; ``rank`` receives
    its own block from every member, one after the other.
    """
    _check_team(datasize, nparticipants, rank)
    if sendsize == 0:
        _log.error("alltoall: the send size is zero")
    counts, displs = partition(sendsize, datasize, nparticipants)
    recvcount = counts[rank]
    recv_counts = tuple(recvcount for _ in range(nparticipants))
    recv_displs = tuple(i * recvcount for i in range(nparticipants))
    if counts[rank] > recvsize:
        raise ValueError(
            f"receive buffer too small: {recvsize} instead of {counts[rank]} (team rank {rank})"
        )
    return Layout(
        counts,
        displs,
        recvcount * nparticipants,
        recv_counts=recv_counts,
        recv_displs=recv_displs,
    )
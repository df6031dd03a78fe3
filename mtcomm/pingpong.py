"""Message format of the asynchronous ping-pong exchange.

Every message starts with a header of four little-endian 64-bit words
(sender, sequence number, kind, seed) followed by a payload whose byte at
offset ``i`` is ``(seed + i) & 0xFF``. A pong is the peer's ping sent back
with the kind flipped and the sender replaced.
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, replace

MAX_MESSAGE_SIZE = 2048

_HEADER = struct.Struct("<4Q")
HEADER_SIZE = _HEADER.size


class Kind(enum.IntEnum):
    """What a message is."""

    PING = 0
    PONG = 1


@dataclass(frozen=True)
class MsgHeader:
    """Header carried at the start of every ping-pong message."""

    sender: int
    seq: int
    kind: int = Kind.PING
    value: int = 0

    def pack(self) -> bytes:
        """Return the header as its wire bytes."""
        return _HEADER.pack(self.sender, self.seq, int(self.kind), self.value)

    @staticmethod
    def unpack(data: bytes) -> MsgHeader:
        """Read the header at the start of ``data``."""
        if len(data) < HEADER_SIZE:
            raise ValueError(
                f"a header needs {HEADER_SIZE} bytes, got {len(data)}"
            )
        sender, seq, kind, value = _HEADER.unpack_from(data)
        return MsgHeader(sender, seq, kind, value)


def fill_payload(buf: bytearray, seed: int) -> None:
    """Fill everything after the header of ``buf`` with the pattern of ``seed``."""
    buf[HEADER_SIZE:] = bytes((seed + i) & 0xFF for i in range(HEADER_SIZE, len(buf)))


def check_payload(buf: bytes, seed: int) -> bool:
    """Tell whether the bytes after the header follow the pattern of ``seed``."""
    return all(
        byte == (seed + i) & 0xFF
        for i, byte in enumerate(buf[HEADER_SIZE:], start=HEADER_SIZE)
    )


def build_ping(my_id: int, seq: int, length: int, value: int) -> bytes:
    """Build a ping of ``length`` bytes whose payload is seeded by ``value``."""
    if not HEADER_SIZE <= length <= MAX_MESSAGE_SIZE:
        raise ValueError(
            f"message length must be between {HEADER_SIZE} and {MAX_MESSAGE_SIZE}"
        )
    buf = bytearray(length)
    buf[:HEADER_SIZE] = MsgHeader(my_id, seq, Kind.PING, value).pack()
    fill_payload(buf, value)
    return bytes(buf)


def make_pong(ping: bytes, my_id: int) -> bytes:
    """Answer ``ping``: same bytes, kind PONG and ``my_id`` as the sender."""
    header = MsgHeader.unpack(ping)
    pong_header = replace(header, kind=Kind.PONG, sender=my_id)
    return pong_header.pack() + bytes(ping[HEADER_SIZE:])


def validate_pong(pong: bytes, ping: bytes) -> bool:
    """Tell whether ``pong`` correctly answers our ``ping``."""
    if len(pong) < HEADER_SIZE or len(ping) < HEADER_SIZE:
        return False
    pong_header = MsgHeader.unpack(pong)
    ping_header = MsgHeader.unpack(ping)
    return (
        pong_header.kind == Kind.PONG
        and len(pong) == len(ping)
        and pong_header.seq == ping_header.seq
        and pong_header.value == ping_header.value
        and check_payload(pong, pong_header.value)
    )
"""Single-slot message buffer living in a shared-memory segment.

A producer puts messages into the slot and a consumer takes them out. A
message larger than the slot is passed through it in several chunks, the
producer waiting for the consumer to drain each one. An empty message is the
end-of-stream marker.
"""

from __future__ import annotations

import errno
import fcntl
import mmap
import os
import struct
import tempfile
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from .config import SHM_SMALL_MSG_SIZE, SPIN_THRESHOLD

_WORD = struct.Struct("<Q")
_GUARD = 0
_SIZE = 8
_SLOT = 16
_DATA = 24
_MIN_SLOT = 8


def _shm_dir() -> str:
    return "/dev/shm" if os.path.isdir("/dev/shm") else tempfile.gettempdir()


def _segment_path(name: str) -> str:
    base = name[1:] if name.startswith("/") else name
    if not base or "/" in base:
        raise ValueError(f"invalid shared-memory name {name!r}")
    return os.path.join(_shm_dir(), base)


def _not_open() -> OSError:
    return OSError(errno.EINVAL, "the buffer is not open")


class ShmBuffer:
    """One message slot in a named shared-memory segment."""

    def __init__(self, slot_size: int = SHM_SMALL_MSG_SIZE) -> None:
        if slot_size < _MIN_SLOT:
            raise ValueError(f"slot size must be at least {_MIN_SLOT} bytes")
        self.slot_size = slot_size
        self.name = ""
        self._fd: Optional[int] = None
        self._mm: Optional[mmap.mmap] = None
        self._mutex = threading.Lock()
        self._spin = threading.Lock()

    # ------------------------------------------------------------ lifecycle
    def create(self, name: str, force: bool = False) -> None:
        """Create the segment ``name``; ``force`` replaces a stale one."""
        if self._mm is not None:
            raise PermissionError(errno.EPERM, "the buffer is already open")
        path = _segment_path(name)
        if force:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
        fd = os.open(path, os.O_CREAT | os.O_RDWR | os.O_EXCL, 0o600)
        try:
            os.ftruncate(fd, _DATA + self.slot_size)
            mm = mmap.mmap(fd, _DATA + self.slot_size)
        except OSError:
            os.close(fd)
            os.unlink(path)
            raise
        _WORD.pack_into(mm, _GUARD, 0)
        _WORD.pack_into(mm, _SIZE, 0)
        _WORD.pack_into(mm, _SLOT, self.slot_size)
        self._fd, self._mm, self.name = fd, mm, name

    def open(self, name: str) -> None:
        """Map the existing segment ``name``, adopting its slot size."""
        if self._mm is not None:
            raise PermissionError(errno.EPERM, "the buffer is already open")
        fd = os.open(_segment_path(name), os.O_RDWR)
        try:
            length = os.fstat(fd).st_size
            if length < _DATA:
                raise OSError(errno.EINVAL, f"{name} is not a message buffer")
            mm = mmap.mmap(fd, length)
            slot = _WORD.unpack_from(mm, _SLOT)[0]
            if slot < _MIN_SLOT or _DATA + slot > length:
                mm.close()
                raise OSError(errno.EINVAL, f"{name} has an invalid slot size")
        except OSError:
            os.close(fd)
            raise
        self._fd, self._mm, self.name = fd, mm, name
        self.slot_size = slot

    def close(self, unlink: bool = False) -> None:
        """Unmap the segment; with ``unlink`` also remove its name."""
        if self._mm is None or self._fd is None:
            raise OSError(errno.EPERM, "the buffer is not open")
        self._mm.close()
        os.close(self._fd)
        self._mm = None
        self._fd = None
        if unlink:
            try:
                os.unlink(_segment_path(self.name))
            except FileNotFoundError:
                pass

    def is_open(self) -> bool:
        return self._mm is not None

    # ------------------------------------------------------------ internals
    def _read(self, offset: int) -> int:
        return _WORD.unpack_from(self._mm, offset)[0]

    def _write(self, offset: int, value: int) -> None:
        _WORD.pack_into(self._mm, offset, value)

    @contextmanager
    def _slot(self, full: bool, block: bool = True) -> Iterator[None]:
        """Hold the segment lock once the slot is full (or empty)."""
        spins = 0
        while True:
            if self._mm is None or self._fd is None:
                raise _not_open()
            fd = self._fd
            self._spin.acquire()
            fcntl.flock(fd, fcntl.LOCK_EX)
            try:
                if bool(self._read(_GUARD)) == full:
                    yield
                    return
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                self._spin.release()
            if not block:
                raise BlockingIOError(errno.EAGAIN, "the buffer is empty")
            spins += 1
            time.sleep(0 if spins < SPIN_THRESHOLD else 1e-5)

    def _consume(self, capacity: int, block: bool) -> bytes:
        if self._mm is None:
            raise _not_open()
        if capacity <= 0:
            raise ValueError("the receive capacity must be positive")
        with self._mutex:
            chunks = []
            with self._slot(True, block):
                total = self._read(_SIZE)
                if total == 0:
                    self._write(_GUARD, 0)
                    return b""
                if total > capacity:
                    raise OSError(errno.EMSGSIZE, "message larger than the buffer")
                n = min(total, self.slot_size)
                chunks.append(self._mm[_DATA:_DATA + n])
                self._write(_GUARD, 0)
            got = n
            while got < total:
                with self._slot(True):
                    n = min(total - got, self.slot_size)
                    chunks.append(self._mm[_DATA:_DATA + n])
                    self._write(_GUARD, 0)
                got += n
            return b"".join(chunks)

    def _size(self, block: bool) -> int:
        if self._mm is None:
            raise _not_open()
        with self._slot(True, block):
            return self._read(_SIZE)

    # ------------------------------------------------------------ messages
    def put(self, data: bytes) -> int:
        """Put one message, waiting for the slot to be free; returns its length."""
        if self._mm is None:
            raise _not_open()
        payload = bytes(data)
        total = len(payload)
        with self._mutex:
            if total == 0:
                with self._slot(False):
                    self._write(_SIZE, 0)
                    self._write(_GUARD, 1)
                return 0
            for offset in range(0, total, self.slot_size):
                chunk = payload[offset:offset + self.slot_size]
                with self._slot(False):
                    self._write(_SIZE, total)
                    self._mm[_DATA:_DATA + len(chunk)] = chunk
                    self._write(_GUARD, 1)
        return total

    def get(self, size: int) -> bytes:
        """Take the next message, blocking while the buffer is empty."""
        return self._consume(size, True)

    def try_get(self, size: int) -> bytes:
        """Take the next message; raise :class:`BlockingIOError` if there is none."""
        return self._consume(size, False)

    def get_size(self) -> int:
        """Size of the waiting message without taking it, blocking if empty."""
        return self._size(True)

    def try_get_size(self) -> int:
        """Size of the waiting message; raise :class:`BlockingIOError` if empty."""
        return self._size(False)

    def peek(self) -> bool:
        """Tell whether a message is waiting; it may be gone by the time this returns."""
        if self._mm is None or self._fd is None:
            return False
        fd = self._fd
        with self._spin:
            fcntl.flock(fd, fcntl.LOCK_EX)
            try:
                return bool(self._read(_GUARD))
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
"""User-facing wrapper around a transport handle."""

from __future__ import annotations

import errno
from typing import Optional

from .protocol import Handle, HandleType


def _bad_handle() -> OSError:
    return OSError(errno.EBADF, "the handle is not valid or closed")


class HandleUser:
    """Ownership token for a :class:`Handle` given to the application.

    While the application holds it, the transport does not poll the handle;
    :meth:`yield_control` gives it back. Use it as a context manager (or call
    :meth:`release`) to return it when done.
    """

    def __init__(
        self,
        handle: Optional[Handle] = None,
        readable: bool = False,
        new_connection: bool = False,
    ) -> None:
        self._handle = handle
        self._readable = readable
        self._new_connection = new_connection
        if handle is not None:
            handle.increment_references()

    def _require(self) -> Handle:
        if self._handle is None:
            raise _bad_handle()
        return self._handle

    @property
    def name(self) -> str:
        return self._require().name

    @name.setter
    def name(self, value: str) -> None:
        self._require().name = value

    @property
    def id(self) -> int:
        return id(self._handle) if self._handle is not None else 0

    def yield_control(self) -> None:
        """Release the handle to the transport so it is polled again."""
        if not self._readable and not self._new_connection:
            return
        self._readable = False
        self._new_connection = False
        if self._handle is not None:
            self._handle.yield_control()

    def is_valid(self) -> bool:
        return self._handle is not None

    def is_new_connection(self) -> bool:
        return self._new_connection

    def send(self, data: bytes) -> int:
        """Send ``data`` as one message."""
        self._new_connection = False
        if self._handle is None or self._handle.closed_wr:
            raise _bad_handle()
        return self._handle.send(data)

    def probe(self, blocking: bool = True) -> int:
        """Return the size of the next message; 0 means the stream is closed."""
        self._new_connection = False
        if not self._readable:
            return 0
        handle = self._require()
        if handle.closed_rd:
            return 0
        try:
            size = handle.probe(blocking)
        except ConnectionResetError:
            handle.close(True, True)
            return 0
        except BlockingIOError:
            raise
        if size == 0:
            self._readable = False
            handle.close(True, True)
            return 0
        return size

    def receive(self, size: int) -> bytes:
        """Receive the next message; ``size`` is the buffer capacity."""
        self._new_connection = False
        if not self._readable:
            return b""
        handle = self._require()
        if handle.closed_rd:
            return b""
        return handle.receive(size)

    def close(self) -> None:
        """Close the write side, telling the peer no more data will come."""
        if self._handle is not None:
            self._handle.close(True, False)

    def is_closed(self) -> tuple[bool, bool]:
        """Return (read side closed, write side closed)."""
        if self._handle is None:
            return True, True
        return self._handle.closed_rd, self._handle.closed_wr

    def handle_type(self) -> HandleType:
        if self._handle is None:
            return HandleType.INVALID
        return self._handle.handle_type

    def release(self) -> None:
        """Give the handle back to the transport and drop this reference."""
        if self._handle is None:
            return
        if self._readable:
            self.yield_control()
        self._handle.decrement_references()
        self._handle = None
        self._readable = False
        self._new_connection = False

    def __enter__(self) -> HandleUser:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
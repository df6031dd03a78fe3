"""Shared-memory transport: each connection is a pair of single-slot buffers."""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Optional

from .config import SHM_MAX_CONCURRENT_CONN
from .protocol import ConnType, Handle
from .shm_buffer import ShmBuffer

_log = logging.getLogger(__name__)


class HandleSHM(Handle):
    """One connection: messages are read from ``inbuf`` and written to ``outbuf``."""

    def __init__(
        self, parent: Optional[ConnType], inbuf: ShmBuffer, outbuf: ShmBuffer
    ) -> None:
        super().__init__(parent)
        self.inbuf = inbuf
        self.outbuf = outbuf

    def send_eos(self) -> None:
        self.outbuf.put(b"")

    def send(self, data: bytes) -> int:
        return self.outbuf.put(data)

    def probe(self, blocking: bool = True) -> int:
        """Return the size of the next message; 0 means end of stream."""
        if self.probed is not None:
            return self.probed
        size = self.inbuf.get_size() if blocking else self.inbuf.try_get_size()
        self.probed = size
        if size == 0:
            # consume the end-of-stream marker so later probes do not see it
            try:
                self.inbuf.try_get(1)
            except BlockingIOError:
                pass
        return size

    def receive(self, size: int) -> bytes:
        """Return the next payload; ``size`` is the largest payload accepted."""
        if self.probed is None and self.probe(True) == 0:
            return b""
        probed = self.probed
        if probed == 0:
            self.probed = None
            return b""
        if probed > size:
            raise MemoryError_(probed, size)
        self.probed = None
        return self.inbuf.get(probed)

    def peek(self) -> bool:
        return self.inbuf.peek()


def MemoryError_(needed: int, capacity: int) -> OSError:
    import errno

    return OSError(
        errno.ENOMEM, f"message of {needed} bytes exceeds buffer of {capacity}"
    )


class ConnSHM(ConnType):
    """Accepts and opens shared-memory connections and polls the yielded ones."""

    def __init__(self) -> None:
        super().__init__()
        self.shm_name = ""
        self._ids = itertools.count()
        self.connbuff = ShmBuffer()
        self.connections: dict[HandleSHM, bool] = {}
        self._lock = threading.Lock()

    def init(self, name: str) -> None:
        self.instance_name = name
        self.shm_name = name

    def listen(self, address: str) -> None:
        """Create the connection buffer ``address``, replacing a stale one."""
        try:
            self.connbuff.create(address)
        except FileExistsError:
            self.connbuff.create(address, force=True)
            _log.info("removed stale endpoint %s", address)
        _log.debug("listening to %s", address)

    def _accept(self) -> None:
        try:
            self.connbuff.try_get_size()
        except BlockingIOError:
            return
        message = self.connbuff.get(self.connbuff.slot_size)
        inname, sep, outname = message.decode(errors="replace").partition(":")
        if not sep:
            _log.error("invalid connection message %r", message)
            return
        inbuf = ShmBuffer()
        outbuf = ShmBuffer()
        try:
            inbuf.open(outname)
            outbuf.open(inname)
        except OSError as exc:
            _log.error("cannot open connection buffers: %s", exc)
            if inbuf.is_open():
                inbuf.close()
            return
        handle = HandleSHM(self, inbuf, outbuf)
        with self._lock:
            self.connections[handle] = False
        self.add_in_queue(True, handle)

    def update(self) -> None:
        """Accept a pending connection and queue yielded handles with data."""
        if self.connbuff.is_open():
            self._accept()
        with self._lock:
            ready = [h for h, managed in self.connections.items() if managed and h.peek()]
            for handle in ready:
                self.connections[handle] = False
        for handle in ready:
            self.add_in_queue(False, handle)

    def connect(self, address: str, retry: int = -1, timeout: int = 0) -> HandleSHM:
        """Connect to the listener at ``address`` and return the new handle."""
        connshm = ShmBuffer()
        connshm.open(address)
        inbuf = ShmBuffer()
        outbuf = ShmBuffer()
        try:
            conn_id = next(self._ids) % SHM_MAX_CONCURRENT_CONN
            inname = f"/{self.shm_name}_in_{conn_id}"
            outname = f"/{self.shm_name}_out_{conn_id}"
            inbuf.create(inname)
            outbuf.create(outname)
            connshm.put(f"{inname}:{outname}".encode())
        except BaseException:
            for buf in (inbuf, outbuf):
                if buf.is_open():
                    buf.close(unlink=True)
            raise
        finally:
            connshm.close()
        _log.debug("connected to %s (in=%s, out=%s)", address, inname, outname)
        handle = HandleSHM(self, inbuf, outbuf)
        with self._lock:
            self.connections[handle] = False
        return handle

    def notify_yield(self, handle: Handle) -> None:
        with self._lock:
            if handle in self.connections:
                self.connections[handle] = True

    def notify_close(
        self, handle: Handle, close_wr: bool = True, close_rd: bool = True
    ) -> None:
        if not isinstance(handle, HandleSHM):
            return
        if close_wr and handle.outbuf.is_open():
            handle.outbuf.close(unlink=True)
        if close_rd:
            with self._lock:
                self.connections.pop(handle, None)
            if handle.inbuf.is_open():
                handle.inbuf.close(unlink=True)

    def end(self, blockflag: bool = False) -> None:
        with self._lock:
            handles = list(self.connections)
        for handle in handles:
            self.set_as_closed(handle, blockflag)
        if self.connbuff.is_open():
            self.connbuff.close(unlink=True)
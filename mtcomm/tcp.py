"""TCP transport: length-prefixed messages over stream sockets."""

from __future__ import annotations

import errno
import select
import socket
import struct
import threading
import time
from typing import Optional

from .config import TCP_BACKLOG, TCP_POLL_TIMEOUT, UNREACHABLE_ADDR_TIMEOUT_MS
from .protocol import ConnType, Handle

HDR_SZ = 8
_HEADER = struct.Struct(">Q")


def encode_header(size: int) -> bytes:
    """Return the 8-byte big-endian header announcing a ``size``-byte payload."""
    return _HEADER.pack(size)


def decode_header(data: bytes) -> int:
    """Return the payload size carried by an 8-byte header."""
    if len(data) != HDR_SZ:
        raise ValueError(f"a header is {HDR_SZ} bytes, got {len(data)}")
    return _HEADER.unpack(data)[0]


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.partition(":")
    if not sep:
        raise ValueError(f"address {address!r} is not of the form host:port")
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"invalid port in address {address!r}") from None


def _bad_fd() -> OSError:
    return OSError(errno.EBADF, "the connection is closed")


class HandleTCP(Handle):
    """One TCP connection; every message is an 8-byte size header plus payload."""

    def __init__(self, parent: Optional[ConnType], sock: socket.socket) -> None:
        super().__init__(parent)
        self.sock: Optional[socket.socket] = sock

    def _socket(self) -> socket.socket:
        if self.sock is None:
            raise _bad_fd()
        return self.sock

    def _read_exactly(self, n: int) -> bytes:
        """Read up to ``n`` bytes, stopping early only at end of stream or error."""
        sock = self._socket()
        chunks = []
        got = 0
        while got < n:
            try:
                chunk = sock.recv(n - got)
            except OSError:
                if got == 0:
                    raise
                break
            if not chunk:
                break
            chunks.append(chunk)
            got += len(chunk)
        return b"".join(chunks)

    def send_eos(self) -> None:
        self._socket().sendall(encode_header(0))

    def send(self, data: bytes) -> int:
        self._socket().sendall(encode_header(len(data)) + bytes(data))
        return len(data)

    def probe(self, blocking: bool = True) -> int:
        """Read the next header and return its size; 0 means end of stream."""
        if self.probed is not None:
            return self.probed
        sock = self._socket()
        if not blocking:
            ready, _, _ = select.select([sock], [], [], 0)
            if not ready:
                raise BlockingIOError(errno.EWOULDBLOCK, "no header available")
            peeked = sock.recv(HDR_SZ, socket.MSG_PEEK)
            if not peeked:
                self.probed = 0
                return 0
            if len(peeked) < HDR_SZ:
                # never consume a partial header
                raise BlockingIOError(errno.EWOULDBLOCK, "header not complete")
        header = self._read_exactly(HDR_SZ)
        if not header:
            self.probed = 0
            return 0
        if len(header) < HDR_SZ:
            raise ConnectionResetError(errno.ECONNRESET, "truncated header")
        self.probed = decode_header(header)
        return self.probed

    def peek(self) -> bool:
        """True if a full header or end of stream can be read without blocking."""
        if self.sock is None:
            return False
        try:
            ready, _, _ = select.select([self.sock], [], [], 0)
            if not ready:
                return False
            peeked = self.sock.recv(HDR_SZ, socket.MSG_PEEK)
        except (BlockingIOError, ValueError):
            return False
        except OSError:
            return False
        return len(peeked) in (0, HDR_SZ)

    def receive(self, size: int) -> bytes:
        """Return the next payload; ``size`` is the largest payload accepted."""
        if self.probed is None:
            if self.probe(True) == 0:
                return b""
        probed = self.probed
        if probed == 0:
            self.probed = None
            return b""
        if probed > size:
            raise OSError(errno.EMSGSIZE, "buffer too small for the message")
        self.probed = None
        payload = self._read_exactly(probed)
        if len(payload) == probed:
            return payload
        if not payload:
            raise ConnectionResetError(errno.ECONNRESET, "stream broke before the payload")
        raise OSError(errno.EPROTO, "stream broke while reading the payload")


class ConnTCP(ConnType):
    """Accepts and opens TCP connections and polls the yielded ones."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self.connections: set[HandleTCP] = set()
        self._watched: set[HandleTCP] = set()
        self._listen_sock: Optional[socket.socket] = None
        self.host = ""
        self.port = 0

    def init(self, name: str) -> None:
        self.instance_name = name
        with self._lock:
            self._watched.clear()
        self._listen_sock = None

    def listen(self, address: str) -> None:
        """Bind and listen on ``host:port``; port 0 picks a free port."""
        host, port = _split_address(address)
        infos = socket.getaddrinfo(
            host or None,
            port,
            socket.AF_UNSPEC,
            socket.SOCK_STREAM,
            socket.IPPROTO_TCP,
            socket.AI_PASSIVE,
        )
        last_error: Optional[OSError] = None
        for family, socktype, proto, _, sockaddr in infos:
            sock = socket.socket(family, socktype, proto)
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind(sockaddr)
                sock.listen(TCP_BACKLOG)
            except OSError as exc:
                sock.close()
                last_error = exc
                continue
            self._listen_sock = sock
            self.host = host
            self.port = sock.getsockname()[1]
            return
        raise last_error or OSError(errno.EADDRNOTAVAIL, f"cannot bind {address}")

    def connect(self, address: str, retry: int = -1, timeout: int = 0) -> HandleTCP:
        """Connect to ``host:port``, trying ``retry`` times ``timeout`` ms apart."""
        host, port = _split_address(address)
        attempts = retry if retry > 0 else 1
        last_error: Optional[OSError] = None
        for attempt in range(attempts):
            try:
                sock = socket.create_connection(
                    (host, port), timeout=UNREACHABLE_ADDR_TIMEOUT_MS / 1000.0
                )
            except OSError as exc:
                last_error = exc
                if attempt + 1 < attempts and timeout > 0:
                    time.sleep(timeout / 1000.0)
                continue
            sock.settimeout(None)
            handle = HandleTCP(self, sock)
            with self._lock:
                self.connections.add(handle)
            return handle
        raise ConnectionError(f"cannot connect to {address}: {last_error}")

    def update(self) -> None:
        """Accept pending connections and queue the yielded handles that are readable."""
        with self._lock:
            watched = {h.sock: h for h in self._watched if h.sock is not None}
        readers: list[socket.socket] = list(watched)
        if self._listen_sock is not None:
            readers.append(self._listen_sock)
        if not readers:
            return
        try:
            ready, _, _ = select.select(readers, [], [], TCP_POLL_TIMEOUT / 1e6)
        except (OSError, ValueError):
            # a socket may have been closed while it was being watched
            return
        for sock in ready:
            if sock is self._listen_sock:
                conn, _ = sock.accept()
                handle = HandleTCP(self, conn)
                with self._lock:
                    self.connections.add(handle)
                self.add_in_queue(True, handle)
                continue
            handle = watched[sock]
            with self._lock:
                self._watched.discard(handle)
                known = handle in self.connections
            if known:
                self.add_in_queue(False, handle)

    def notify_yield(self, handle: Handle) -> None:
        if not isinstance(handle, HandleTCP) or handle.sock is None:
            return
        with self._lock:
            if handle.is_closed():
                return
            self._watched.add(handle)

    def notify_close(
        self, handle: Handle, close_wr: bool = True, close_rd: bool = True
    ) -> None:
        if not isinstance(handle, HandleTCP):
            return
        if close_wr and handle.sock is not None:
            try:
                handle.sock.shutdown(socket.SHUT_WR)
            except OSError:
                pass
            with self._lock:
                known = handle in self.connections
            # read side already gone: nothing else will use the socket
            if not close_rd and not known:
                handle.sock.close()
                handle.sock = None
        if close_rd:
            sock = handle.sock
            if sock is None:
                return
            try:
                sock.shutdown(socket.SHUT_RD)
            except OSError:
                pass
            with self._lock:
                self.connections.discard(handle)
                self._watched.discard(handle)
            if close_wr:
                sock.close()
                handle.sock = None

    def end(self, blockflag: bool = False) -> None:
        with self._lock:
            handles = list(self.connections)
        for handle in handles:
            self.set_as_closed(handle, blockflag)
        if self._listen_sock is not None:
            self._listen_sock.close()
            self._listen_sock = None

    def is_set(self, handle: Handle) -> bool:
        """True if ``handle`` is currently polled for readability."""
        with self._lock:
            return handle in self._watched
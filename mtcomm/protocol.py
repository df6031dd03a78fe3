"""Base classes for transport handles and connection types."""

from __future__ import annotations

import abc
import enum
from collections import deque
from typing import Callable, Deque, Optional, Tuple


class HandleType(enum.Enum):
    """Kind of communication endpoint a handle represents."""

    INVALID = "invalid"
    P2P = "p2p"
    BROADCAST = "broadcast"
    SCATTER = "scatter"
    GATHER = "gather"
    ALLGATHER = "allgather"
    ALLTOALL = "alltoall"
    FANIN = "fanin"
    FANOUT = "fanout"


class Handle(abc.ABC):
    """One end of a connection owned by a :class:`ConnType`.

    ``probe`` returns the size of the next message, ``0`` meaning end of
    stream; it raises :class:`BlockingIOError` when nothing is available in
    non-blocking mode. ``receive`` returns the payload, ``b""`` at end of
    stream.
    """

    handle_type = HandleType.P2P

    def __init__(self, parent: Optional[ConnType]) -> None:
        self.parent = parent
        self.closed_rd = False
        self.closed_wr = False
        self.probed: Optional[int] = None
        self.name = ""
        self.references = 0

    @abc.abstractmethod
    def send(self, data: bytes) -> int:
        """Send one message and return the number of payload bytes sent."""

    @abc.abstractmethod
    def send_eos(self) -> None:
        """Send the end-of-stream marker."""

    @abc.abstractmethod
    def probe(self, blocking: bool = True) -> int:
        """Return the size of the next message, 0 for end of stream."""

    @abc.abstractmethod
    def receive(self, size: int) -> bytes:
        """Receive the next message into at most ``size`` bytes."""

    @abc.abstractmethod
    def peek(self) -> bool:
        """Tell whether a message (or end of stream) is ready."""

    def increment_references(self) -> None:
        self.references += 1

    def decrement_references(self) -> None:
        if self.references > 0:
            self.references -= 1

    def yield_control(self) -> None:
        """Hand the handle back to its connection type for polling."""
        if self.parent is not None:
            self.parent.notify_yield(self)

    def close(self, close_wr: bool = True, close_rd: bool = True) -> None:
        """Close the requested directions, sending end of stream on write."""
        shut_wr = close_wr and not self.closed_wr
        shut_rd = close_rd and not self.closed_rd
        if not (shut_wr or shut_rd):
            return
        if shut_wr:
            self.closed_wr = True
            try:
                self.send_eos()
            except OSError:
                # the peer may already be gone; closing is best effort
                pass
        if shut_rd:
            self.closed_rd = True
        if self.parent is not None:
            self.parent.notify_close(self, shut_wr, shut_rd)

    def is_closed(self) -> bool:
        """True once nothing more can be read from the handle."""
        return self.closed_rd


class ConnType(abc.ABC):
    """A transport: it accepts and creates connections and polls their handles."""

    def __init__(self) -> None:
        self.instance_name = ""
        # Events raised before a manager installs its own callback.
        self.pending: Deque[Tuple[bool, Handle]] = deque()
        # Set by the manager: called with (is_new_connection, handle).
        self.add_in_queue: Callable[[bool, Handle], None] = self._queue_locally

    def _queue_locally(self, new_connection: bool, handle: Handle) -> None:
        """Default queueing callback: keep the event until a manager takes over."""
        self.pending.append((new_connection, handle))

    @abc.abstractmethod
    def init(self, name: str) -> None:
        """Prepare the transport for the application called ``name``."""

    @abc.abstractmethod
    def listen(self, address: str) -> None:
        """Start accepting connections at ``address``."""

    @abc.abstractmethod
    def connect(self, address: str, retry: int = -1, timeout: int = 0) -> Handle:
        """Open a connection to ``address`` and return its handle."""

    @abc.abstractmethod
    def update(self) -> None:
        """Poll for new connections and readable handles without blocking."""

    @abc.abstractmethod
    def notify_yield(self, handle: Handle) -> None:
        """Take back ownership of ``handle`` and poll it again."""

    @abc.abstractmethod
    def notify_close(
        self, handle: Handle, close_wr: bool = True, close_rd: bool = True
    ) -> None:
        """Forget the closed directions of ``handle``."""

    @abc.abstractmethod
    def end(self, blockflag: bool = False) -> None:
        """Stop listening and close every managed handle."""

    @staticmethod
    def set_as_closed(handle: Handle, blockflag: bool = False) -> None:
        """Close ``handle``; with ``blockflag`` drain it up to end of stream first."""
        if blockflag and not handle.closed_rd:
            handle.close(True, False)
            while True:
                try:
                    size = handle.probe(True)
                except OSError:
                    break
                if size == 0:
                    break
                try:
                    handle.receive(size)
                except OSError:
                    break
        handle.close(True, True)
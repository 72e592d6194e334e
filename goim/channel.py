"""A client connection's state and its outgoing signal queue."""

from __future__ import annotations

import queue
import threading
from typing import TYPE_CHECKING

from .protocol import PROTO_FINISH, PROTO_READY, Proto
from .ring import Ring

if TYPE_CHECKING:
    from .room import Room


class Channel:
    """Per-connection state used by pushers to hand frames to the writer."""

    def __init__(self, cli: int, svr: int) -> None:
        self.room: Room | None = None
        self.cli_proto = Ring(cli)
        self.next: Channel | None = None
        self.prev: Channel | None = None
        self.mid = 0
        self.key = ""
        self.ip = ""
        # A zero-size queue would be unbounded; keep at least one slot.
        self._signal: queue.Queue[Proto] = queue.Queue(maxsize=max(svr, 1))
        self._watch_ops: set[int] = set()
        self._lock = threading.Lock()

    def watch(self, *args: int) -> None:
        """Start accepting pushes for the given operations."""
        with self._lock:
            self._watch_ops.update(args)

    def unwatch(self, *args: int) -> None:
        """Stop accepting pushes for the given operations."""
        with self._lock:
            self._watch_ops.difference_update(args)

    def need_push(self, op: int) -> bool:
        """Return True if the channel watches the operation."""
        with self._lock:
            return op in self._watch_ops

    def push(self, proto: Proto) -> None:
        """Queue a server frame; drop it if the queue is full."""
        try:
            self._signal.put_nowait(proto)
        except queue.Full:
            pass

    def ready(self, timeout: float | None = None) -> Proto:
        """Wait for the next frame; raise TimeoutError if none comes in time."""
        try:
            return self._signal.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("no frame ready on channel") from None

    def signal(self) -> None:
        """Tell the writer that client frames are waiting in the ring."""
        self._signal.put(PROTO_READY)

    def close(self) -> None:
        """Tell the writer to finish."""
        self._signal.put(PROTO_FINISH)
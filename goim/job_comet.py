"""Client side of one comet server, as used by the push job.

Requests are spread over a fixed number of worker threads so that slow
deliveries to one comet do not hold up the others.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from typing import Any, Callable, Iterable
from urllib.parse import urlparse

from .comet_rpc import BroadcastReq, BroadcastRoomReq, PushMsgReq

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05


def parse_grpc_address(addrs: Iterable[str]) -> str:
    """Return host:port of the last ``grpc://`` address; raise ValueError if there is none."""
    addrs = list(addrs)
    grpc_addr = ""
    for addr in addrs:
        try:
            url = urlparse(addr)
        except ValueError:
            continue
        if url.scheme == "grpc":
            grpc_addr = url.netloc
    if not grpc_addr:
        raise ValueError(f"invalid grpc address:{addrs}")
    return grpc_addr


class Comet:
    """Queues push, room and broadcast requests for one comet server.

    ``instance`` needs ``hostname`` and ``addrs``; ``config`` needs
    ``routine_size`` and ``routine_chan``. ``client_factory`` is called with
    the comet's host:port and returns an object with ``push_msg(req)``,
    ``broadcast_room(req)`` and ``broadcast(req)``.
    """

    def __init__(self, instance: Any, config: Any, client_factory: Callable[[str], Any]) -> None:
        self.server_id = instance.hostname
        self.address = parse_grpc_address(instance.addrs)
        self.client = client_factory(self.address)
        size = max(int(config.routine_size), 1)
        capacity = max(int(config.routine_chan), 1) * 2
        self._queues: list[queue.Queue[Any]] = [queue.Queue(maxsize=capacity) for _ in range(size)]
        self._counter = itertools.count(1)
        self._counter_lock = threading.Lock()
        self._stopped = threading.Event()
        self._threads = [
            threading.Thread(target=self._process, args=(q,), daemon=True) for q in self._queues
        ]
        for thread in self._threads:
            thread.start()

    @property
    def pending(self) -> int:
        """Number of requests queued and not yet taken by a worker."""
        return sum(q.qsize() for q in self._queues)

    def _next_queue(self) -> queue.Queue[Any]:
        with self._counter_lock:
            idx = next(self._counter) % len(self._queues)
        return self._queues[idx]

    def push(self, req: PushMsgReq) -> None:
        """Queue a message for connection keys; blocks while the worker's queue is full."""
        self._next_queue().put((self.client.push_msg, req, "push"))

    def broadcast_room(self, req: BroadcastRoomReq) -> None:
        """Queue a message for a room."""
        self._next_queue().put((self.client.broadcast_room, req, "broadcast_room"))

    def broadcast(self, req: BroadcastReq) -> None:
        """Queue a message for every connection."""
        self._next_queue().put((self.client.broadcast, req, "broadcast"))

    def _process(self, tasks: queue.Queue[Any]) -> None:
        while True:
            item = tasks.get()
            if item is None or self._stopped.is_set():
                return
            call, req, name = item
            try:
                call(req)
            except Exception as exc:
                logger.error("c.client.%s(%s) serverId:%s error(%s)", name, req, self.server_id, exc)

    def stop(self) -> None:
        """Stop the workers at once; queued requests are dropped."""
        self._stopped.set()
        for tasks in self._queues:
            try:
                tasks.put_nowait(None)
            except queue.Full:
                pass

    def close(self, timeout: float = 5.0) -> None:
        """Wait for queued requests to be taken, then stop.

        Raise TimeoutError if the queues are not drained within ``timeout`` seconds.
        """
        deadline = time.monotonic() + timeout
        try:
            while self.pending:
                if time.monotonic() >= deadline:
                    raise TimeoutError(
                        f"close comet(server:{self.server_id} pending:{self.pending}) timeout"
                    )
                time.sleep(_POLL_INTERVAL)
            logger.info("close comet finish")
        finally:
            self.stop()
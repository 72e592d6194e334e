"""Push job: turns published push messages into requests to comet servers."""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, Iterable, Mapping

from .comet_rpc import BroadcastReq, BroadcastRoomReq, PushMsgReq
from .job_comet import Comet
from .protocol import Op, Proto
from .publisher import PushMsg, PushType

logger = logging.getLogger(__name__)

_READY = object()
_STOP = object()
_DEFAULT_IDLE = 60.0


class RoomFullError(Exception):
    """The room's message queue is full."""

    def __init__(self, message: str = "room proto chan full") -> None:
        super().__init__(message)


class JobRoom:
    """Collects messages for a room and sends them to the comets in batches.

    A batch goes out when it holds ``batch`` messages or ``signal`` seconds
    after its first message. A room that stays empty for ``idle`` seconds
    after a batch removes itself from the job.
    """

    def __init__(self, job: Job, room_id: str, config: Any) -> None:
        self.id = room_id
        self._job = job
        self._batch = int(config.batch)
        self._signal = float(config.signal)
        self._idle = float(config.idle) or _DEFAULT_IDLE
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=max(self._batch * 2, 1))
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._pushproc, daemon=True)
        self._thread.start()

    def push(self, op: int, msg: bytes) -> None:
        """Queue a message; raise RoomFullError if the queue is full."""
        try:
            self._queue.put_nowait(Proto(ver=1, op=op, body=msg))
        except queue.Full:
            raise RoomFullError() from None

    def stop(self) -> None:
        """Stop the batching thread; messages not yet sent are dropped."""
        self._stopped.set()
        try:
            self._queue.put_nowait(_STOP)
        except queue.Full:
            pass
        if threading.current_thread() is not self._thread:
            self._thread.join()

    def _pushproc(self) -> None:
        logger.info("start room:%s goroutine", self.id)
        count = 0
        last = 0.0
        buf = bytearray()
        deadline: float | None = time.monotonic() + self._signal
        while True:
            timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                item = _READY
                deadline = None
            if item is _STOP or self._stopped.is_set():
                break
            now = time.monotonic()
            if item is not _READY:
                buf += item.encode()
                count += 1
                if count == 1:
                    last = now
                    deadline = now + self._signal
                    continue
                if count < self._batch and self._signal > now - last:
                    continue
            elif count == 0:
                break
            self._job._broadcast_room_raw_bytes(self.id, bytes(buf))
            buf = bytearray()
            count = 0
            deadline = time.monotonic() + self._idle
        self._job.del_room(self.id)
        logger.info("room:%s goroutine exit", self.id)


class Job:
    """The push job.

    ``config`` needs ``env.zone``, ``comet`` and ``room`` sections;
    ``client_factory`` builds a comet client from its host:port.
    """

    def __init__(self, config: Any, client_factory: Callable[[str], Any]) -> None:
        self.config = config
        self.client_factory = client_factory
        self.comet_servers: dict[str, Comet] = {}
        self.rooms: dict[str, JobRoom] = {}
        self._rooms_lock = threading.Lock()

    def consume(self, messages: Iterable[bytes]) -> int:
        """Handle raw published messages; return how many were pushed without error."""
        handled = 0
        for raw in messages:
            try:
                push_msg = PushMsg.decode(raw)
            except ValueError as exc:
                logger.error("decode push message(%r) error(%s)", raw, exc)
                continue
            try:
                self.push(push_msg)
            except Exception as exc:
                logger.error("j.push(%s) error(%s)", push_msg, exc)
                continue
            handled += 1
            logger.info("consume: %s", push_msg)
        return handled

    def push(self, push_msg: PushMsg) -> None:
        """Route one push message to keys, a room or everyone."""
        if push_msg.type == PushType.PUSH:
            self._push_keys(push_msg.operation, push_msg.server, push_msg.keys, push_msg.msg)
        elif push_msg.type == PushType.ROOM:
            self.get_room(push_msg.room).push(push_msg.operation, push_msg.msg)
        elif push_msg.type == PushType.BROADCAST:
            self._broadcast(push_msg.operation, push_msg.msg, push_msg.speed)
        else:
            raise ValueError(f"no match push type: {push_msg.type}")

    @staticmethod
    def _raw_proto(operation: int, body: bytes) -> Proto:
        encoded = Proto(ver=1, op=operation, body=body).encode()
        return Proto(ver=1, op=int(Op.RAW), body=encoded)

    def _push_keys(self, operation: int, server_id: str, keys: list[str], body: bytes) -> None:
        req = PushMsgReq(keys=list(keys), proto_op=operation, proto=self._raw_proto(operation, body))
        comet = self.comet_servers.get(server_id)
        if comet is not None:
            comet.push(req)
            logger.info("pushKey:%s comets:%d", server_id, len(self.comet_servers))

    def _broadcast(self, operation: int, body: bytes, speed: int) -> None:
        comets = dict(self.comet_servers)
        if not comets:
            logger.error("broadcast: no comet servers")
            return
        req = BroadcastReq(
            proto=self._raw_proto(operation, body),
            proto_op=operation,
            speed=int(speed / len(comets)),
        )
        for comet in comets.values():
            comet.broadcast(req)
        logger.info("broadcast comets:%d", len(comets))

    def _broadcast_room_raw_bytes(self, room_id: str, body: bytes) -> None:
        req = BroadcastRoomReq(room_id=room_id, proto=Proto(ver=1, op=int(Op.RAW), body=body))
        comets = dict(self.comet_servers)
        for server_id, comet in comets.items():
            try:
                comet.broadcast_room(req)
            except Exception as exc:
                logger.error("broadcastRoom roomID:%s serverID:%s error(%s)", room_id, server_id, exc)
        logger.info("broadcastRoom comets:%d", len(comets))

    def new_address(self, instances_by_zone: Mapping[str, Iterable[Any]]) -> None:
        """Replace the comet set with the instances of this job's zone."""
        instances = list(instances_by_zone.get(self.config.env.zone, ()))
        if not instances:
            raise ValueError("watchComet instance is empty")
        comets: dict[str, Comet] = {}
        for ins in instances:
            old = self.comet_servers.get(ins.hostname)
            if old is not None:
                comets[ins.hostname] = old
                continue
            comets[ins.hostname] = Comet(ins, self.config.comet, self.client_factory)
            logger.info("watchComet AddComet grpc:%s", ins)
        for hostname, old in self.comet_servers.items():
            if hostname not in comets:
                old.stop()
                logger.info("watchComet DelComet:%s", hostname)
        self.comet_servers = comets

    def get_room(self, room_id: str) -> JobRoom:
        """Return the batching room for an id, creating it if needed."""
        with self._rooms_lock:
            room = self.rooms.get(room_id)
            if room is None:
                room = JobRoom(self, room_id, self.config.room)
                self.rooms[room_id] = room
                logger.info("new a room:%s active:%d", room_id, len(self.rooms))
            return room

    def del_room(self, room_id: str) -> None:
        with self._rooms_lock:
            self.rooms.pop(room_id, None)

    def close(self) -> None:
        """Stop every room and comet worker."""
        with self._rooms_lock:
            rooms = list(self.rooms.values())
        for room in rooms:
            room.stop()
        for comet in self.comet_servers.values():
            comet.stop()
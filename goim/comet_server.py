"""Comet server core: bucket sharding, calls to the logic service and client operations."""

from __future__ import annotations

import logging
import random
import re
import threading
from dataclasses import dataclass, field
from typing import Any

from .bucket import Bucket
from .channel import Channel
from .comet_config import Config
from .comet_errors import CometError
from .protocol import Op, Proto

logger = logging.getLogger(__name__)

MIN_SERVER_HEARTBEAT = 10 * 60.0
MAX_SERVER_HEARTBEAT = 30 * 60.0

_MASK = 0xFFFFFFFF
_C1 = 0xCC9E2D51
_C2 = 0x1B873593
_K = 0xE6546B64
_INT32 = re.compile(r"[+-]?[0-9]+")


def _rot(value: int, shift: int) -> int:
    if shift == 0:
        return value
    return ((value >> shift) | (value << (32 - shift))) & _MASK


def _fmix(h: int) -> int:
    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _MASK
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _MASK
    h ^= h >> 16
    return h


def _mur(a: int, h: int) -> int:
    a = (a * _C1) & _MASK
    a = _rot(a, 17)
    a = (a * _C2) & _MASK
    h ^= a
    h = _rot(h, 19)
    return (h * 5 + _K) & _MASK


def _mix(h: int) -> int:
    return (_rot(h, 19) * 5 + _K) & _MASK


def _scramble(value: int) -> int:
    return (_rot((value * _C1) & _MASK, 17) * _C2) & _MASK


def _fetch(data: bytes, pos: int) -> int:
    return int.from_bytes(data[pos : pos + 4], "little")


def _bswap(value: int) -> int:
    return int.from_bytes(value.to_bytes(4, "little"), "big")


def _city_hash32(data: bytes) -> int:
    """32-bit CityHash of a byte string."""
    n = len(data)
    if n <= 4:
        b, c = 0, 9
        for byte in data:
            signed = byte - 256 if byte > 127 else byte
            b = (b * _C1 + signed) & _MASK
            c ^= b
        return _fmix(_mur(b, _mur(n, c)))
    if n <= 12:
        a = (n + _fetch(data, 0)) & _MASK
        b = (n * 5 + _fetch(data, n - 4)) & _MASK
        c = (9 + _fetch(data, (n >> 1) & 4)) & _MASK
        d = (n * 5) & _MASK
        return _fmix(_mur(c, _mur(b, _mur(a, d))))
    if n <= 24:
        a = _fetch(data, (n >> 1) - 4)
        b = _fetch(data, 4)
        c = _fetch(data, n - 8)
        d = _fetch(data, n >> 1)
        e = _fetch(data, 0)
        f = _fetch(data, n - 4)
        return _fmix(_mur(f, _mur(e, _mur(d, _mur(c, _mur(b, _mur(a, n)))))))

    h = n & _MASK
    g = (_C1 * n) & _MASK
    f = g
    a0 = _scramble(_fetch(data, n - 4))
    a1 = _scramble(_fetch(data, n - 8))
    a2 = _scramble(_fetch(data, n - 16))
    a3 = _scramble(_fetch(data, n - 12))
    a4 = _scramble(_fetch(data, n - 20))
    h = _mix(h ^ a0)
    h = _mix(h ^ a2)
    g = _mix(g ^ a1)
    g = _mix(g ^ a3)
    f = _mix((f + a4) & _MASK)
    for start in range(0, ((n - 1) // 20) * 20, 20):
        a0 = _scramble(_fetch(data, start))
        a1 = _fetch(data, start + 4)
        a2 = _scramble(_fetch(data, start + 8))
        a3 = _scramble(_fetch(data, start + 12))
        a4 = _fetch(data, start + 16)
        h ^= a0
        h = (_rot(h, 18) * 5 + _K) & _MASK
        f = (_rot((f + a1) & _MASK, 19) * _C1) & _MASK
        g = (_rot((g + a2) & _MASK, 18) * 5 + _K) & _MASK
        h = _mix(h ^ ((a3 + a1) & _MASK))
        g = (_bswap(g ^ a4) * 5) & _MASK
        h = _bswap((h + a4 * 5) & _MASK)
        f = (f + a0) & _MASK
        f, h, g = g, f, h
    g = (_rot(g, 11) * _C1) & _MASK
    g = (_rot(g, 17) * _C1) & _MASK
    f = (_rot(f, 11) * _C1) & _MASK
    f = (_rot(f, 17) * _C1) & _MASK
    h = (_rot((h + g) & _MASK, 19) * 5 + _K) & _MASK
    h = (_rot(h, 17) * _C1) & _MASK
    h = (_rot((h + f) & _MASK, 19) * 5 + _K) & _MASK
    h = (_rot(h, 17) * _C1) & _MASK
    return h


def _split_int32s(text: str, sep: str = ",") -> list[int]:
    """Parse a separated list of 32-bit integers; raise ValueError on a bad item."""
    if not text:
        return []
    values = []
    for part in text.split(sep):
        if not _INT32.fullmatch(part):
            raise ValueError(f"invalid integer {part!r}")
        number = int(part)
        if not -(1 << 31) <= number < (1 << 31):
            raise ValueError(f"integer {part!r} out of range")
        values.append(number)
    return values


@dataclass
class ConnectResult:
    """What the logic service answers to an authenticated connection."""

    mid: int
    key: str
    room_id: str
    accepts: list[int] = field(default_factory=list)
    heartbeat: float = 0.0


class CometServer:
    """Holds the buckets of a comet server and talks to the logic service.

    ``logic_client`` provides ``connect(server, cookie, token)``,
    ``disconnect(mid, key, server)``, ``heartbeat(mid, key, server)``,
    ``renew_online(server, room_count)`` and ``receive(mid, proto)``.
    With an ``online_interval`` a background thread refreshes room online
    counts that often.
    """

    def __init__(self, config: Config, logic_client: Any, online_interval: float | None = 10.0) -> None:
        self.config = config
        self.server_id = config.env.host
        self._logic = logic_client
        self._buckets = [Bucket(config.bucket) for _ in range(config.bucket.size)]
        self._bucket_idx = config.bucket.size
        self._stop = threading.Event()
        self._online_thread: threading.Thread | None = None
        if online_interval is not None:
            self._online_thread = threading.Thread(
                target=self._online_loop, args=(online_interval,), daemon=True
            )
            self._online_thread.start()

    def buckets(self) -> list[Bucket]:
        return list(self._buckets)

    def bucket(self, sub_key: str) -> Bucket:
        """Return the bucket that owns a subscription key."""
        idx = _city_hash32(sub_key.encode("utf-8")) % self._bucket_idx
        if self.config.debug:
            logger.info("%s hit channel bucket index: %d use cityhash", sub_key, idx)
        return self._buckets[idx]

    def rand_server_heartbeat(self) -> float:
        """Return a random interval, in seconds, between server heartbeats to logic."""
        return MIN_SERVER_HEARTBEAT + random.random() * (MAX_SERVER_HEARTBEAT - MIN_SERVER_HEARTBEAT)

    def connect(self, proto: Proto, cookie: str) -> ConnectResult:
        """Authenticate a connection with the token carried in the frame body."""
        reply = self._logic.connect(self.server_id, cookie, proto.body or b"")
        return ConnectResult(
            mid=reply.mid,
            key=reply.key,
            room_id=reply.room_id,
            accepts=list(reply.accepts or ()),
            heartbeat=float(reply.heartbeat),
        )

    def disconnect(self, mid: int, key: str) -> None:
        self._logic.disconnect(mid, key, self.server_id)

    def heartbeat(self, mid: int, key: str) -> None:
        self._logic.heartbeat(mid, key, self.server_id)

    def renew_online(self, room_count: dict[str, int]) -> dict[str, int]:
        """Report this server's room counts and return the cluster-wide counts."""
        return dict(self._logic.renew_online(self.server_id, room_count) or {})

    def receive(self, mid: int, proto: Proto) -> None:
        self._logic.receive(mid, proto)

    def operate(self, proto: Proto, channel: Channel, bucket: Bucket) -> None:
        """Handle a client frame in place, turning it into its reply."""
        text = (proto.body or b"").decode("utf-8", errors="replace")
        if proto.op == Op.CHANGE_ROOM:
            try:
                bucket.change_room(text, channel)
            except CometError as exc:
                logger.error("change room(%s) error(%s)", text, exc)
            proto.op = int(Op.CHANGE_ROOM_REPLY)
        elif proto.op == Op.SUB:
            try:
                channel.watch(*_split_int32s(text))
            except ValueError:
                pass
            proto.op = int(Op.SUB_REPLY)
        elif proto.op == Op.UNSUB:
            try:
                channel.unwatch(*_split_int32s(text))
            except ValueError:
                pass
            proto.op = int(Op.UNSUB_REPLY)
        else:
            try:
                self.receive(channel.mid, proto)
            except Exception as exc:  # the client still gets its reply
                logger.error("receive(%d) op:%d error(%s)", channel.mid, proto.op, exc)
            proto.body = None

    def refresh_online(self) -> dict[str, int]:
        """Send local room counts to logic and store the cluster-wide counts it returns."""
        room_count: dict[str, int] = {}
        for bucket in self._buckets:
            for room_id, count in bucket.rooms_count().items():
                room_count[room_id] = room_count.get(room_id, 0) + count
        all_rooms = self.renew_online(room_count)
        for bucket in self._buckets:
            bucket.up_rooms_count(all_rooms)
        return all_rooms

    def close(self) -> None:
        """Stop the online refresh and the buckets' workers."""
        self._stop.set()
        if self._online_thread is not None:
            self._online_thread.join()
            self._online_thread = None
        for bucket in self._buckets:
            bucket.close()

    def _online_loop(self, interval: float) -> None:
        while not self._stop.is_set():
            try:
                self.refresh_online()
            except Exception as exc:
                logger.error("renew online error(%s)", exc)
                wait = 1.0
            else:
                wait = interval
            self._stop.wait(wait)
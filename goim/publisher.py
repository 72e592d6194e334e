"""Messages the logic service publishes to the push job through a message queue."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

logger = logging.getLogger(__name__)


class PushType(IntEnum):
    """Who a push message is for."""

    PUSH = 0
    ROOM = 1
    BROADCAST = 2


@dataclass
class PushMsg:
    """A push request for the job: to keys on a server, to a room, or to everyone."""

    type: PushType = PushType.PUSH
    operation: int = 0
    speed: int = 0
    server: str = ""
    room: str = ""
    keys: list[str] = field(default_factory=list)
    msg: bytes = b""

    def encode(self) -> bytes:
        """Serialize as compact JSON with the message body in base64."""
        return json.dumps(
            {
                "type": int(self.type),
                "operation": self.operation,
                "speed": self.speed,
                "server": self.server,
                "room": self.room,
                "keys": list(self.keys),
                "msg": base64.b64encode(self.msg).decode("ascii"),
            },
            separators=(",", ":"),
        ).encode("utf-8")

    @classmethod
    def decode(cls, data: bytes | str) -> PushMsg:
        """Parse the form written by :meth:`encode`; raise ValueError if it is malformed."""
        try:
            obj = json.loads(data)
        except ValueError as exc:
            raise ValueError(f"invalid push message: {exc}") from None
        if not isinstance(obj, dict):
            raise ValueError("invalid push message: not an object")
        keys = obj.get("keys") or []
        if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
            raise ValueError("invalid push message: keys must be strings")
        try:
            return cls(
                type=PushType(obj.get("type", 0)),
                operation=int(obj.get("operation", 0)),
                speed=int(obj.get("speed", 0)),
                server=str(obj.get("server", "")),
                room=str(obj.get("room", "")),
                keys=keys,
                msg=base64.b64decode(obj.get("msg", ""), validate=True),
            )
        except (TypeError, ValueError, binascii.Error) as exc:
            raise ValueError(f"invalid push message: {exc}") from None


class Publisher:
    """Publishes push messages through ``producer.send(topic, key, value)``."""

    def __init__(self, producer: Any, topic: str) -> None:
        self.producer = producer
        self.topic = topic

    def _send(self, key: str, push: PushMsg) -> None:
        try:
            self.producer.send(self.topic, key.encode("utf-8"), push.encode())
        except Exception:
            logger.exception("publish(%s) failed", push)
            raise

    def push_msg(self, op: int, server: str, keys: list[str], msg: bytes) -> None:
        """Publish a message for connection keys on one comet server."""
        if not keys:
            raise ValueError("push message needs at least one key")
        push = PushMsg(type=PushType.PUSH, operation=op, server=server, keys=list(keys), msg=msg)
        self._send(keys[0], push)

    def broadcast_room_msg(self, op: int, room: str, msg: bytes) -> None:
        """Publish a message for everyone in a room."""
        self._send(room, PushMsg(type=PushType.ROOM, operation=op, room=room, msg=msg))

    def broadcast_msg(self, op: int, speed: int, msg: bytes) -> None:
        """Publish a message for every connection, at the given speed."""
        self._send(str(op), PushMsg(type=PushType.BROADCAST, operation=op, speed=speed, msg=msg))
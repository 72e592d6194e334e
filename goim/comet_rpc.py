"""Push service of a comet server: deliver frames to keys, rooms or everyone."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from .comet_errors import BroadcastArgError, BroadcastRoomArgError, PushMsgArgError
from .comet_server import CometServer
from .protocol import Proto


@dataclass
class PushMsgReq:
    keys: list[str] = field(default_factory=list)
    proto_op: int = 0
    proto: Proto | None = None


@dataclass
class BroadcastReq:
    proto: Proto | None = None
    proto_op: int = 0
    speed: int = 0


@dataclass
class BroadcastRoomReq:
    room_id: str = ""
    proto: Proto | None = None


class CometService:
    """Request handlers that the push job calls on a comet server."""

    def __init__(self, server: CometServer) -> None:
        self.server = server

    def push_msg(self, req: PushMsgReq) -> None:
        """Push a frame to the channels of the given keys that watch its operation."""
        if not req.keys or req.proto is None:
            raise PushMsgArgError()
        for key in req.keys:
            channel = self.server.bucket(key).channel(key)
            if channel is not None and channel.need_push(req.proto_op):
                channel.push(req.proto)

    def broadcast(self, req: BroadcastReq) -> threading.Thread:
        """Push a frame to every watching channel in the background.

        With a positive speed, pause between buckets for roughly
        ``channels // speed`` seconds. Returns the thread doing the work.
        """
        if req.proto is None:
            raise BroadcastArgError()
        proto = req.proto

        def run() -> None:
            for bucket in self.server.buckets():
                bucket.broadcast(proto, req.proto_op)
                if req.speed > 0:
                    time.sleep(bucket.channel_count() // req.speed)

        thread = threading.Thread(target=run, daemon=True)
        thread.start()
        return thread

    def broadcast_room(self, req: BroadcastRoomReq) -> None:
        """Queue a frame for a room in every bucket."""
        if req.proto is None or not req.room_id:
            raise BroadcastRoomArgError()
        for bucket in self.server.buckets():
            bucket.broadcast_room(req.room_id, req.proto)

    def rooms(self) -> set[str]:
        """Return ids of rooms with anyone online on this server."""
        result: set[str] = set()
        for bucket in self.server.buckets():
            result |= bucket.rooms()
        return result
"""A chat room on a comet server: the channels that joined it."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Iterator

from .comet_errors import RoomDroppedError
from .protocol import Proto

if TYPE_CHECKING:
    from .channel import Channel


class Room:
    """Channels in a room, kept as a doubly linked list through the channels."""

    def __init__(self, room_id: str) -> None:
        self.id = room_id
        self.online = 0
        self.all_online = 0
        self.dropped = False
        self._head: Channel | None = None
        self._lock = threading.Lock()

    def _iter(self) -> Iterator[Channel]:
        channel = self._head
        while channel is not None:
            yield channel
            channel = channel.next

    def members(self) -> list[Channel]:
        """Return the channels in the room, newest first."""
        with self._lock:
            return list(self._iter())

    def put(self, channel: Channel) -> None:
        """Insert a channel at the head; raise RoomDroppedError if the room is gone."""
        with self._lock:
            if self.dropped:
                raise RoomDroppedError()
            if self._head is not None:
                self._head.prev = channel
            channel.next = self._head
            channel.prev = None
            self._head = channel
            self.online += 1

    def delete(self, channel: Channel) -> bool:
        """Unlink a channel; return True when the room became empty and is dropped.

        A channel with no neighbours is treated as not linked and left alone.
        """
        with self._lock:
            if channel.prev is None and channel.next is None:
                return False
            if channel.next is not None:
                channel.next.prev = channel.prev
            if channel.prev is not None:
                channel.prev.next = channel.next
            else:
                self._head = channel.next
            channel.next = None
            channel.prev = None
            self.online -= 1
            self.dropped = self.online == 0
            return self.dropped

    def push(self, proto: Proto) -> None:
        """Offer a frame to every channel; full channels drop it."""
        with self._lock:
            for channel in self._iter():
                channel.push(proto)

    def close(self) -> None:
        """Tell every channel in the room to finish."""
        for channel in self.members():
            channel.close()

    def online_num(self) -> int:
        """Return the cluster-wide online count if known, else this server's."""
        return self.all_online if self.all_online > 0 else self.online
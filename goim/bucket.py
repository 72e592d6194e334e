"""A shard of a comet server's channels and rooms."""

from __future__ import annotations

import itertools
import queue
import threading
from collections import Counter

from .channel import Channel
from .comet_config import BucketConfig
from .protocol import Proto
from .room import Room


class Bucket:
    """Holds channels by key and rooms by id, with workers for room broadcasts."""

    def __init__(self, config: BucketConfig | None = None) -> None:
        self.config = config or BucketConfig()
        self._lock = threading.Lock()
        self._channels: dict[str, Channel] = {}
        self._rooms: dict[str, Room] = {}
        self._ip_counts: Counter[str] = Counter()
        self._counter = itertools.count(1)
        amount = max(self.config.routine_amount, 1)
        self._queues: list[queue.Queue[tuple[str, Proto] | None]] = [
            queue.Queue(maxsize=max(self.config.routine_size, 0)) for _ in range(amount)
        ]
        self._workers = [
            threading.Thread(target=self._room_worker, args=(q,), daemon=True) for q in self._queues
        ]
        for worker in self._workers:
            worker.start()

    def channel_count(self) -> int:
        return len(self._channels)

    def room_count(self) -> int:
        return len(self._rooms)

    def rooms_count(self) -> dict[str, int]:
        """Return online counts of rooms that have anyone in them."""
        with self._lock:
            return {rid: room.online for rid, room in self._rooms.items() if room.online > 0}

    def _get_or_create_room(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            room = self._rooms[room_id] = Room(room_id)
        return room

    def change_room(self, room_id: str, channel: Channel) -> None:
        """Move a channel to another room, or out of any room if room_id is empty."""
        old = channel.room
        if not room_id:
            if old is not None and old.delete(channel):
                self.del_room(old)
            channel.room = None
            return
        with self._lock:
            new = self._get_or_create_room(room_id)
        if old is not None and old.delete(channel):
            self.del_room(old)
        new.put(channel)
        channel.room = new

    def put(self, room_id: str, channel: Channel) -> None:
        """Register a channel under its key, closing any channel it replaces."""
        room = None
        with self._lock:
            old = self._channels.get(channel.key)
            if old is not None:
                old.close()
            self._channels[channel.key] = channel
            if room_id:
                room = self._get_or_create_room(room_id)
                channel.room = room
            self._ip_counts[channel.ip] += 1
        if room is not None:
            room.put(channel)

    def delete(self, channel: Channel) -> None:
        """Remove a channel by its key and take it out of its room."""
        room = None
        current = None
        with self._lock:
            current = self._channels.get(channel.key)
            if current is not None:
                room = current.room
                if current is channel:
                    del self._channels[channel.key]
                if self._ip_counts[current.ip] > 1:
                    self._ip_counts[current.ip] -= 1
                else:
                    self._ip_counts.pop(current.ip, None)
        if room is not None and current is not None and room.delete(current):
            self.del_room(room)

    def channel(self, key: str) -> Channel | None:
        with self._lock:
            return self._channels.get(key)

    def broadcast(self, proto: Proto, op: int) -> None:
        """Offer a frame to every channel watching the operation."""
        with self._lock:
            for channel in self._channels.values():
                if channel.need_push(op):
                    channel.push(proto)

    def room(self, room_id: str) -> Room | None:
        with self._lock:
            return self._rooms.get(room_id)

    def del_room(self, room: Room) -> None:
        """Forget a room and close its channels."""
        with self._lock:
            self._rooms.pop(room.id, None)
        room.close()

    def broadcast_room(self, room_id: str, proto: Proto) -> None:
        """Hand a room broadcast to one of the workers, round robin."""
        index = next(self._counter) % len(self._queues)
        self._queues[index].put((room_id, proto))

    def rooms(self) -> set[str]:
        """Return ids of rooms that have anyone in them."""
        with self._lock:
            return {rid for rid, room in self._rooms.items() if room.online > 0}

    def ip_count(self) -> set[str]:
        """Return the distinct client addresses connected to this bucket."""
        with self._lock:
            return set(self._ip_counts)

    def up_rooms_count(self, room_count: dict[str, int]) -> None:
        """Store cluster-wide online counts; rooms not listed get zero."""
        with self._lock:
            for rid, room in self._rooms.items():
                room.all_online = room_count.get(rid, 0)

    def close(self) -> None:
        """Stop the broadcast workers."""
        for q in self._queues:
            q.put(None)
        for worker in self._workers:
            worker.join()

    def _room_worker(self, q: queue.Queue[tuple[str, Proto] | None]) -> None:
        while (item := q.get()) is not None:
            room_id, proto = item
            room = self.room(room_id)
            if room is not None:
                room.push(proto)
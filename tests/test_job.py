import threading
import time
from dataclasses import dataclass, field
from types import SimpleNamespace

import pytest

from goim.job import Job, JobRoom, RoomFullError
from goim.protocol import Op, Proto
from goim.publisher import PushMsg, PushType


@dataclass
class _Instance:
    hostname: str
    addrs: list = field(default_factory=list)


class _FakeClient:
    def __init__(self):
        self.calls = []
        self.lock = threading.Lock()

    def _record(self, kind, req):
        with self.lock:
            self.calls.append((kind, req))

    def push_msg(self, req):
        self._record("push", req)

    def broadcast_room(self, req):
        self._record("room", req)

    def broadcast(self, req):
        self._record("broadcast", req)


def _wait(cond, timeout=3.0):
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if cond():
            return True
        time.sleep(0.01)
    return cond()


def _job(batch=2, signal=1.0, idle=5.0):
    clients = {}

    def factory(addr):
        clients[addr] = _FakeClient()
        return clients[addr]

    config = SimpleNamespace(
        env=SimpleNamespace(zone="sh001"),
        comet=SimpleNamespace(routine_size=1, routine_chan=8),
        room=SimpleNamespace(batch=batch, signal=signal, idle=idle),
    )
    return Job(config, factory), clients


def _one_comet(job):
    job.new_address({"sh001": [_Instance("h1", ["grpc://127.0.0.1:3109"])]})


def test_new_address_empty_zone_raises():
    job, _ = _job()
    with pytest.raises(ValueError):
        job.new_address({"other": [_Instance("h1", ["grpc://127.0.0.1:1"])]})


def test_new_address_reuses_and_removes():
    job, _ = _job()
    try:
        _one_comet(job)
        first = job.comet_servers["h1"]
        job.new_address({
            "sh001": [
                _Instance("h1", ["grpc://127.0.0.1:3109"]),
                _Instance("h2", ["grpc://127.0.0.2:3109"]),
            ]
        })
        assert job.comet_servers["h1"] is first
        job.new_address({"sh001": [_Instance("h2", ["grpc://127.0.0.2:3109"])]})
        assert set(job.comet_servers) == {"h2"}
    finally:
        job.close()


def test_push_keys_sends_raw_proto():
    job, clients = _job()
    try:
        _one_comet(job)
        client = clients["127.0.0.1:3109"]
        job.push(PushMsg(type=PushType.PUSH, operation=1000, server="h1", keys=["k1"], msg=b"hi"))
        assert _wait(lambda: len(client.calls) == 1)
        kind, req = client.calls[0]
        assert kind == "push"
        assert req.keys == ["k1"]
        assert req.proto_op == 1000
        assert req.proto.op == Op.RAW
        assert req.proto.body == Proto(ver=1, op=1000, body=b"hi").encode()
    finally:
        job.close()


def test_push_keys_unknown_server_is_ignored():
    job, clients = _job()
    try:
        _one_comet(job)
        client = clients["127.0.0.1:3109"]
        job.push(PushMsg(type=PushType.PUSH, operation=1000, server="nope", keys=["k1"], msg=b"hi"))
        time.sleep(0.1)
        assert client.calls == []
    finally:
        job.close()


def test_broadcast_splits_speed():
    job, clients = _job()
    try:
        job.new_address({
            "sh001": [
                _Instance("h1", ["grpc://127.0.0.1:3109"]),
                _Instance("h2", ["grpc://127.0.0.2:3109"]),
            ]
        })
        job.push(PushMsg(type=PushType.BROADCAST, operation=1000, speed=100, msg=b"all"))
        for client in clients.values():
            assert _wait(lambda c=client: len(c.calls) == 1)
            kind, req = client.calls[0]
            assert kind == "broadcast"
            assert req.speed == 50
            assert req.proto_op == 1000
            assert req.proto.body == Proto(ver=1, op=1000, body=b"all").encode()
    finally:
        job.close()


def test_room_batch_sends_merged_frames():
    job, clients = _job(batch=2, signal=2.0)
    try:
        _one_comet(job)
        client = clients["127.0.0.1:3109"]
        job.push(PushMsg(type=PushType.ROOM, operation=1000, room="test://1", msg=b"a"))
        job.push(PushMsg(type=PushType.ROOM, operation=1000, room="test://1", msg=b"b"))
        assert _wait(lambda: len(client.calls) == 1)
        kind, req = client.calls[0]
        assert kind == "room"
        assert req.room_id == "test://1"
        assert req.proto.op == Op.RAW
        expected = Proto(ver=1, op=1000, body=b"a").encode() + Proto(ver=1, op=1000, body=b"b").encode()
        assert req.proto.body == expected
    finally:
        job.close()


def test_room_signal_flushes_single_message():
    job, clients = _job(batch=10, signal=0.05)
    try:
        _one_comet(job)
        client = clients["127.0.0.1:3109"]
        job.push(PushMsg(type=PushType.ROOM, operation=7, room="test://2", msg=b"one"))
        assert _wait(lambda: len(client.calls) == 1)
        assert client.calls[0][1].proto.body == Proto(ver=1, op=7, body=b"one").encode()
    finally:
        job.close()


def test_idle_room_removes_itself():
    job, clients = _job(batch=10, signal=0.05, idle=0.1)
    try:
        _one_comet(job)
        job.push(PushMsg(type=PushType.ROOM, operation=7, room="test://3", msg=b"x"))
        assert "test://3" in job.rooms
        assert _wait(lambda: "test://3" not in job.rooms)
    finally:
        job.close()


def test_get_room_returns_same_room():
    job, _ = _job()
    try:
        room = job.get_room("test://4")
        assert job.get_room("test://4") is room
    finally:
        job.close()


def test_room_full_raises():
    job, _ = _job(batch=2)
    room = JobRoom(job, "test://5", job.config.room)
    room.stop()
    for _ in range(4):
        room.push(1, b"m")
    with pytest.raises(RoomFullError):
        room.push(1, b"m")


def test_consume_counts_good_messages():
    job, clients = _job()
    try:
        _one_comet(job)
        client = clients["127.0.0.1:3109"]
        good = PushMsg(type=PushType.PUSH, operation=1000, server="h1", keys=["k"], msg=b"m").encode()
        room = PushMsg(type=PushType.ROOM, operation=1000, room="test://1", msg=b"m").encode()
        handled = job.consume([good, b"not json", room])
        assert handled == 2
        assert "test://1" in job.rooms
        assert _wait(lambda: any(kind == "push" for kind, _ in client.calls))
    finally:
        job.close()
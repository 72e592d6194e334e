import pytest

from goim.channel import Channel
from goim.protocol import PROTO_FINISH, PROTO_READY, Proto


def test_watch_and_unwatch():
    ch = Channel(4, 4)
    ch.watch(1000, 1001)
    assert ch.need_push(1000)
    assert ch.need_push(1001)
    assert not ch.need_push(1002)
    ch.unwatch(1000)
    assert not ch.need_push(1000)
    assert ch.need_push(1001)


def test_unwatch_unknown_op_is_harmless():
    ch = Channel(4, 4)
    ch.unwatch(5)
    assert not ch.need_push(5)


def test_push_then_ready_returns_frame():
    ch = Channel(4, 4)
    proto = Proto(op=1000, body=b"x")
    ch.push(proto)
    assert ch.ready(timeout=1) is proto


def test_push_drops_when_full():
    ch = Channel(4, 1)
    first, second = Proto(seq=1), Proto(seq=2)
    ch.push(first)
    ch.push(second)
    assert ch.ready(timeout=1) is first
    with pytest.raises(TimeoutError):
        ch.ready(timeout=0.05)


def test_signal_and_close_send_markers():
    ch = Channel(4, 4)
    ch.signal()
    ch.close()
    assert ch.ready(timeout=1) is PROTO_READY
    assert ch.ready(timeout=1) is PROTO_FINISH


def test_client_ring_sized_from_cli():
    ch = Channel(5, 4)
    assert ch.cli_proto.size >= 5
    assert ch.room is None
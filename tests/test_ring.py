import pytest

from goim.comet_errors import RingEmptyError, RingFullError
from goim.ring import Ring


@pytest.mark.parametrize("num", [1, 2, 3, 5, 8, 100])
def test_size_is_power_of_two_not_below_request(num):
    ring = Ring(num)
    assert ring.size >= num
    assert ring.size & (ring.size - 1) == 0
    assert ring.size < 2 * num


def test_size_of_three_rounds_to_four():
    assert Ring(3).size == 4


def test_empty_ring_get_raises():
    with pytest.raises(RingEmptyError):
        Ring(4).get()


def test_full_ring_set_raises():
    ring = Ring(4)
    for _ in range(ring.size):
        ring.set()
        ring.set_adv()
    assert len(ring) == ring.size
    with pytest.raises(RingFullError):
        ring.set()


def test_frames_come_out_in_order():
    ring = Ring(4)
    for seq in range(3):
        proto = ring.set()
        proto.seq = seq
        ring.set_adv()
    got = []
    while True:
        try:
            proto = ring.get()
        except RingEmptyError:
            break
        got.append(proto.seq)
        ring.get_adv()
    assert got == [0, 1, 2]


def test_get_returns_slot_filled_by_set():
    ring = Ring(2)
    written = ring.set()
    ring.set_adv()
    assert ring.get() is written


def test_wraps_around_after_release():
    ring = Ring(2)
    for seq in range(10):
        ring.set().seq = seq
        ring.set_adv()
        assert ring.get().seq == seq
        ring.get_adv()
    assert len(ring) == 0


def test_set_without_adv_reuses_slot():
    ring = Ring(2)
    ring.set().seq = 5
    assert ring.set().seq == 5
    assert len(ring) == 0
    ring.set_adv()
    assert ring.get().seq == 5
    assert len(ring) == 1


def test_reset_empties_ring():
    ring = Ring(2)
    ring.set()
    ring.set_adv()
    ring.reset()
    assert len(ring) == 0
    with pytest.raises(RingEmptyError):
        ring.get()
"""Fixed-size ring of reusable protocol frames for client requests."""

from __future__ import annotations

import logging

from .comet_errors import RingEmptyError, RingFullError
from .protocol import Proto

logger = logging.getLogger(__name__)


def _round_up_pow2(num: int) -> int:
    if num <= 0 or num & (num - 1) == 0:
        return max(num, 0)
    return 1 << num.bit_length()


class Ring:
    """Single-reader, single-writer ring whose size is rounded up to a power of two.

    The writer takes a slot with :meth:`set`, fills it and commits it with
    :meth:`set_adv`; the reader takes the oldest committed slot with :meth:`get`
    and releases it with :meth:`get_adv`.
    """

    def __init__(self, num: int) -> None:
        self.size = _round_up_pow2(num)
        self._mask = self.size - 1
        self._data = [Proto() for _ in range(self.size)]
        self._rp = 0
        self._wp = 0

    def __len__(self) -> int:
        return self._wp - self._rp

    def get(self) -> Proto:
        """Return the oldest committed frame; raise RingEmptyError if there is none."""
        if self._rp == self._wp:
            raise RingEmptyError()
        return self._data[self._rp & self._mask]

    def get_adv(self) -> None:
        """Release the frame returned by :meth:`get`."""
        self._rp += 1
        logger.debug("ring rp: %d, idx: %d", self._rp, self._rp & self._mask)

    def set(self) -> Proto:
        """Return the next free frame to fill; raise RingFullError if none is free."""
        if self._wp - self._rp >= self.size:
            raise RingFullError()
        return self._data[self._wp & self._mask]

    def set_adv(self) -> None:
        """Commit the frame returned by :meth:`set`."""
        self._wp += 1
        logger.debug("ring wp: %d, idx: %d", self._wp, self._wp & self._mask)

    def reset(self) -> None:
        """Discard every frame in the ring."""
        self._rp = 0
        self._wp = 0
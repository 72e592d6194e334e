"""Debug trace log for a chosen set of member ids."""

from __future__ import annotations

import threading
import time
from typing import Any, Iterable, TextIO

from .comet_config import WhitelistConfig


class Whitelist:
    """Member ids whose connections are traced to a dedicated log."""

    def __init__(self, stream: TextIO, mids: Iterable[int] = ()) -> None:
        self._stream = stream
        self._mids = set(mids)
        self._lock = threading.Lock()

    def contains(self, mid: int) -> bool:
        """Return True if a positive mid is on the list."""
        return mid > 0 and mid in self._mids

    def printf(self, fmt: str, *args: Any) -> None:
        """Write a timestamped, %-formatted line to the log."""
        message = fmt % args if args else fmt
        if not message.endswith("\n"):
            message += "\n"
        line = f"{time.strftime('%Y/%m/%d %H:%M:%S')} {message}"
        with self._lock:
            self._stream.write(line)
            self._stream.flush()

    def close(self) -> None:
        self._stream.close()


def load_whitelist(config: WhitelistConfig) -> Whitelist:
    """Open the whitelist log for appending; raise OSError if it cannot be opened."""
    stream = open(config.white_log, "a", encoding="utf-8")
    return Whitelist(stream, config.whitelist)
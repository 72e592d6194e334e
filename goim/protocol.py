"""Binary frame format shared by clients, the comet server and the push job.

A frame is a 16-byte big-endian header followed by an optional body::

    pack length (int32) | header length (int16) | version (int16)
    operation (int32)   | sequence (int32)      | body ...
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO

MAX_BODY_SIZE = 1 << 12

_HEADER = struct.Struct(">ihhii")
_ONLINE = struct.Struct(">i")

RAW_HEADER_SIZE = _HEADER.size
HEART_SIZE = _ONLINE.size
MAX_PACK_SIZE = MAX_BODY_SIZE + RAW_HEADER_SIZE


class Op(IntEnum):
    """Operation codes carried in the frame header."""

    HANDSHAKE = 0
    HANDSHAKE_REPLY = 1
    HEARTBEAT = 2
    HEARTBEAT_REPLY = 3
    SEND_MSG = 4
    SEND_MSG_REPLY = 5
    DISCONNECT_REPLY = 6
    AUTH = 7
    AUTH_REPLY = 8
    RAW = 9
    PROTO_READY = 10
    PROTO_FINISH = 11
    CHANGE_ROOM = 12
    CHANGE_ROOM_REPLY = 13
    SUB = 14
    SUB_REPLY = 15
    UNSUB = 16
    UNSUB_REPLY = 17


class ProtocolError(ValueError):
    """A frame could not be decoded."""

    default_message = "protocol error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class PackLengthError(ProtocolError):
    """The pack length field is out of range or disagrees with the data."""

    default_message = "default server codec pack length error"


class HeaderLengthError(ProtocolError):
    """The header length field is not the fixed header size."""

    default_message = "default server codec header length error"


def _int16(value: int) -> int:
    """Wrap an integer into the signed 16-bit range."""
    return ((value + 0x8000) & 0xFFFF) - 0x8000


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise EOFError(f"stream ended with {remaining} of {size} bytes unread")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


@dataclass
class Proto:
    """One protocol frame."""

    ver: int = 0
    op: int = 0
    seq: int = 0
    body: bytes | None = None

    def _header(self, pack_len: int) -> bytes:
        return _HEADER.pack(pack_len, RAW_HEADER_SIZE, _int16(self.ver), self.op, self.seq)

    def encode(self) -> bytes:
        """Return the frame as header plus body."""
        body = self.body or b""
        return self._header(RAW_HEADER_SIZE + len(body)) + body

    def encode_heartbeat(self, online: int) -> bytes:
        """Return a heartbeat reply frame whose body is the room's online count."""
        return self._header(RAW_HEADER_SIZE + HEART_SIZE) + _ONLINE.pack(online)

    @classmethod
    def decode(cls, data: bytes) -> Proto:
        """Decode one whole frame, as delivered by a websocket message."""
        if len(data) < RAW_HEADER_SIZE:
            raise PackLengthError()
        pack_len, header_len, ver, op, seq = _HEADER.unpack_from(data)
        if pack_len < 0 or pack_len > MAX_PACK_SIZE:
            raise PackLengthError()
        if header_len != RAW_HEADER_SIZE:
            raise HeaderLengthError()
        if pack_len > len(data):
            raise PackLengthError()
        body = bytes(data[header_len:pack_len]) if pack_len - header_len > 0 else None
        return cls(ver=ver, op=op, seq=seq, body=body)

    @classmethod
    def read_from(cls, stream: BinaryIO) -> Proto:
        """Read one frame from a byte stream; raise EOFError when it runs dry."""
        header = _read_exact(stream, RAW_HEADER_SIZE)
        pack_len, header_len, ver, op, seq = _HEADER.unpack(header)
        if pack_len > MAX_PACK_SIZE:
            raise PackLengthError()
        if header_len != RAW_HEADER_SIZE:
            raise HeaderLengthError()
        body_len = pack_len - header_len
        body = _read_exact(stream, body_len) if body_len > 0 else None
        return cls(ver=ver, op=op, seq=seq, body=body)

    def write_to(self, stream: BinaryIO) -> None:
        """Write the frame; a raw frame's body is already encoded and goes out as is."""
        if self.op == Op.RAW:
            if self.body:
                stream.write(self.body)
            return
        stream.write(self.encode())

    def write_heartbeat_to(self, stream: BinaryIO, online: int) -> None:
        """Write a heartbeat reply frame carrying the online count."""
        stream.write(self.encode_heartbeat(online))


PROTO_READY = Proto(op=int(Op.PROTO_READY))
PROTO_FINISH = Proto(op=int(Op.PROTO_FINISH))
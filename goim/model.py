"""Shared data model: discovery metadata keys, online counts and room keys."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

META_WEIGHT = "weight"
META_OFFLINE = "offline"
META_ADDRS = "addrs"
META_IP_COUNT = "ip_count"
META_CONN_COUNT = "conn_count"

PLATFORM_WEB = "web"


@dataclass
class Online:
    """Per-room online counts reported by one comet server."""

    server: str = ""
    room_count: dict[str, int] = field(default_factory=dict)
    updated: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form."""
        return {"server": self.server, "room_count": dict(self.room_count), "updated": self.updated}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Online:
        """Build from the JSON form; missing fields take zero values."""
        counts = data.get("room_count") or {}
        return cls(
            server=data.get("server") or "",
            room_count={str(room): int(count) for room, count in counts.items()},
            updated=int(data.get("updated") or 0),
        )


@dataclass
class Top:
    """One entry of an online ranking."""

    room_id: str
    count: int


@dataclass
class Instance:
    """A service instance as registered with discovery."""

    region: str = ""
    zone: str = ""
    env: str = ""
    hostname: str = ""
    appid: str = ""
    addrs: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)
    last_ts: int = 0


def encode_room_key(typ: str, room: str) -> str:
    """Join a room type and room id into a key such as ``test://room``."""
    return f"{typ}://{room}"


def _split_scheme(raw: str) -> tuple[str, str]:
    for i, ch in enumerate(raw):
        if ch.isascii() and ch.isalpha():
            continue
        if ch.isascii() and (ch.isdigit() or ch in "+-."):
            if i == 0:
                return "", raw
            continue
        if ch == ":":
            if i == 0:
                raise ValueError("missing protocol scheme")
            return raw[:i].lower(), raw[i + 1 :]
        return "", raw
    return "", raw


def _valid_port(port: str) -> bool:
    return port == "" or (port.startswith(":") and port[1:].isascii() and (port[1:] == "" or port[1:].isdigit()))


def _parse_host(host: str) -> str:
    if host.startswith("["):
        end = host.find("]")
        if end < 0:
            raise ValueError("missing ']' in host")
        if not _valid_port(host[end + 1 :]):
            raise ValueError(f"invalid port {host[end + 1:]!r} after host")
        return host
    colon = host.rfind(":")
    if colon >= 0 and not _valid_port(host[colon:]):
        raise ValueError(f"invalid port {host[colon:]!r} after host")
    return host


def decode_room_key(key: str) -> tuple[str, str]:
    """Split a room key into (type, room id); raise ValueError if it is not a valid URL."""
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in key):
        raise ValueError("invalid control character in URL")
    raw = key.split("#", 1)[0]
    scheme, rest = _split_scheme(raw)
    rest = rest.split("?", 1)[0]
    if not rest.startswith("/"):
        if not scheme:
            first = rest.split("/", 1)[0]
            if ":" in first:
                raise ValueError("first path segment in URL cannot contain colon")
        return scheme, ""
    if rest.startswith("//") and (scheme or not rest.startswith("///")):
        authority = rest[2:].split("/", 1)[0]
        return scheme, _parse_host(authority.rpartition("@")[2])
    return scheme, ""
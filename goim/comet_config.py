"""Comet server configuration: command-line options, defaults and TOML loading.

Durations are held as float seconds.
"""

import argparse
import os
import re
import socket
import sys
import tomllib
import types
from dataclasses import Field, dataclass, field, fields, is_dataclass
from fractions import Fraction
from typing import Any, Mapping, Sequence, Union, get_args, get_origin

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_UNIT_NS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60_000_000_000,
    "h": 3_600_000_000_000,
}
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}
_INT32 = re.compile(r"[+-]?\d+")


def parse_duration(value: Any) -> float:
    """Parse a duration such as ``"1h30m"`` or ``"100ms"``; numbers are seconds."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration {value!r}")
    text = value
    sign = 1
    if text and text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {value!r}")
    total = Fraction(0)
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        total += Fraction(match.group(1)) * _UNIT_NS[match.group(2)]
        pos = match.end()
    return sign * float(total / 1_000_000_000)


def _parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"invalid boolean {text!r}")


def _env_bool(text: str) -> bool:
    try:
        return _parse_bool(text)
    except ValueError:
        return False


def _env_int32(text: str) -> int:
    if not _INT32.fullmatch(text):
        return 0
    number = int(text)
    return number if -(1 << 31) <= number < (1 << 31) else 0


def _duration(seconds: float) -> Any:
    return field(default=seconds, metadata={"duration": True})


@dataclass
class Options:
    """Settings taken from the command line and environment."""

    conf: str = "comet-example.toml"
    region: str = ""
    zone: str = ""
    deploy_env: str = ""
    host: str = ""
    addrs: str = ""
    weight: int = 0
    offline: bool = False
    debug: bool = False


@dataclass
class Env:
    region: str = ""
    zone: str = ""
    deploy_env: str = ""
    host: str = ""
    weight: int = 0
    offline: bool = False
    addrs: list[str] = field(default_factory=list)


@dataclass
class RPCClientConfig:
    dial: float = _duration(1.0)
    timeout: float = _duration(1.0)


@dataclass
class RPCServerConfig:
    network: str = "tcp"
    addr: str = ":3109"
    timeout: float = _duration(1.0)
    idle_timeout: float = _duration(60.0)
    max_life_time: float = _duration(7200.0)
    force_close_wait: float = _duration(20.0)
    keep_alive_interval: float = _duration(60.0)
    keep_alive_timeout: float = _duration(20.0)


@dataclass
class TCPConfig:
    bind: list[str] = field(default_factory=lambda: [":3101"])
    sndbuf: int = 4096
    rcvbuf: int = 4096
    keep_alive: bool = False
    reader: int = 32
    read_buf: int = 1024
    read_buf_size: int = 8192
    writer: int = 32
    write_buf: int = 1024
    write_buf_size: int = 8192


@dataclass
class WebsocketConfig:
    bind: list[str] = field(default_factory=lambda: [":3102"])
    tls_open: bool = False
    tls_bind: list[str] = field(default_factory=list)
    cert_file: str = ""
    private_file: str = ""


@dataclass
class ProtocolConfig:
    timer: int = 32
    timer_size: int = 2048
    svr_proto: int = 10
    cli_proto: int = 5
    handshake_timeout: float = _duration(5.0)


@dataclass
class BucketConfig:
    size: int = 32
    channel: int = 1024
    room: int = 1024
    routine_amount: int = 32
    routine_size: int = 1024


@dataclass
class WhitelistConfig:
    whitelist: list[int] = field(default_factory=list)
    white_log: str = ""


@dataclass
class Config:
    """Complete comet configuration."""

    debug: bool = False
    env: Env = field(default_factory=Env)
    discovery: dict[str, Any] = field(default_factory=dict)
    tcp: TCPConfig = field(default_factory=TCPConfig)
    websocket: WebsocketConfig = field(default_factory=WebsocketConfig)
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    bucket: BucketConfig = field(default_factory=BucketConfig)
    rpc_client: RPCClientConfig = field(default_factory=RPCClientConfig)
    rpc_server: RPCServerConfig = field(default_factory=RPCServerConfig)
    whitelist: WhitelistConfig | None = None


def parse_options(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> Options:
    """Parse command-line flags, falling back to environment variables."""
    env = os.environ if environ is None else environ
    args = sys.argv[1:] if argv is None else list(argv)
    parser = argparse.ArgumentParser(prog="comet", allow_abbrev=False)
    parser.add_argument("-conf", "--conf", dest="conf", default="comet-example.toml")
    parser.add_argument("-region", "--region", dest="region", default=env.get("REGION", ""))
    parser.add_argument("-zone", "--zone", dest="zone", default=env.get("ZONE", ""))
    parser.add_argument(
        "-deploy.env", "--deploy.env", dest="deploy_env", default=env.get("DEPLOY_ENV", "")
    )
    parser.add_argument("-host", "--host", dest="host", default=socket.gethostname())
    parser.add_argument("-addrs", "--addrs", dest="addrs", default=env.get("ADDRS", ""))
    parser.add_argument(
        "-weight", "--weight", dest="weight", type=int, default=_env_int32(env.get("WEIGHT", ""))
    )
    for name in ("offline", "debug"):
        parser.add_argument(
            f"-{name}",
            f"--{name}",
            dest=name,
            nargs="?",
            const=True,
            type=_parse_bool,
            default=_env_bool(env.get(name.upper(), "")),
        )
    return Options(**vars(parser.parse_args(args)))


def default_config(options: Options | None = None) -> Config:
    """Build the default configuration for the given options."""
    if options is None:
        options = parse_options([])
    return Config(
        debug=options.debug,
        env=Env(
            region=options.region,
            zone=options.zone,
            deploy_env=options.deploy_env,
            host=options.host,
            weight=options.weight,
            offline=options.offline,
            addrs=options.addrs.split(","),
        ),
        discovery={
            "region": options.region,
            "zone": options.zone,
            "env": options.deploy_env,
            "host": options.host,
        },
    )


def _unwrap_optional(hint: Any) -> Any:
    if get_origin(hint) in (Union, types.UnionType):
        args = [arg for arg in get_args(hint) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


def _check_scalar(hint: Any, value: Any, name: str) -> Any:
    if hint is bool:
        if isinstance(value, bool):
            return value
    elif hint is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif hint is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif hint is str:
        if isinstance(value, str):
            return value
    else:
        return value
    raise ValueError(f"{name}: expected {hint.__name__}, got {value!r}")


def _coerce(current: Any, hint: Any, spec: Field, value: Any, name: str) -> Any:
    if spec.metadata.get("duration"):
        try:
            return parse_duration(value)
        except ValueError as exc:
            raise ValueError(f"{name}: {exc}") from None
    hint = _unwrap_optional(hint)
    if is_dataclass(hint):
        if not isinstance(value, dict):
            raise ValueError(f"{name}: expected a table, got {value!r}")
        target = current if current is not None else hint()
        _merge(target, value, name)
        return target
    origin = get_origin(hint)
    if origin is list:
        if not isinstance(value, list):
            raise ValueError(f"{name}: expected an array, got {value!r}")
        (item_hint,) = get_args(hint) or (Any,)
        return [_check_scalar(item_hint, item, name) for item in value]
    if origin is dict:
        if not isinstance(value, dict):
            raise ValueError(f"{name}: expected a table, got {value!r}")
        return {**(current or {}), **value}
    return _check_scalar(hint, value, name)


def _merge(target: Any, table: Mapping[str, Any], section: str) -> None:
    by_key = {spec.name.replace("_", "").lower(): spec for spec in fields(target)}
    for key, value in table.items():
        spec = by_key.get(key.lower())
        if spec is None:
            continue
        name = f"{section}.{key}" if section else key
        setattr(target, spec.name, _coerce(getattr(target, spec.name), spec.type, spec, value, name))


def load_config(path: str | os.PathLike[str] | None = None, options: Options | None = None) -> Config:
    """Load a TOML file on top of the defaults; unknown keys are ignored."""
    if options is None:
        options = parse_options([])
    if path is None:
        path = options.conf
    config = default_config(options)
    with open(path, "rb") as fh:
        table = tomllib.load(fh)
    _merge(config, table, "")
    return config
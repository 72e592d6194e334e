"""Logic service configuration: command-line options, defaults and TOML loading.

Durations are held as float seconds.
"""

from __future__ import annotations

import argparse
import os
import socket
import sys
import tomllib
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .comet_config import _duration, _env_int32, _merge


@dataclass
class Options:
    """Settings taken from the command line and environment."""

    conf: str = "logic-example.toml"
    region: str = ""
    zone: str = ""
    deploy_env: str = ""
    host: str = ""
    weight: int = 0


@dataclass
class Env:
    region: str = ""
    zone: str = ""
    deploy_env: str = ""
    host: str = ""
    weight: int = 0


@dataclass
class NodeConfig:
    default_domain: str = ""
    host_domain: str = ""
    tcp_port: int = 0
    ws_port: int = 0
    wss_port: int = 0
    heartbeat_max: int = 0
    heartbeat: float = _duration(0.0)
    region_weight: float = 0.0


@dataclass
class BackoffConfig:
    max_delay: int = 300
    base_delay: int = 3
    factor: float = 1.8
    jitter: float = 1.3


@dataclass
class RedisConfig:
    network: str = ""
    addr: str = ""
    auth: str = ""
    active: int = 0
    idle: int = 0
    dial_timeout: float = _duration(0.0)
    read_timeout: float = _duration(0.0)
    write_timeout: float = _duration(0.0)
    idle_timeout: float = _duration(0.0)
    expire: float = _duration(0.0)


@dataclass
class KafkaConfig:
    topic: str = ""
    brokers: list[str] = field(default_factory=list)


@dataclass
class RPCClientConfig:
    dial: float = _duration(1.0)
    timeout: float = _duration(1.0)


@dataclass
class RPCServerConfig:
    network: str = "tcp"
    addr: str = "3119"
    timeout: float = _duration(1.0)
    idle_timeout: float = _duration(60.0)
    max_life_time: float = _duration(7200.0)
    force_close_wait: float = _duration(20.0)
    keep_alive_interval: float = _duration(60.0)
    keep_alive_timeout: float = _duration(20.0)


@dataclass
class HTTPServerConfig:
    network: str = "tcp"
    addr: str = "3111"
    read_timeout: float = _duration(1.0)
    write_timeout: float = _duration(1.0)


@dataclass
class Config:
    """Complete logic configuration."""

    env: Env = field(default_factory=Env)
    discovery: dict[str, Any] = field(default_factory=dict)
    rpc_client: RPCClientConfig = field(default_factory=RPCClientConfig)
    rpc_server: RPCServerConfig = field(default_factory=RPCServerConfig)
    http_server: HTTPServerConfig = field(default_factory=HTTPServerConfig)
    kafka: KafkaConfig | None = None
    redis: RedisConfig | None = None
    node: NodeConfig | None = None
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    regions: dict[str, list[str]] = field(default_factory=dict)


def parse_options(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> Options:
    """Parse command-line flags, falling back to environment variables."""
    env = os.environ if environ is None else environ
    args = sys.argv[1:] if argv is None else list(argv)
    parser = argparse.ArgumentParser(prog="logic", allow_abbrev=False)
    parser.add_argument("-conf", "--conf", dest="conf", default="logic-example.toml")
    parser.add_argument("-region", "--region", dest="region", default=env.get("REGION", ""))
    parser.add_argument("-zone", "--zone", dest="zone", default=env.get("ZONE", ""))
    parser.add_argument(
        "-deploy.env", "--deploy.env", dest="deploy_env", default=env.get("DEPLOY_ENV", "")
    )
    parser.add_argument("-host", "--host", dest="host", default=socket.gethostname())
    parser.add_argument(
        "-weight", "--weight", dest="weight", type=int, default=_env_int32(env.get("WEIGHT", ""))
    )
    return Options(**vars(parser.parse_args(args)))


def default_config(options: Options | None = None) -> Config:
    """Build the default configuration for the given options."""
    if options is None:
        options = parse_options([])
    return Config(
        env=Env(
            region=options.region,
            zone=options.zone,
            deploy_env=options.deploy_env,
            host=options.host,
            weight=options.weight,
        ),
        discovery={
            "region": options.region,
            "zone": options.zone,
            "env": options.deploy_env,
            "host": options.host,
        },
    )


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
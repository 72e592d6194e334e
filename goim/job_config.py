"""Push job configuration: command-line options, defaults and TOML loading.

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

from .comet_config import _duration, _merge


@dataclass
class Options:
    """Settings taken from the command line and environment."""

    conf: str = "job-example.toml"
    region: str = ""
    zone: str = ""
    deploy_env: str = ""
    host: str = ""


@dataclass
class Env:
    region: str = ""
    zone: str = ""
    deploy_env: str = ""
    host: str = ""


@dataclass
class RoomConfig:
    batch: int = 20
    signal: float = _duration(1.0)
    idle: float = _duration(900.0)


@dataclass
class CometConfig:
    routine_chan: int = 1024
    routine_size: int = 32


@dataclass
class KafkaConfig:
    topic: str = ""
    group: str = ""
    brokers: list[str] = field(default_factory=list)


@dataclass
class Config:
    """Complete push job configuration."""

    env: Env = field(default_factory=Env)
    kafka: KafkaConfig | None = None
    discovery: dict[str, Any] = field(default_factory=dict)
    comet: CometConfig = field(default_factory=CometConfig)
    room: RoomConfig = field(default_factory=RoomConfig)


def parse_options(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> Options:
    """Parse command-line flags, falling back to environment variables."""
    env = os.environ if environ is None else environ
    args = sys.argv[1:] if argv is None else list(argv)
    parser = argparse.ArgumentParser(prog="job", allow_abbrev=False)
    parser.add_argument("-conf", "--conf", dest="conf", default="job-example.toml")
    parser.add_argument("-region", "--region", dest="region", default=env.get("REGION", ""))
    parser.add_argument("-zone", "--zone", dest="zone", default=env.get("ZONE", ""))
    parser.add_argument(
        "-deploy.env", "--deploy.env", dest="deploy_env", default=env.get("DEPLOY_ENV", "")
    )
    parser.add_argument("-host", "--host", dest="host", default=socket.gethostname())
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
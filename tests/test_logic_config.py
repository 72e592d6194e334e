import pytest

from goim.comet_config import parse_duration
from goim.logic_config import (
    BackoffConfig,
    HTTPServerConfig,
    Options,
    default_config,
    load_config,
    parse_options,
)

ENVIRON = {"REGION": "sh", "ZONE": "sh001", "DEPLOY_ENV": "dev", "WEIGHT": "10"}


def _options():
    return Options(region="sh", zone="sh001", deploy_env="dev", host="logic-1", weight=10)


def test_parse_options_from_environment():
    opts = parse_options(["-host", "logic-1"], ENVIRON)
    assert opts == Options(conf="logic-example.toml", region="sh", zone="sh001", deploy_env="dev", host="logic-1", weight=10)


def test_parse_options_flags_override_environment():
    opts = parse_options(["-region", "bj", "-weight", "5", "-conf", "other.toml"], ENVIRON)
    assert opts.region == "bj"
    assert opts.weight == 5
    assert opts.conf == "other.toml"
    assert opts.zone == "sh001"


def test_parse_options_bad_weight_env_is_zero():
    opts = parse_options([], {"WEIGHT": "heavy"})
    assert opts.weight == Options().weight


def test_default_config_values():
    config = default_config(_options())
    assert config.env.weight == 10
    assert config.env.host == "logic-1"
    assert config.discovery == {"region": "sh", "zone": "sh001", "env": "dev", "host": "logic-1"}
    assert config.http_server.addr == "3111"
    assert config.rpc_server.addr == "3119"
    assert config.rpc_server.idle_timeout == 60.0
    assert config.backoff == BackoffConfig(max_delay=300, base_delay=3, factor=1.8, jitter=1.3)
    assert config.node is None and config.redis is None and config.kafka is None


def test_load_config_merges_file(tmp_path):
    path = tmp_path / "logic.toml"
    path.write_text(
        """
[node]
defaultDomain = "conn.example.com"
hostDomain = ".example.com"
TCPPort = 3101
WSSPort = 3103
heartbeat = "30s"
heartbeatMax = 2
regionWeight = 1.6

[backoff]
maxDelay = 100

[redis]
addr = "127.0.0.1:6379"
expire = "30m"

[kafka]
topic = "goim-push-topic"
brokers = ["127.0.0.1:9092"]

[httpServer]
addr = ":3111"

[regions]
bj = ["beijing", "tianjin"]
""",
        encoding="utf-8",
    )
    config = load_config(path, _options())
    assert config.node.default_domain == "conn.example.com"
    assert config.node.host_domain == ".example.com"
    assert config.node.tcp_port == 3101
    assert config.node.wss_port == 3103
    assert config.node.heartbeat == 30.0
    assert config.node.heartbeat_max == 2
    assert config.node.region_weight == 1.6
    assert config.backoff.max_delay == 100
    assert config.backoff.base_delay == BackoffConfig().base_delay
    assert config.redis.addr == "127.0.0.1:6379"
    assert config.redis.expire == parse_duration("30m")
    assert config.kafka.topic == "goim-push-topic"
    assert config.kafka.brokers == ["127.0.0.1:9092"]
    assert config.http_server.addr == ":3111"
    assert config.http_server.network == HTTPServerConfig().network
    assert config.regions == {"bj": ["beijing", "tianjin"]}


def test_load_config_rejects_wrong_type(tmp_path):
    path = tmp_path / "logic.toml"
    path.write_text('[node]\nTCPPort = "x"\n', encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path, _options())


def test_load_config_rejects_bad_duration(tmp_path):
    path = tmp_path / "logic.toml"
    path.write_text('[redis]\nexpire = "soon"\n', encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path, _options())


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.toml", _options())
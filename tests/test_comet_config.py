import pytest

from goim.comet_config import (
    BucketConfig,
    Config,
    Options,
    WhitelistConfig,
    default_config,
    load_config,
    parse_duration,
    parse_options,
)


def test_parse_duration_relations():
    assert parse_duration("1m") == 60 * parse_duration("1s")
    assert parse_duration("1h30m") == parse_duration("90m")
    assert parse_duration("1000ms") == parse_duration("1s")
    assert parse_duration("-1s") == -parse_duration("1s")
    assert parse_duration("1.5h") == parse_duration("90m")
    assert parse_duration("0") == 0


def test_parse_duration_numbers_are_seconds():
    assert parse_duration(5) == parse_duration("5s")


@pytest.mark.parametrize("bad", ["", "1", "1x", "s", "1s2", True, None])
def test_parse_duration_invalid(bad):
    with pytest.raises(ValueError):
        parse_duration(bad)


def test_parse_options_from_environment():
    opts = parse_options([], {"REGION": "sh", "ZONE": "sh001", "WEIGHT": "10", "DEBUG": "true", "ADDRS": "127.0.0.1"})
    assert opts.region == "sh"
    assert opts.zone == "sh001"
    assert opts.weight == 10
    assert opts.debug is True
    assert opts.offline is False
    assert opts.addrs == "127.0.0.1"
    assert opts.conf == "comet-example.toml"


def test_parse_options_bad_environment_falls_back():
    opts = parse_options([], {"WEIGHT": "ten", "OFFLINE": "maybe"})
    assert opts.weight == 0
    assert opts.offline is False


def test_parse_options_flags_override_environment():
    opts = parse_options(
        ["-conf=target/comet.toml", "-region=bj", "-deploy.env=dev", "-weight=10", "-debug"],
        {"REGION": "sh"},
    )
    assert opts.conf == "target/comet.toml"
    assert opts.region == "bj"
    assert opts.deploy_env == "dev"
    assert opts.weight == 10
    assert opts.debug is True


def test_parse_options_explicit_false():
    opts = parse_options(["-debug=false"], {"DEBUG": "true"})
    assert opts.debug is False


def test_default_config_values():
    config = default_config(Options(region="sh", zone="sh001", host="h1", addrs="1.1.1.1,2.2.2.2"))
    assert config.tcp.bind == [":3101"]
    assert config.websocket.bind == [":3102"]
    assert config.rpc_server.addr == ":3109"
    assert config.bucket.size == 32
    assert config.protocol.cli_proto == 5
    assert config.protocol.svr_proto == 10
    assert config.protocol.handshake_timeout == parse_duration("5s")
    assert config.rpc_server.max_life_time == parse_duration("2h")
    assert config.env.addrs == ["1.1.1.1", "2.2.2.2"]
    assert config.discovery["region"] == "sh"
    assert config.discovery["host"] == "h1"
    assert config.whitelist is None


def test_default_config_empty_addrs():
    assert default_config(Options()).env.addrs == [""]


def test_load_config_merges_over_defaults(tmp_path):
    white_log = tmp_path / "white.log"
    path = tmp_path / "comet.toml"
    path.write_text(
        "debug = true\n"
        "unknownKey = 1\n"
        "[tcp]\n"
        'bind = [":4101"]\n'
        "keepAlive = true\n"
        "[protocol]\n"
        'handshakeTimeout = "8s"\n'
        "[bucket]\n"
        "routineAmount = 8\n"
        "[whitelist]\n"
        "Whitelist = [123]\n"
        f'WhiteLog = "{white_log.as_posix()}"\n'
    )
    opts = Options(host="h1")
    config = load_config(path, opts)
    defaults = default_config(opts)
    assert config.debug is True
    assert config.tcp.bind == [":4101"]
    assert config.tcp.keep_alive is True
    assert config.tcp.sndbuf == defaults.tcp.sndbuf
    assert config.protocol.handshake_timeout == parse_duration("8s")
    assert config.protocol.timer == defaults.protocol.timer
    assert config.bucket.routine_amount == 8
    assert config.bucket.size == BucketConfig().size
    assert config.whitelist == WhitelistConfig(whitelist=[123], white_log=white_log.as_posix())


def test_load_config_uses_options_path(tmp_path):
    path = tmp_path / "comet.toml"
    path.write_text('[rpcServer]\naddr = ":4109"\n')
    config = load_config(options=Options(conf=str(path)))
    assert isinstance(config, Config)
    assert config.rpc_server.addr == ":4109"


def test_load_config_type_error(tmp_path):
    path = tmp_path / "comet.toml"
    path.write_text('[tcp]\nsndbuf = "big"\n')
    with pytest.raises(ValueError):
        load_config(path, Options())


def test_load_config_bad_duration(tmp_path):
    path = tmp_path / "comet.toml"
    path.write_text('[protocol]\nhandshakeTimeout = "soon"\n')
    with pytest.raises(ValueError):
        load_config(path, Options())


def test_load_config_bad_toml(tmp_path):
    path = tmp_path / "comet.toml"
    path.write_text("[tcp\n")
    with pytest.raises(ValueError):
        load_config(path, Options())
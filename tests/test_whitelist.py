import pytest

from goim.comet_config import WhitelistConfig
from goim.whitelist import load_whitelist


def test_contains_listed_positive_mids(tmp_path):
    wl = load_whitelist(WhitelistConfig(whitelist=[1, 2, 0, -3], white_log=str(tmp_path / "w.log")))
    try:
        assert wl.contains(1)
        assert wl.contains(2)
        assert not wl.contains(7)
        assert not wl.contains(0)
        assert not wl.contains(-3)
    finally:
        wl.close()


def test_printf_appends_line(tmp_path):
    path = tmp_path / "w.log"
    wl = load_whitelist(WhitelistConfig(whitelist=[1], white_log=str(path)))
    wl.printf("key: %s auth\n", "abc")
    wl.printf("plain")
    wl.close()
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert lines[0].endswith(" key: abc auth")
    assert lines[1].endswith(" plain")


def test_log_is_appended_across_loads(tmp_path):
    path = tmp_path / "w.log"
    cfg = WhitelistConfig(whitelist=[], white_log=str(path))
    for word in ("first", "second"):
        wl = load_whitelist(cfg)
        wl.printf(word)
        wl.close()
    lines = path.read_text(encoding="utf-8").splitlines()
    assert [line.rsplit(" ", 1)[1] for line in lines] == ["first", "second"]


def test_unopenable_log_raises(tmp_path):
    with pytest.raises(OSError):
        load_whitelist(WhitelistConfig(white_log=str(tmp_path / "missing" / "w.log")))
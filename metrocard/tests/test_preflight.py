import pytest

from metrocard import preflight
from metrocard.utils.config import get_config


def test_config_defaults_and_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("DATA_FILE", str(tmp_path / "store" / "cards.json"))
    monkeypatch.setenv("CHECKOUT_TIMEOUT_MINUTES", "90")
    monkeypatch.setenv("REMINDER_CHECK_INTERVAL_S", "not-a-number")
    cfg = get_config()
    assert cfg["DATA_FILE"] == str(tmp_path / "store" / "cards.json")
    assert (tmp_path / "store").is_dir()
    assert cfg["CHECKOUT_TIMEOUT_MINUTES"] == 90
    assert cfg["REMINDER_CHECK_INTERVAL_S"] == 60


@pytest.mark.parametrize("token, code", [("123:abc", 0), ("your_bot_token_here", 1), ("", 1)])
def test_preflight_exit_codes(monkeypatch, tmp_path, capsys, token, code):
    monkeypatch.setenv("DATA_FILE", str(tmp_path / "cards.json"))
    monkeypatch.setenv("BOT_TOKEN", token)
    with pytest.raises(SystemExit) as exc:
        preflight.main()
    assert exc.value.code == code
    out = capsys.readouterr().out
    assert "Import check passed" in out
    assert "Store readable (0 user(s))" in out

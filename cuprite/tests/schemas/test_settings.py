# cuprite/tests/schemas/test_settings.py
"""
Unit tests for BrowserSettings layering.
"""
import pytest
import yaml

from cuprite.schemas.settings import BrowserSettings
from cuprite.utils import config


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("HOST", "PORT", "WS_URL", "COMMAND_TIMEOUT", "NAVIGATION_TIMEOUT", "WINDOW_SIZE"):
        monkeypatch.delenv(f"CUPRITE_{name}", raising=False)
    config.reload_config()
    yield
    config.reload_config()


def _write_config(tmp_path, data):
    (tmp_path / "config.yaml").write_text(yaml.dump(data))
    config.reload_config()


def test_defaults():
    settings = BrowserSettings()
    assert settings.port == 9222
    assert settings.navigation_timeout is None
    assert settings.http_url == "http://127.0.0.1:9222"


def test_config_file_values(tmp_path):
    _write_config(tmp_path, {"browser": {"port": 9333, "navigation_timeout": 5}})
    settings = BrowserSettings.from_config()
    assert settings.port == 9333
    assert settings.navigation_timeout == 5


def test_environment_beats_config_file(tmp_path, monkeypatch):
    _write_config(tmp_path, {"browser": {"port": 9333}})
    monkeypatch.setenv("CUPRITE_PORT", "9444")
    assert BrowserSettings.from_config().port == 9444


def test_explicit_overrides_win(tmp_path, monkeypatch):
    monkeypatch.setenv("CUPRITE_PORT", "9444")
    assert BrowserSettings.from_config(port=9555).port == 9555


def test_dotenv_beats_config_file(tmp_path):
    _write_config(tmp_path, {"browser": {"port": 9000, "host": "10.0.0.5"}})
    (tmp_path / ".env").write_text("CUPRITE_PORT=9333\n")
    settings = BrowserSettings.from_config()
    assert settings.port == 9333
    assert settings.host == "10.0.0.5"


def test_config_file_is_a_layer_of_plain_construction(tmp_path):
    _write_config(tmp_path, {"browser": {"command_timeout": 2.5, "unknown": 1}})
    assert BrowserSettings().command_timeout == 2.5

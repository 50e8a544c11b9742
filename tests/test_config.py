import json

import pytest

from smartlife_errors import ConfigError
from smartlife_gateway import DEFAULT_BASE_URL, Config

_ENV = (
    "SMARTLIFE_CONFIG_PATH",
    "SMARTLIFE_BASE_URL",
    "SMARTLIFE_CLIENT_ID",
    "SMARTLIFE_CLIENT_SECRET",
    "SMARTLIFE_BIND_HOST",
    "PORT",
    "DEVICE_MAP_PATH",
    "SMARTLIFE_HTTP_TIMEOUT_S",
    "SMARTLIFE_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_env() -> None:
    cfg = Config.from_env()
    assert cfg.base_url == DEFAULT_BASE_URL
    assert cfg.client_id == ""
    assert cfg.client_secret == ""
    assert cfg.port == 3000
    assert cfg.device_map_path == "device_map.json"
    assert cfg.http_timeout_s == 15.0


def test_env_values(monkeypatch) -> None:
    monkeypatch.setenv("SMARTLIFE_BASE_URL", "https://openapi.tuyaeu.com/")
    monkeypatch.setenv("SMARTLIFE_CLIENT_ID", "cid")
    monkeypatch.setenv("SMARTLIFE_CLIENT_SECRET", "secret")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("DEVICE_MAP_PATH", "/data/map.json")
    monkeypatch.setenv("SMARTLIFE_HTTP_TIMEOUT_S", "not-a-number")
    cfg = Config.from_env()
    assert cfg.base_url == "https://openapi.tuyaeu.com"
    assert (cfg.client_id, cfg.client_secret) == ("cid", "secret")
    assert cfg.port == 8080
    assert cfg.device_map_path == "/data/map.json"
    assert cfg.http_timeout_s == 15.0


def test_config_file_fills_gaps_and_env_wins(tmp_path, monkeypatch) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"client_id": "file-id", "client_secret": "file-secret"}), encoding="utf-8")
    monkeypatch.setenv("SMARTLIFE_CONFIG_PATH", str(path))
    monkeypatch.setenv("SMARTLIFE_CLIENT_ID", "env-id")
    cfg = Config.from_env()
    assert cfg.client_id == "env-id"
    assert cfg.client_secret == "file-secret"


def test_invalid_config_file(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("nope", encoding="utf-8")
    with pytest.raises(ConfigError):
        Config.from_env(str(path))

from pathlib import Path

import pytest

from flashmark.application import config as config_module
from flashmark.application.config import AppConfig, resolve_config


@pytest.fixture
def no_config_file(monkeypatch, tmp_path):
    monkeypatch.setattr(config_module, "CONFIG_FILES", [tmp_path / "missing.toml"])


def test_defaults(mock_home, no_config_file, monkeypatch):
    monkeypatch.delenv("FLASHMARK_REMOTE_URL", raising=False)
    config = AppConfig()
    assert config.remote_url == "http://localhost:8787"
    assert config.port == 8787
    assert config.device_token is None
    assert config.watched_paths == []


def test_env_prefix(mock_home, no_config_file, monkeypatch):
    monkeypatch.setenv("FLASHMARK_REMOTE_URL", "https://sync.example.com/")
    monkeypatch.setenv("FLASHMARK_DATABASE_PATH", "~/cards.db")
    config = AppConfig()
    assert config.remote_url == "https://sync.example.com"
    assert config.database_path == mock_home / "cards.db"


def test_toml_file_is_lowest_priority(mock_home, tmp_path, monkeypatch):
    toml = tmp_path / "config.toml"
    toml.write_text('remote_url = "http://from-file"\nport = 9999\n')
    monkeypatch.setattr(config_module, "CONFIG_FILES", [toml])
    monkeypatch.setenv("FLASHMARK_PORT", "7000")

    config = AppConfig()
    assert config.remote_url == "http://from-file"
    assert config.port == 7000


def test_resolve_config_overrides(mock_home, no_config_file, tmp_path):
    config = resolve_config({"remote_url": "http://cli/", "device_id": None, "verbose": 3})
    assert config.remote_url == "http://cli"
    assert config.verbose == 3
    assert config.device_id is None


def test_resolve_config_defaults_watched_paths_to_cwd(mock_home, no_config_file, monkeypatch):
    monkeypatch.delenv("FLASHMARK_WATCHED_PATHS", raising=False)
    assert resolve_config().watched_paths == [Path.cwd()]


def test_watched_paths_accept_single_value(mock_home, no_config_file, tmp_path):
    config = resolve_config({"watched_paths": str(tmp_path)})
    assert config.watched_paths == [tmp_path.resolve()]

"""Tests for CLI argument parsing and config loading."""

from __future__ import annotations

import json

import pytest

from intercom_bridge.cli import load_config, parse_args

ENV_VARS = ("BRIDGE_HOST", "BRIDGE_PORT", "BRIDGE_TOKEN", "BRIDGE_PEERS")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "bridge.json"
    path.write_text(json.dumps({
        "port": 9001,
        "archive_capacity": 50,
        "public_channels": ["alpha"],
        "auto_join_channels": ["alpha", "beta"],
    }))
    return str(path)


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])
        assert args.config is None
        assert args.log_level == "INFO"

    def test_flags(self):
        args = parse_args(["--port", "9000", "--peers", "a:1,b:2", "-t", "s"])
        assert args.port == 9000
        assert args.peers == "a:1,b:2"
        assert args.token == "s"


class TestLoadConfig:
    def test_no_file_gives_defaults(self):
        config = load_config(None, {})
        assert config.port == 8080
        assert config.auth_token is None
        assert config.archive_capacity == 1000

    def test_file_values(self, config_file):
        config = load_config(config_file, {})
        assert config.port == 9001
        assert config.archive_capacity == 50
        assert config.public_channels == ["alpha"]
        assert config.auto_join_channels == ["alpha", "beta"]

    def test_missing_file_exits(self, tmp_path):
        with pytest.raises(SystemExit):
            load_config(str(tmp_path / "missing.json"), {})

    def test_env_overrides_file(self, config_file, monkeypatch):
        monkeypatch.setenv("BRIDGE_PORT", "9100")
        monkeypatch.setenv("BRIDGE_TOKEN", "secret")
        monkeypatch.setenv("BRIDGE_PEERS", "10.0.0.1:8080, 10.0.0.2:8080")
        config = load_config(config_file, {})
        assert config.port == 9100
        assert config.auth_token == "secret"
        assert config.bootstrap_peers == ["10.0.0.1:8080", "10.0.0.2:8080"]

    def test_cli_overrides_env(self, monkeypatch):
        monkeypatch.setenv("BRIDGE_HOST", "10.0.0.5")
        monkeypatch.setenv("BRIDGE_PORT", "9100")
        config = load_config(None, {"port": 9200, "token": "cli", "peers": ["x:1"]})
        assert config.host == "10.0.0.5"
        assert config.port == 9200
        assert config.auth_token == "cli"
        assert config.bootstrap_peers == ["x:1"]

    def test_empty_token_in_file_disables_auth(self, tmp_path):
        path = tmp_path / "bridge.json"
        path.write_text(json.dumps({"auth_token": ""}))
        assert load_config(str(path), {}).auth_token is None

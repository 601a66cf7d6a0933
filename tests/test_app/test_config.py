"""Tests for configuration loading, environment settings and CLI flags."""

import pytest

from zerotrust_exporter.config.loader import ConfigLoader
from zerotrust_exporter.config.settings import Settings
from zerotrust_exporter.errors import ConfigError
from zerotrust_exporter.main import build_parser, overrides_from_args


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in Settings.ENV_MAPPING:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("CONFIG_PATH", raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "cloudflare:\n"
        "  api_key: ${TEST_CF_TOKEN}\n"
        "  account_id: file-account\n"
        "collectors:\n"
        "  devices: true\n"
        "server:\n"
        "  port: 9000\n"
    )
    return path


class TestConfigLoader:
    def test_yaml_with_env_substitution(self, config_file, monkeypatch):
        monkeypatch.setenv("TEST_CF_TOKEN", "from-env")

        config = ConfigLoader.build(str(config_file))

        assert config.cloudflare.api_key == "from-env"
        assert config.cloudflare.account_id == "file-account"
        assert config.collectors.devices
        assert not config.collectors.users
        assert config.server.port == 9000

    def test_env_overrides_file(self, config_file, monkeypatch):
        monkeypatch.setenv("TEST_CF_TOKEN", "token")
        monkeypatch.setenv("ACCOUNT_ID", "env-account")
        monkeypatch.setenv("USERS", "true")

        config = ConfigLoader.build(str(config_file))

        assert config.cloudflare.account_id == "env-account"
        assert config.collectors.users

    def test_cli_overrides_env(self, config_file, monkeypatch):
        monkeypatch.setenv("TEST_CF_TOKEN", "token")
        monkeypatch.setenv("PORT", "9100")

        config = ConfigLoader.build(str(config_file), {"server": {"port": 9200}})

        assert config.server.port == 9200

    def test_unset_cli_values_do_not_override(self, config_file, monkeypatch):
        monkeypatch.setenv("TEST_CF_TOKEN", "token")

        config = ConfigLoader.build(str(config_file), {"collectors": {"devices": None}})

        assert config.collectors.devices

    def test_env_only(self, monkeypatch):
        monkeypatch.setenv("API_KEY", "k")
        monkeypatch.setenv("ACCOUNT_ID", "a")
        monkeypatch.setenv("DEX", "1")

        config = ConfigLoader.build()

        assert config.collectors.dex
        assert config.server.port == 9184
        assert config.cloudflare.base_url == "https://api.cloudflare.com/client/v4"

    def test_missing_credentials(self):
        with pytest.raises(ConfigError):
            ConfigLoader.build()

    def test_blank_token_rejected(self, config_file, monkeypatch):
        # An unset variable substitutes to an empty string
        monkeypatch.delenv("TEST_CF_TOKEN", raising=False)

        with pytest.raises(ConfigError):
            ConfigLoader.build(str(config_file))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            ConfigLoader.build(str(tmp_path / "absent.yaml"))

    def test_invalid_port(self, monkeypatch):
        monkeypatch.setenv("API_KEY", "k")
        monkeypatch.setenv("ACCOUNT_ID", "a")

        with pytest.raises(ConfigError):
            ConfigLoader.build(cli_overrides={"server": {"port": 70000}})

    def test_invalid_boolean_env(self, monkeypatch):
        monkeypatch.setenv("API_KEY", "k")
        monkeypatch.setenv("ACCOUNT_ID", "a")
        monkeypatch.setenv("DEVICES", "maybe")

        with pytest.raises(ConfigError):
            ConfigLoader.build()

    def test_retry_delay_bounds(self, monkeypatch):
        monkeypatch.setenv("API_KEY", "k")
        monkeypatch.setenv("ACCOUNT_ID", "a")

        with pytest.raises(ConfigError):
            ConfigLoader.build(cli_overrides={"retry": {"base_delay": 5, "max_delay": 1}})


class TestSettings:
    @pytest.mark.parametrize("raw,expected", [("true", True), ("YES", True), ("0", False), ("off", False)])
    def test_get_bool(self, monkeypatch, raw, expected):
        monkeypatch.setenv("DEBUG", raw)
        assert Settings.get_bool("DEBUG") is expected

    def test_get_bool_default(self):
        assert Settings.get_bool("DEBUG", default=True) is True

    def test_required(self):
        with pytest.raises(ValueError):
            Settings.get("API_KEY", required=True)

    def test_overrides_only_set_vars(self, monkeypatch):
        monkeypatch.setenv("INTERFACE", "127.0.0.1")
        monkeypatch.setenv("DEBUG", "true")

        assert Settings.overrides() == {"server": {"interface": "127.0.0.1"}, "debug": True}


class TestCommandLine:
    def test_flags_map_to_config(self):
        args = build_parser().parse_args(
            ["--apikey", "k", "--accountid", "a", "--devices", "--port", "9300", "--log-level", "DEBUG"]
        )

        overrides = overrides_from_args(args)

        assert overrides["cloudflare"] == {"api_key": "k", "account_id": "a"}
        assert overrides["collectors"]["devices"] is True
        assert overrides["collectors"]["users"] is None
        assert overrides["server"]["port"] == 9300
        assert overrides["log_level"] == "DEBUG"

    def test_flags_build_config(self):
        args = build_parser().parse_args(["--apikey", "k", "--accountid", "a", "--tunnels", "--debug"])

        config = ConfigLoader.build(cli_overrides=overrides_from_args(args))

        assert config.collectors.tunnels
        assert config.debug
        assert config.server.host == "0.0.0.0"

import ipaddress

import pytest

from oddbox.config import parse_config
from oddbox.model import ConfigurationError, EnvVar, LogFormat, LogLevel
from oddbox.settings import (
    BasicLogFormat,
    BasicLogLevel,
    KvP,
    SaveGlobalConfig,
    apply_settings,
    get_settings,
)
from oddbox.v2 import OddBoxV2Config
from oddbox.v2_toml import to_toml_string


def _saved_config(tmp_path):
    config = OddBoxV2Config.example()
    path = tmp_path / "odd-box.toml"
    path.write_text(to_toml_string(config), encoding="utf-8")
    config.path = str(path)
    return config, path


def _new_settings(**overrides):
    values = dict(
        lets_encrypt_account_email="admin@example.com",
        root_dir="/srv",
        log_level=BasicLogLevel.Debug,
        alpn=True,
        port_range_start=5000,
        default_log_format=BasicLogFormat.Dotnet,
        ip="127.0.0.1",
        http_port=8080,
        tls_port=4343,
        auto_start=False,
        env_vars=[KvP("some_key", "some_val")],
        admin_api_port=6789,
    )
    values.update(overrides)
    return SaveGlobalConfig(**values)


def test_get_settings_of_example():
    settings = get_settings(OddBoxV2Config.example())
    assert settings.http_port == 80
    assert settings.tls_port == 443
    assert settings.ip == "0.0.0.0"
    assert settings.alpn is False
    assert settings.port_range_start == 4200
    assert settings.log_level is BasicLogLevel.Info
    assert settings.default_log_format is BasicLogFormat.Standard
    assert settings.env_vars == [KvP("some_key", "some_val"), KvP("another_key", "another_val")]
    assert settings.root_dir == "/tmp"


def test_get_settings_fills_defaults():
    config = OddBoxV2Config(
        port_range_start=4200,
        http_port=None,
        tls_port=None,
        alpn=None,
        auto_start=None,
        log_level=None,
    )
    settings = get_settings(config)
    assert settings.admin_api_port == 6789
    assert settings.http_port == 8080
    assert settings.tls_port == 4343
    assert settings.alpn is True
    assert settings.auto_start is True
    assert settings.ip == "127.0.0.1"
    assert settings.log_level is BasicLogLevel.Info
    assert settings.path == ""
    assert settings.lets_encrypt_account_email == ""


@pytest.mark.parametrize("level", list(LogLevel))
def test_log_level_round_trip(level):
    assert BasicLogLevel.from_log_level(level).to_log_level() is level


@pytest.mark.parametrize("log_format", list(LogFormat))
def test_log_format_round_trip(log_format):
    assert BasicLogFormat.from_log_format(log_format).to_log_format() is log_format


def test_apply_settings_updates_and_saves(tmp_path):
    config, path = _saved_config(tmp_path)
    changed = apply_settings(config, _new_settings())
    assert changed is True
    assert config.ip == ipaddress.ip_address("127.0.0.1")
    assert config.default_log_format is LogFormat.dotnet
    assert config.env_vars == [EnvVar("some_key", "some_val")]

    reloaded, _ = parse_config(path.read_text(encoding="utf-8")).try_upgrade_to_latest_version()
    assert reloaded.lets_encrypt_account_email == "admin@example.com"
    assert reloaded.port_range_start == 5000
    assert reloaded.log_level is LogLevel.Debug
    assert reloaded.auto_start is False
    assert reloaded.root_dir == "/srv"
    assert (tmp_path / "odd-box.toml.backup").exists()


def test_apply_settings_same_email_reports_unchanged(tmp_path):
    config, _ = _saved_config(tmp_path)
    config.lets_encrypt_account_email = "admin@example.com"
    assert apply_settings(config, _new_settings()) is False


def test_apply_settings_blank_root_dir_clears_it(tmp_path):
    config, _ = _saved_config(tmp_path)
    apply_settings(config, _new_settings(root_dir="   "))
    assert config.root_dir is None
    assert get_settings(config).root_dir == ""


def test_apply_settings_rejects_invalid_ip(tmp_path):
    config, path = _saved_config(tmp_path)
    before = path.read_text(encoding="utf-8")
    with pytest.raises(ConfigurationError):
        apply_settings(config, _new_settings(ip="not-an-ip"))
    assert path.read_text(encoding="utf-8") == before
    assert config.port_range_start == 4200


def test_apply_settings_without_path_fails():
    config = OddBoxV2Config.example()
    with pytest.raises(ConfigurationError):
        apply_settings(config, _new_settings())
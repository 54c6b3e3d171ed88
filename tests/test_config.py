import pytest

from oddbox.config import OddBoxConfig, parse_config
from oddbox.legacy import OddBoxLegacyConfig
from oddbox.model import ConfigurationError, OddBoxConfigVersion
from oddbox.v1 import OddBoxV1Config, RemoteSiteConfig
from oddbox.v2 import OddBoxV2Config
from oddbox.v2_toml import to_toml_string


def test_legacy_upgrade():
    cfg = OddBoxConfig(OddBoxLegacyConfig.example())
    v2, original = cfg.try_upgrade_to_latest_version()
    assert original is OddBoxConfigVersion.Unmarked
    assert v2.version is OddBoxConfigVersion.V2
    assert [site.host_name for site in v2.remote_target] == [
        "lobsters.localtest.me",
        "google.localtest.me",
    ]


def test_v1_upgrade():
    cfg = OddBoxConfig(OddBoxV1Config.example())
    v2, original = cfg.try_upgrade_to_latest_version()
    assert original is OddBoxConfigVersion.V1
    assert v2.version is OddBoxConfigVersion.V2
    assert v2.hosted_process[0].host_name == "some_host.local"


def test_v2_upgrade_is_a_copy():
    example = OddBoxV2Config.example()
    v2, original = OddBoxConfig(example).try_upgrade_to_latest_version()
    assert original is OddBoxConfigVersion.V2
    assert v2 == example
    assert v2 is not example


def _upgrade_single_remote(https):
    v1 = OddBoxV1Config.example()
    v1.remote_target = [
        RemoteSiteConfig(
            port=None,
            capture_subdomains=None,
            disable_tcp_tunnel_mode=None,
            h2_hint=None,
            host_name="test",
            forward_subdomains=None,
            https=https,
            target_hostname="test-domain.com",
        )
    ]
    v2, _ = OddBoxConfig(v1).try_upgrade_to_latest_version()
    assert v2.remote_target is not None
    assert len(v2.remote_target) == 1
    site = v2.remote_target[0]
    assert len(site.backends) == 1
    return site.backends[0]


def test_v1_to_v2_default_to_port_80_for_backends_with_unspecified_scheme():
    backend = _upgrade_single_remote(None)
    assert backend.port == 80
    assert backend.address == "test-domain.com"
    assert backend.https is None


def test_v1_to_v2_default_to_port_80_for_backends_with_http():
    backend = _upgrade_single_remote(False)
    assert backend.port == 80
    assert backend.address == "test-domain.com"
    assert backend.https is False


def test_v1_to_v2_default_to_port_443_for_backends_with_https():
    backend = _upgrade_single_remote(True)
    assert backend.port == 443
    assert backend.address == "test-domain.com"
    assert backend.https is True


def test_v2_reserialize_is_lossless():
    example = OddBoxV2Config.example()
    parsed = parse_config(to_toml_string(example))
    assert isinstance(parsed.config, OddBoxV2Config)
    assert parsed.config.remote_target == example.remote_target
    assert parsed.config.hosted_process == example.hosted_process


def test_parse_v1_file():
    content = "\n".join(
        [
            'version = "V1"',
            "port_range_start = 4200",
            "env_vars = []",
            "[[remote_target]]",
            'host_name = "a.local"',
            'target_hostname = "example.com"',
        ]
    )
    parsed = parse_config(content)
    assert isinstance(parsed.config, OddBoxV1Config)
    assert parsed.config.remote_target[0].target_hostname == "example.com"


def test_parse_legacy_file():
    content = "port_range_start = 4200\nenv_vars = []\nprocesses = []\n"
    parsed = parse_config(content)
    assert isinstance(parsed.config, OddBoxLegacyConfig)
    assert parsed.config.port_range_start == 4200


def test_invalid_v2_file_reports_v2():
    with pytest.raises(ConfigurationError, match="^invalid v2 configuration file"):
        parse_config('version = "V2"\n')


def test_invalid_v1_file_reports_v1():
    with pytest.raises(ConfigurationError, match="^invalid v1 configuration file"):
        parse_config('version = "V1"\n')


def test_invalid_unmarked_file_reports_legacy():
    with pytest.raises(ConfigurationError, match=r"^invalid \(legacy\) configuration file"):
        parse_config("port_range_start = 4200\n")


def test_toml_syntax_error_is_reported():
    with pytest.raises(ConfigurationError, match=r"^invalid \(legacy\) configuration file"):
        parse_config("this is = = not toml")
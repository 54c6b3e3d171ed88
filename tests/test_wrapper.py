from pathlib import Path

import pytest

from oddbox.config import parse_config
from oddbox.model import ConfigurationError, EnvVar
from oddbox.v2 import (
    Backend,
    FullyResolvedInProcessSiteConfig,
    InProcessSiteConfig,
    OddBoxV2Config,
    ProcId,
    RemoteSiteConfig,
)
from oddbox.wrapper import ConfigWrapper


def _proc(host, port=None, **kwargs):
    return InProcessSiteConfig(host_name=host, bin="bin", port=port, **kwargs)


def _remote(host, **kwargs):
    return RemoteSiteConfig(
        host_name=host, backends=[Backend(address="example.com", port=80)], **kwargs
    )


def _wrapper(*procs, remotes=None, **kwargs):
    config = OddBoxV2Config(
        port_range_start=4200,
        hosted_process=list(procs) if procs else None,
        remote_target=remotes,
        **kwargs,
    )
    return ConfigWrapper(config)


def _resolved(host, port=None, env_vars=None):
    return FullyResolvedInProcessSiteConfig(
        excluded_from_start_all=False,
        proc_id=ProcId(),
        host_name=host,
        bin="bin",
        port=port,
        env_vars=env_vars,
    )


def test_maps_are_keyed_by_host_name():
    wrapper = _wrapper(_proc("a.local"), _proc("b.local"), remotes=[_remote("r.local")])
    assert list(wrapper.hosted_processes) == ["a.local", "b.local"]
    assert list(wrapper.remote_sites) == ["r.local"]
    assert wrapper.wrapper_cache_map_is_dirty is False


def test_persist_writes_maps_back():
    wrapper = _wrapper(_proc("a.local"), _proc("b.local"), remotes=[_remote("r.local")])
    del wrapper.hosted_processes["a.local"]
    wrapper.remote_sites.clear()
    wrapper.persist()
    assert [p.host_name for p in wrapper.config.hosted_process] == ["b.local"]
    assert wrapper.config.remote_target is None


def test_reload_follows_config_lists():
    wrapper = _wrapper(_proc("a.local"))
    wrapper.config.hosted_process.append(_proc("c.local"))
    wrapper.reload()
    assert set(wrapper.hosted_processes) == {"a.local", "c.local"}


def test_set_disk_path_canonicalizes(tmp_path):
    cfg = tmp_path / "oddbox.toml"
    cfg.write_text("")
    wrapper = _wrapper()
    wrapper.set_disk_path(str(cfg))
    assert wrapper.config.path == str(cfg.resolve())


def test_set_disk_path_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        _wrapper().set_disk_path(str(tmp_path / "missing.toml"))


def test_example_is_valid():
    wrapper = ConfigWrapper(OddBoxV2Config.example())
    wrapper.is_valid()
    assert wrapper.config.hosted_process[0].host_name == "some_host.local"


def test_global_port_env_var_is_invalid():
    wrapper = _wrapper(env_vars=[EnvVar("PORT", "1")])
    with pytest.raises(ConfigurationError, match="'port' as a global environment variable"):
        wrapper.is_valid()


def test_duplicate_host_names():
    wrapper = _wrapper(_proc("a.local"), _proc("a.local"))
    with pytest.raises(ConfigurationError, match="Duplicate host names found: a.local"):
        wrapper.is_valid()


def test_duplicate_ports():
    wrapper = _wrapper(_proc("a.local", 5000), _proc("b.local", 5000))
    with pytest.raises(ConfigurationError, match=r"Port 5000: \[a.local, b.local\]"):
        wrapper.is_valid()


def test_lets_encrypt_needs_tunnel_mode_disabled():
    wrapper = _wrapper(remotes=[_remote("r.local", enable_lets_encrypt=True)])
    with pytest.raises(ConfigurationError, match="TCP tunnel mode"):
        wrapper.is_valid()


def test_lets_encrypt_with_capture_subdomains():
    proc = _proc(
        "a.local",
        enable_lets_encrypt=True,
        disable_tcp_tunnel_mode=True,
        capture_subdomains=True,
    )
    with pytest.raises(ConfigurationError, match="wildcard certificates"):
        _wrapper(proc).is_valid()


def test_port_env_var_must_match_port():
    proc = _proc("a.local", 5000, env_vars=[EnvVar("port", "5001")])
    with pytest.raises(ConfigurationError, match="does not match the port"):
        _wrapper(proc).is_valid()


def test_get_parent_path():
    wrapper = _wrapper(path="/etc/oddbox/config.toml")
    assert wrapper.get_parent_path() == "/etc/oddbox"
    wrapper.config.path = "config.toml"
    assert wrapper.get_parent_path() == "."


def test_get_parent_path_without_path():
    with pytest.raises(ConfigurationError, match="Failed to resolve path."):
        _wrapper().get_parent_path()


def test_busy_ports():
    wrapper = _wrapper(_proc("a.local", 5000, active_port=5001), _proc("b.local"))
    assert wrapper.busy_ports() == [("a.local", 5000), ("a.local", 5001)]


def test_find_unused_port():
    wrapper = _wrapper(_proc("a.local", 5000))
    with pytest.raises(ConfigurationError, match="already in use"):
        wrapper.find_and_set_unused_port(_proc("b.local", 5000))
    assert wrapper.find_and_set_unused_port(_proc("b.local", 6000)) == 6000
    assert wrapper.find_and_set_unused_port(_proc("b.local")) == wrapper.config.port_range_start


def test_set_active_port_uses_configured_port():
    wrapper = _wrapper(_proc("a.local", 5000))
    assert wrapper.set_active_port(_resolved("a.local", 5000)) == 5000
    assert wrapper.config.hosted_process[0].active_port == 5000


def test_set_active_port_falls_back_when_taken():
    wrapper = _wrapper(_proc("a.local"), _proc("b.local", 5000))
    assert wrapper.set_active_port(_resolved("a.local", 5000)) == wrapper.config.port_range_start


def test_set_active_port_ignores_own_ports():
    wrapper = _wrapper(_proc("a.local", 4200))
    assert wrapper.set_active_port(_resolved("a.local")) == wrapper.config.port_range_start


def test_set_active_port_skips_busy_ports():
    wrapper = _wrapper(
        _proc("a.local"),
        _proc("b.local", 4200),
        _proc("c.local", active_port=4201),
    )
    port = wrapper.set_active_port(_resolved("a.local"))
    busy = {p for host, p in wrapper.busy_ports() if host != "a.local"}
    assert port not in busy
    assert all(p in busy for p in range(wrapper.config.port_range_start, port))


def test_set_active_port_from_env_var():
    wrapper = _wrapper(_proc("a.local"))
    assert wrapper.set_active_port(_resolved("a.local", env_vars=[EnvVar("Port", "6000")])) == 6000


def test_set_active_port_invalid_env_var():
    wrapper = _wrapper(_proc("a.local"))
    port = wrapper.set_active_port(_resolved("a.local", env_vars=[EnvVar("PORT", "abc")]))
    assert port == wrapper.config.port_range_start


def test_resolve_process_configuration(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    (tmp_path / "sites").mkdir()
    cfg = tmp_path / "oddbox.toml"
    cfg.write_text("")

    proc = InProcessSiteConfig(
        host_name="a.local",
        bin="$root_dir/app",
        dir="$cfg_dir",
        args=["~/data", "--x"],
    )
    wrapper = _wrapper(proc, root_dir="$cfg_dir/sites")
    wrapper.set_disk_path(str(cfg))
    resolved = wrapper.resolve_process_configuration(proc)

    root = str((tmp_path / "sites").resolve())
    assert resolved.bin == f"{root}/app"
    assert resolved.dir == str(cfg.resolve().parent)
    assert resolved.args == [f"{Path.home()}/data", "--x"]
    assert resolved.proc_id == proc.proc_id
    assert resolved.excluded_from_start_all is False
    assert proc.bin == "$root_dir/app"


def test_resolve_rejects_recursive_root_dir():
    proc = _proc("a.local")
    wrapper = _wrapper(proc, root_dir="$root_dir/x", path="/etc/oddbox/config.toml")
    with pytest.raises(ConfigurationError, match="not a good idea"):
        wrapper.resolve_process_configuration(proc)


def test_resolve_missing_root_dir(tmp_path):
    proc = _proc("a.local")
    wrapper = _wrapper(
        proc, root_dir=str(tmp_path / "nowhere"), path=str(tmp_path / "oddbox.toml")
    )
    with pytest.raises(ConfigurationError, match="root_dir item in configuration"):
        wrapper.resolve_process_configuration(proc)


def test_write_to_disk_round_trip(tmp_path):
    cfg = tmp_path / "oddbox.toml"
    cfg.write_text("old")
    config = OddBoxV2Config.example()
    config.path = str(cfg)
    wrapper = ConfigWrapper(config)
    wrapper.write_to_disk()

    assert (tmp_path / "oddbox.toml.backup").read_text() == "old"
    parsed = parse_config(cfg.read_text())
    assert isinstance(parsed.config, OddBoxV2Config)
    assert parsed.config.remote_target == config.remote_target
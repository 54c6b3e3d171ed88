"""The original, unversioned configuration format."""

from __future__ import annotations

import ipaddress
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from oddbox.model import (
    ConfigurationError,
    EnvVar,
    IpAddress,
    LogFormat,
    LogLevel,
    _as_bool,
    _as_enum,
    _as_env_vars,
    _as_ip,
    _as_log_format,
    _as_log_level,
    _as_port,
    _as_str,
    _as_str_list,
    _as_table,
    _as_tables,
    _optional,
    _require,
)
from oddbox.v1 import H2Hint, RemoteSiteConfig


def _as_h2_hint(value: Any, key: str) -> H2Hint:
    return _as_enum(H2Hint, value, key)


@dataclass(kw_only=True)
class LegacySiteConfig:
    """A hosted process in the legacy format."""

    host_name: str
    path: str
    bin: str
    args: list[str] = field(default_factory=list)
    env_vars: list[EnvVar] = field(default_factory=list)
    log_format: LogFormat | None = None
    auto_start: bool | None = None
    https: bool | None = None
    capture_subdomains: bool | None = None
    # never read from or written to a file
    port: int = 0
    h2_hint: H2Hint | None = None
    disable_tcp_tunnel_mode: bool | None = None

    @classmethod
    def from_dict(cls, data: Any) -> LegacySiteConfig:
        owner = "processes"
        table = _as_table(data, owner)
        return cls(
            host_name=_as_str(_require(table, "host_name", owner), "host_name"),
            path=_as_str(_require(table, "path", owner), "path"),
            bin=_as_str(_require(table, "bin", owner), "bin"),
            args=_as_str_list(_require(table, "args", owner), "args"),
            env_vars=_as_env_vars(_require(table, "env_vars", owner), "env_vars"),
            log_format=_optional(table, "log_format", _as_log_format),
            auto_start=_optional(table, "auto_start", _as_bool),
            https=_optional(table, "https", _as_bool),
            capture_subdomains=_optional(table, "capture_subdomains", _as_bool),
            h2_hint=_optional(table, "h2_hint", _as_h2_hint),
            disable_tcp_tunnel_mode=_optional(table, "disable_tcp_tunnel_mode", _as_bool),
        )


@dataclass(kw_only=True)
class OddBoxLegacyConfig:
    """A complete configuration in the legacy format."""

    processes: list[LegacySiteConfig] = field(default_factory=list)
    env_vars: list[EnvVar] = field(default_factory=list)
    root_dir: str | None = None
    log_level: LogLevel | None = None
    port_range_start: int
    default_log_format: LogFormat | None = None
    port: int | None = None
    tls_port: int | None = None
    auto_start: bool | None = None
    ip: IpAddress | None = None
    remote_sites: list[RemoteSiteConfig] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> OddBoxLegacyConfig:
        owner = "configuration"
        if not isinstance(data, Mapping):
            raise ConfigurationError("configuration must be a table")
        return cls(
            processes=_as_tables(LegacySiteConfig.from_dict)(
                _require(data, "processes", owner), "processes"
            ),
            env_vars=_as_env_vars(_require(data, "env_vars", owner), "env_vars"),
            root_dir=_optional(data, "root_dir", _as_str),
            log_level=_optional(data, "log_level", _as_log_level),
            port_range_start=_as_port(_require(data, "port_range_start", owner), "port_range_start"),
            default_log_format=_optional(data, "default_log_format", _as_log_format),
            port=_optional(data, "port", _as_port),
            tls_port=_optional(data, "tls_port", _as_port),
            auto_start=_optional(data, "auto_start", _as_bool),
            ip=_optional(data, "ip", _as_ip),
            remote_sites=_optional(data, "remote_sites", _as_tables(RemoteSiteConfig.from_dict)),
        )

    @classmethod
    def example(cls) -> OddBoxLegacyConfig:
        """A filled-in sample configuration."""
        return cls(
            auto_start=True,
            default_log_format=LogFormat.standard,
            env_vars=[
                EnvVar("some_key", "some_val"),
                EnvVar("another_key", "another_val"),
            ],
            ip=ipaddress.IPv4Address("0.0.0.0"),
            log_level=LogLevel.Info,
            port=80,
            port_range_start=4200,
            processes=[
                LegacySiteConfig(
                    disable_tcp_tunnel_mode=False,
                    args=["--test"],
                    auto_start=True,
                    bin="my_bin",
                    capture_subdomains=None,
                    env_vars=[
                        EnvVar("some_key", "some_val"),
                        EnvVar("another_key", "another_val"),
                    ],
                    host_name="some_host.local",
                    port=443,
                    log_format=LogFormat.standard,
                    path="/tmp",
                    https=True,
                    h2_hint=None,
                )
            ],
            remote_sites=[
                RemoteSiteConfig(
                    h2_hint=None,
                    host_name="lobsters.localtest.me",
                    target_hostname="lobsters.rs",
                    port=443,
                    https=True,
                    capture_subdomains=False,
                    disable_tcp_tunnel_mode=True,
                    forward_subdomains=None,
                ),
                RemoteSiteConfig(
                    h2_hint=None,
                    host_name="google.localtest.me",
                    target_hostname="google.com",
                    port=443,
                    https=True,
                    capture_subdomains=False,
                    disable_tcp_tunnel_mode=True,
                    forward_subdomains=None,
                ),
            ],
            root_dir="/tmp",
            tls_port=443,
        )
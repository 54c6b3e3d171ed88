"""Version 1 of the configuration format."""

from __future__ import annotations

import ipaddress
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from oddbox.model import (
    ConfigurationError,
    EnvVar,
    IpAddress,
    LogFormat,
    LogLevel,
    OddBoxConfigVersion,
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
    _as_version,
    _optional,
    _require,
    _with_default,
)

if TYPE_CHECKING:
    from oddbox.legacy import OddBoxLegacyConfig


class H2Hint(Enum):
    """Signals prior-knowledge HTTP/2 (H2) or HTTP/2 over clear text (H2C)."""

    H2 = "H2"
    H2C = "H2C"


def _as_h2_hint(value: Any, key: str) -> H2Hint:
    return _as_enum(H2Hint, value, key)


@dataclass(kw_only=True)
class InProcessSiteConfig:
    """A process hosted by the proxy."""

    disable_tcp_tunnel_mode: bool | None = None
    h2_hint: H2Hint | None = None
    host_name: str = ""
    dir: str = ""
    bin: str = ""
    args: list[str] = field(default_factory=list)
    env_vars: list[EnvVar] = field(default_factory=list)
    log_format: LogFormat | None = None
    auto_start: bool | None = None
    port: int | None = None
    https: bool | None = None
    capture_subdomains: bool | None = None
    forward_subdomains: bool | None = None
    disabled: bool | None = None

    @classmethod
    def from_dict(cls, data: Any) -> InProcessSiteConfig:
        owner = "hosted_process"
        table = _as_table(data, owner)
        return cls(
            disable_tcp_tunnel_mode=_optional(table, "disable_tcp_tunnel_mode", _as_bool),
            h2_hint=_optional(table, "h2_hint", _as_h2_hint),
            host_name=_as_str(_require(table, "host_name", owner), "host_name"),
            dir=_as_str(_require(table, "dir", owner), "dir"),
            bin=_as_str(_require(table, "bin", owner), "bin"),
            args=_as_str_list(_require(table, "args", owner), "args"),
            env_vars=_as_env_vars(_require(table, "env_vars", owner), "env_vars"),
            log_format=_optional(table, "log_format", _as_log_format),
            auto_start=_optional(table, "auto_start", _as_bool),
            port=_optional(table, "port", _as_port),
            https=_optional(table, "https", _as_bool),
            capture_subdomains=_optional(table, "capture_subdomains", _as_bool),
            forward_subdomains=_optional(table, "forward_subdomains", _as_bool),
            disabled=_optional(table, "disabled", _as_bool),
        )


@dataclass(kw_only=True)
class RemoteSiteConfig:
    """A site forwarded to a remote host."""

    h2_hint: H2Hint | None = None
    host_name: str
    target_hostname: str
    port: int | None = None
    https: bool | None = None
    capture_subdomains: bool | None = None
    disable_tcp_tunnel_mode: bool | None = None
    forward_subdomains: bool | None = None

    @classmethod
    def from_dict(cls, data: Any) -> RemoteSiteConfig:
        owner = "remote_target"
        table = _as_table(data, owner)
        return cls(
            h2_hint=_optional(table, "h2_hint", _as_h2_hint),
            host_name=_as_str(_require(table, "host_name", owner), "host_name"),
            target_hostname=_as_str(_require(table, "target_hostname", owner), "target_hostname"),
            port=_optional(table, "port", _as_port),
            https=_optional(table, "https", _as_bool),
            capture_subdomains=_optional(table, "capture_subdomains", _as_bool),
            disable_tcp_tunnel_mode=_optional(table, "disable_tcp_tunnel_mode", _as_bool),
            forward_subdomains=_optional(table, "forward_subdomains", _as_bool),
        )


@dataclass(kw_only=True)
class OddBoxV1Config:
    """A complete version 1 configuration."""

    version: OddBoxConfigVersion = OddBoxConfigVersion.V1
    root_dir: str | None = None
    log_level: LogLevel | None = LogLevel.Info
    alpn: bool | None = True
    port_range_start: int
    default_log_format: LogFormat = LogFormat.standard
    ip: IpAddress | None = None
    http_port: int | None = 8080
    tls_port: int | None = 4343
    auto_start: bool | None = True
    env_vars: list[EnvVar] = field(default_factory=list)
    remote_target: list[RemoteSiteConfig] | None = None
    hosted_process: list[InProcessSiteConfig] | None = None
    admin_api_port: int | None = None
    path: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> OddBoxV1Config:
        owner = "configuration"
        if not isinstance(data, Mapping):
            raise ConfigurationError("configuration must be a table")
        return cls(
            version=_as_version(_require(data, "version", owner), "version"),
            root_dir=_optional(data, "root_dir", _as_str),
            log_level=_with_default(data, "log_level", _as_log_level, LogLevel.Info),
            alpn=_with_default(data, "alpn", _as_bool, True),
            port_range_start=_as_port(_require(data, "port_range_start", owner), "port_range_start"),
            default_log_format=_with_default(
                data, "default_log_format", _as_log_format, LogFormat.standard
            ),
            ip=_optional(data, "ip", _as_ip),
            http_port=_with_default(data, "http_port", _as_port, 8080),
            tls_port=_with_default(data, "tls_port", _as_port, 4343),
            auto_start=_with_default(data, "auto_start", _as_bool, True),
            env_vars=_as_env_vars(_require(data, "env_vars", owner), "env_vars"),
            remote_target=_optional(data, "remote_target", _as_tables(RemoteSiteConfig.from_dict)),
            hosted_process=_optional(
                data, "hosted_process", _as_tables(InProcessSiteConfig.from_dict)
            ),
            admin_api_port=_optional(data, "admin_api_port", _as_port),
            path=_optional(data, "path", _as_str),
        )

    @classmethod
    def example(cls) -> OddBoxV1Config:
        """A filled-in sample configuration."""
        return cls(
            path=None,
            admin_api_port=None,
            version=OddBoxConfigVersion.V1,
            alpn=False,
            auto_start=True,
            default_log_format=LogFormat.standard,
            env_vars=[
                EnvVar("some_key", "some_val"),
                EnvVar("another_key", "another_val"),
            ],
            ip=ipaddress.IPv4Address("0.0.0.0"),
            log_level=LogLevel.Info,
            http_port=80,
            port_range_start=4200,
            hosted_process=[
                InProcessSiteConfig(
                    forward_subdomains=None,
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
                    dir="/tmp",
                    https=True,
                    h2_hint=None,
                    disabled=None,
                )
            ],
            remote_target=[
                RemoteSiteConfig(
                    forward_subdomains=None,
                    h2_hint=None,
                    host_name="lobsters.local",
                    target_hostname="lobste.rs",
                    port=None,
                    https=True,
                    capture_subdomains=False,
                    disable_tcp_tunnel_mode=False,
                ),
                RemoteSiteConfig(
                    forward_subdomains=True,
                    h2_hint=None,
                    host_name="google.local",
                    target_hostname="google.com",
                    port=443,
                    https=True,
                    capture_subdomains=False,
                    disable_tcp_tunnel_mode=True,
                ),
            ],
            root_dir="/tmp",
            tls_port=443,
        )

    @classmethod
    def from_legacy(cls, old_config: OddBoxLegacyConfig) -> OddBoxV1Config:
        """Upgrade a legacy configuration to version 1."""
        hosted = [
            InProcessSiteConfig(
                forward_subdomains=None,
                disable_tcp_tunnel_mode=site.disable_tcp_tunnel_mode,
                args=list(site.args),
                auto_start=site.auto_start,
                bin=site.bin,
                capture_subdomains=None,
                env_vars=list(site.env_vars),
                host_name=site.host_name,
                port=site.port if site.https else None,
                log_format=site.log_format,
                dir=site.path,
                https=site.https,
                h2_hint=site.h2_hint,
                disabled=None,
            )
            for site in old_config.processes
        ]
        return cls(
            path=None,
            version=OddBoxConfigVersion.V1,
            admin_api_port=None,
            # alpn stays off: turning it on would break h2c for old configurations
            alpn=False,
            auto_start=old_config.auto_start,
            default_log_format=old_config.default_log_format or LogFormat.standard,
            env_vars=list(old_config.env_vars),
            ip=old_config.ip,
            log_level=old_config.log_level,
            http_port=old_config.port,
            port_range_start=old_config.port_range_start,
            hosted_process=hosted,
            remote_target=old_config.remote_sites,
            root_dir=old_config.root_dir,
            tls_port=old_config.tls_port,
        )
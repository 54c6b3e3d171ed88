"""Version 2 of the configuration format, the one used at runtime."""

from __future__ import annotations

import ipaddress
import logging
import uuid
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
    _as_list,
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
from oddbox.v1 import H2Hint

if TYPE_CHECKING:
    from oddbox.v1 import OddBoxV1Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcId:
    """A unique identifier given to a hosted process when its configuration is loaded."""

    value: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __str__(self) -> str:
        return self.value


class Hint(Enum):
    """What a backend is known to support."""

    H2 = "H2"
    """HTTP/2 over TLS."""
    H2C = "H2C"
    """HTTP/2 over clear text through an upgrade header."""
    H2CPK = "H2CPK"
    """HTTP/2 over clear text with prior knowledge."""
    NOH2 = "NOH2"


class BackendFilter(Enum):
    """Which backends qualify when picking one."""

    Http = "Http"
    Https = "Https"
    Any = "Any"

    def accepts(self, backend: Backend) -> bool:
        if self is BackendFilter.Http:
            return not backend.https
        if self is BackendFilter.Https:
            return bool(backend.https)
        return True


def _as_hint(value: Any, key: str) -> Hint:
    return _as_enum(Hint, value, key)


def _as_hints(value: Any, key: str) -> list[Hint]:
    return [_as_hint(item, key) for item in _as_list(value, key)]


def _same_flag(a: bool | None, b: bool | None) -> bool:
    """Compare optional flags, treating an unset flag as false."""
    return bool(a) == bool(b) if a is None or b is None else a == b


def _same_log_format(a: LogFormat | None, b: LogFormat | None) -> bool:
    """Compare optional log formats, treating an unset format as standard."""
    return (a or LogFormat.standard) == (b or LogFormat.standard) if (a is None) != (b is None) else a == b


def _hints_from_h2_hint(hint: H2Hint | None) -> list[Hint] | None:
    if hint is H2Hint.H2:
        return [Hint.H2]
    if hint is H2Hint.H2C:
        return [Hint.H2C]
    return None


@dataclass(kw_only=True)
class Backend:
    """One address a remote site forwards to."""

    address: str
    # zero for hosted processes, whose active port is resolved at runtime
    port: int
    https: bool | None = None
    hints: list[Hint] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Backend:
        owner = "backends"
        table = _as_table(data, owner)
        return cls(
            address=_as_str(_require(table, "address", owner), "address"),
            port=_as_port(_require(table, "port", owner), "port"),
            https=_optional(table, "https", _as_bool),
            hints=_optional(table, "hints", _as_hints),
        )


@dataclass(kw_only=True, eq=False)
class InProcessSiteConfig:
    """A process hosted by the proxy."""

    proc_id: ProcId = field(default_factory=ProcId)
    # set whenever the process is started; never read from or written to a file
    active_port: int | None = None
    disable_tcp_tunnel_mode: bool | None = None
    hints: list[Hint] | None = None
    host_name: str
    dir: str | None = None
    bin: str
    args: list[str] | None = None
    env_vars: list[EnvVar] | None = None
    log_format: LogFormat | None = None
    auto_start: bool | None = None
    port: int | None = None
    https: bool | None = None
    capture_subdomains: bool | None = None
    forward_subdomains: bool | None = None
    exclude_from_start_all: bool | None = None
    enable_lets_encrypt: bool | None = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InProcessSiteConfig):
            return NotImplemented
        return (
            _same_flag(self.disable_tcp_tunnel_mode, other.disable_tcp_tunnel_mode)
            and self.hints == other.hints
            and self.host_name == other.host_name
            and self.dir == other.dir
            and self.bin == other.bin
            and self.args == other.args
            and self.env_vars == other.env_vars
            and _same_log_format(self.log_format, other.log_format)
            and _same_flag(self.auto_start, other.auto_start)
            and self.port == other.port
            and self.https == other.https
            and _same_flag(self.capture_subdomains, other.capture_subdomains)
            and _same_flag(self.forward_subdomains, other.forward_subdomains)
        )

    @classmethod
    def from_dict(cls, data: Any) -> InProcessSiteConfig:
        owner = "hosted_process"
        table = _as_table(data, owner)
        return cls(
            disable_tcp_tunnel_mode=_optional(table, "disable_tcp_tunnel_mode", _as_bool),
            hints=_optional(table, "hints", _as_hints),
            host_name=_as_str(_require(table, "host_name", owner), "host_name"),
            dir=_optional(table, "dir", _as_str),
            bin=_as_str(_require(table, "bin", owner), "bin"),
            args=_optional(table, "args", _as_str_list),
            env_vars=_optional(table, "env_vars", _as_env_vars),
            log_format=_optional(table, "log_format", _as_log_format),
            auto_start=_optional(table, "auto_start", _as_bool),
            port=_optional(table, "port", _as_port),
            https=_optional(table, "https", _as_bool),
            capture_subdomains=_optional(table, "capture_subdomains", _as_bool),
            forward_subdomains=_optional(table, "forward_subdomains", _as_bool),
            exclude_from_start_all=_optional(table, "exclude_from_start_all", _as_bool),
            enable_lets_encrypt=_optional(table, "enable_lets_encrypt", _as_bool),
        )


@dataclass(kw_only=True)
class FullyResolvedInProcessSiteConfig:
    """A hosted process with every path variable substituted, ready to start."""

    excluded_from_start_all: bool
    proc_id: ProcId
    active_port: int | None = None
    disable_tcp_tunnel_mode: bool | None = None
    hints: list[Hint] | None = None
    host_name: str
    dir: str | None = None
    bin: str
    args: list[str] | None = None
    env_vars: list[EnvVar] | None = None
    log_format: LogFormat | None = None
    auto_start: bool | None = None
    port: int | None = None
    https: bool | None = None
    capture_subdomains: bool | None = None
    forward_subdomains: bool | None = None


@dataclass(kw_only=True, eq=False)
class RemoteSiteConfig:
    """A site forwarded to one or more backends."""

    host_name: str
    backends: list[Backend] = field(default_factory=list)
    capture_subdomains: bool | None = None
    disable_tcp_tunnel_mode: bool | None = None
    forward_subdomains: bool | None = None
    enable_lets_encrypt: bool | None = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RemoteSiteConfig):
            return NotImplemented
        return (
            self.host_name == other.host_name
            and self.backends == other.backends
            and _same_flag(self.capture_subdomains, other.capture_subdomains)
            and _same_flag(self.disable_tcp_tunnel_mode, other.disable_tcp_tunnel_mode)
            and _same_flag(self.forward_subdomains, other.forward_subdomains)
        )

    @classmethod
    def from_dict(cls, data: Any) -> RemoteSiteConfig:
        owner = "remote_target"
        table = _as_table(data, owner)
        return cls(
            host_name=_as_str(_require(table, "host_name", owner), "host_name"),
            backends=_as_tables(Backend.from_dict)(_require(table, "backends", owner), "backends"),
            capture_subdomains=_optional(table, "capture_subdomains", _as_bool),
            disable_tcp_tunnel_mode=_optional(table, "disable_tcp_tunnel_mode", _as_bool),
            forward_subdomains=_optional(table, "forward_subdomains", _as_bool),
            enable_lets_encrypt=_optional(table, "enable_lets_encrypt", _as_bool),
        )

    def next_backend(
        self, backend_filter: BackendFilter = BackendFilter.Any, request_count: int = 0
    ) -> Backend | None:
        """Pick a backend round-robin, based on how many requests the site has served."""
        candidates = [backend for backend in self.backends if backend_filter.accepts(backend)]
        if not candidates:
            return None
        return candidates[request_count % len(candidates)]


@dataclass(kw_only=True)
class OddBoxV2Config:
    """A complete version 2 configuration."""

    version: OddBoxConfigVersion = OddBoxConfigVersion.V2
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
    lets_encrypt_account_email: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> OddBoxV2Config:
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
            lets_encrypt_account_email=_optional(data, "lets_encrypt_account_email", _as_str),
        )

    @classmethod
    def example(cls) -> OddBoxV2Config:
        """A filled-in sample configuration."""
        return cls(
            lets_encrypt_account_email=None,
            path=None,
            admin_api_port=None,
            version=OddBoxConfigVersion.V2,
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
                    enable_lets_encrypt=False,
                    active_port=None,
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
                    dir=None,
                    https=True,
                    hints=None,
                    exclude_from_start_all=None,
                )
            ],
            remote_target=[
                RemoteSiteConfig(
                    enable_lets_encrypt=False,
                    forward_subdomains=None,
                    host_name="lobsters.local",
                    backends=[Backend(hints=None, address="lobste.rs", port=443, https=True)],
                    capture_subdomains=False,
                    disable_tcp_tunnel_mode=False,
                ),
                RemoteSiteConfig(
                    enable_lets_encrypt=False,
                    forward_subdomains=True,
                    host_name="google.local",
                    backends=[Backend(hints=None, address="google.com", port=443, https=True)],
                    capture_subdomains=False,
                    disable_tcp_tunnel_mode=True,
                ),
            ],
            root_dir="/tmp",
            tls_port=443,
        )

    @classmethod
    def from_v1(cls, old_config: OddBoxV1Config) -> OddBoxV2Config:
        """Upgrade a version 1 configuration to version 2."""
        hosted: list[InProcessSiteConfig] = []
        for proc in old_config.hosted_process or []:
            if proc.disabled != proc.auto_start:
                logger.warning(
                    "Your configuration contains both auto_start and disabled for the same "
                    "process. The auto_start setting will be used. Please remove the disabled "
                    "setting as it is no longer used."
                )
            auto_start = (not proc.disabled) if proc.disabled is not None else proc.auto_start
            hosted.append(
                InProcessSiteConfig(
                    enable_lets_encrypt=False,
                    exclude_from_start_all=None,
                    active_port=None,
                    forward_subdomains=proc.forward_subdomains,
                    disable_tcp_tunnel_mode=proc.disable_tcp_tunnel_mode,
                    args=list(proc.args) if proc.args else None,
                    auto_start=auto_start,
                    bin=proc.bin,
                    capture_subdomains=proc.capture_subdomains,
                    env_vars=list(proc.env_vars) if proc.env_vars else None,
                    host_name=proc.host_name,
                    port=proc.port,
                    log_format=proc.log_format,
                    dir=proc.dir or None,
                    https=proc.https,
                    hints=_hints_from_h2_hint(proc.h2_hint),
                )
            )

        remote = [
            RemoteSiteConfig(
                enable_lets_encrypt=False,
                disable_tcp_tunnel_mode=site.disable_tcp_tunnel_mode,
                capture_subdomains=site.capture_subdomains,
                forward_subdomains=site.forward_subdomains,
                backends=[
                    Backend(
                        hints=_hints_from_h2_hint(site.h2_hint),
                        address=site.target_hostname,
                        port=site.port
                        if site.port is not None
                        else (443 if site.https else 80),
                        https=site.https,
                    )
                ],
                host_name=site.host_name,
            )
            for site in old_config.remote_target or []
        ]

        return cls(
            lets_encrypt_account_email=None,
            path=None,
            version=OddBoxConfigVersion.V2,
            admin_api_port=None,
            # alpn stays off: turning it on would break h2c for old configurations
            alpn=False,
            auto_start=old_config.auto_start,
            default_log_format=old_config.default_log_format,
            env_vars=list(old_config.env_vars),
            ip=old_config.ip,
            log_level=old_config.log_level,
            http_port=old_config.http_port,
            port_range_start=old_config.port_range_start,
            hosted_process=hosted,
            remote_target=remote,
            root_dir=old_config.root_dir,
            tls_port=old_config.tls_port,
        )
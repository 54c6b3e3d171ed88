"""Reading and updating the global part of a configuration."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from enum import Enum

from oddbox import v2_toml
from oddbox.model import ConfigurationError, EnvVar, LogFormat, LogLevel
from oddbox.v2 import OddBoxV2Config

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_API_PORT = 6789
DEFAULT_HTTP_PORT = 8080
DEFAULT_TLS_PORT = 4343
DEFAULT_IP = "127.0.0.1"


class BasicLogLevel(Enum):
    """Log level as exposed through the settings interface."""

    Trace = "Trace"
    Debug = "Debug"
    Info = "Info"
    Warn = "Warn"
    Error = "Error"

    @classmethod
    def from_log_level(cls, level: LogLevel) -> BasicLogLevel:
        return cls[level.name]

    def to_log_level(self) -> LogLevel:
        return LogLevel[self.name]


class BasicLogFormat(Enum):
    """Log format as exposed through the settings interface."""

    Standard = "Standard"
    Dotnet = "Dotnet"

    @classmethod
    def from_log_format(cls, log_format: LogFormat) -> BasicLogFormat:
        return cls.Dotnet if log_format is LogFormat.dotnet else cls.Standard

    def to_log_format(self) -> LogFormat:
        return LogFormat.dotnet if self is BasicLogFormat.Dotnet else LogFormat.standard


@dataclass(frozen=True)
class KvP:
    """A key and value pair."""

    key: str
    value: str


@dataclass(kw_only=True)
class OddBoxConfigGlobalPart:
    """The global settings of a configuration, with defaults filled in."""

    lets_encrypt_account_email: str
    root_dir: str
    log_level: BasicLogLevel
    alpn: bool
    port_range_start: int
    default_log_format: BasicLogFormat
    ip: str
    http_port: int
    tls_port: int
    auto_start: bool
    env_vars: list[KvP] = field(default_factory=list)
    admin_api_port: int
    path: str


@dataclass(kw_only=True)
class SaveGlobalConfig:
    """New global settings to store in a configuration."""

    lets_encrypt_account_email: str
    root_dir: str
    log_level: BasicLogLevel
    alpn: bool
    port_range_start: int
    default_log_format: BasicLogFormat
    ip: str
    http_port: int
    tls_port: int
    auto_start: bool
    env_vars: list[KvP] = field(default_factory=list)
    admin_api_port: int


def get_settings(config: OddBoxV2Config) -> OddBoxConfigGlobalPart:
    """The global settings of a configuration, with unset values replaced by defaults."""
    return OddBoxConfigGlobalPart(
        lets_encrypt_account_email=config.lets_encrypt_account_email or "",
        admin_api_port=(
            config.admin_api_port if config.admin_api_port is not None else DEFAULT_ADMIN_API_PORT
        ),
        http_port=config.http_port if config.http_port is not None else DEFAULT_HTTP_PORT,
        tls_port=config.tls_port if config.tls_port is not None else DEFAULT_TLS_PORT,
        port_range_start=config.port_range_start,
        alpn=config.alpn if config.alpn is not None else True,
        auto_start=config.auto_start if config.auto_start is not None else True,
        default_log_format=BasicLogFormat.from_log_format(config.default_log_format),
        env_vars=[KvP(var.key, var.value) for var in config.env_vars],
        ip=str(config.ip) if config.ip is not None else DEFAULT_IP,
        path=config.path or "",
        log_level=BasicLogLevel.from_log_level(config.log_level or LogLevel.Info),
        root_dir=config.root_dir or "",
    )


def apply_settings(config: OddBoxV2Config, new_settings: SaveGlobalConfig) -> bool:
    """Store new global settings and save the configuration to disk.

    Returns whether the lets-encrypt account e-mail changed, in which case the
    certificate resolver should enable lets-encrypt.
    """
    try:
        ip = ipaddress.ip_address(new_settings.ip)
    except ValueError as exc:
        raise ConfigurationError(
            f"Invalid IP address provided, refusing to save configuration. {exc}"
        ) from exc

    email = new_settings.lets_encrypt_account_email
    email_changed = config.lets_encrypt_account_email != email

    config.lets_encrypt_account_email = email
    config.admin_api_port = new_settings.admin_api_port
    config.http_port = new_settings.http_port
    config.tls_port = new_settings.tls_port
    config.port_range_start = new_settings.port_range_start
    config.alpn = new_settings.alpn
    config.auto_start = new_settings.auto_start
    config.default_log_format = new_settings.default_log_format.to_log_format()
    config.env_vars = [EnvVar(pair.key, pair.value) for pair in new_settings.env_vars]
    config.ip = ip
    config.log_level = new_settings.log_level.to_log_level()
    config.root_dir = new_settings.root_dir if new_settings.root_dir.strip() else None

    v2_toml.write_to_disk(config)
    logger.debug("Global settings updated")
    return email_changed
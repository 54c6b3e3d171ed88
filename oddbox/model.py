"""Configuration types shared by every configuration version, plus value parsing."""

from __future__ import annotations

import ipaddress
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

_T = TypeVar("_T")
_E = TypeVar("_E", bound=Enum)

IpAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class ConfigurationError(ValueError):
    """Raised when configuration content is missing fields or holds invalid values."""


class LogFormat(Enum):
    """Output format used for the logs of hosted processes."""

    standard = "standard"
    dotnet = "dotnet"


class LogLevel(Enum):
    """Log verbosity."""

    Trace = "Trace"
    Debug = "Debug"
    Info = "Info"
    Warn = "Warn"
    Error = "Error"


class OddBoxConfigVersion(Enum):
    """Version marker stored in a configuration file."""

    Unmarked = "Unmarked"
    V1 = "V1"
    V2 = "V2"


def parse_log_level(value: Any) -> LogLevel:
    """Parse a log level name, ignoring case."""
    if isinstance(value, LogLevel):
        return value
    if not isinstance(value, str):
        raise ConfigurationError(
            f"invalid type {value!r}: expected a log level (trace, debug, info, warn, error)"
        )
    lowered = value.lower()
    for level in LogLevel:
        if level.value.lower() == lowered:
            return level
    raise ConfigurationError(f"unknown log level: {value}")


@dataclass(frozen=True)
class EnvVar:
    """An environment variable given to a process."""

    key: str
    value: str

    @classmethod
    def from_dict(cls, data: Any) -> EnvVar:
        table = _as_table(data, "env_var")
        return cls(
            key=_as_str(_require(table, "key", "env_var"), "key"),
            value=_as_str(_require(table, "value", "env_var"), "value"),
        )


# --- value parsing shared by the configuration versions ---------------------


def _as_table(value: Any, key: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"invalid type for `{key}`: expected a table, got {value!r}")
    return value


def _require(data: Mapping[str, Any], key: str, owner: str) -> Any:
    if data.get(key) is None:
        raise ConfigurationError(f"missing field `{key}` in {owner}")
    return data[key]


def _optional(data: Mapping[str, Any], key: str, convert: Callable[[Any, str], _T]) -> _T | None:
    value = data.get(key)
    return None if value is None else convert(value, key)


def _with_default(
    data: Mapping[str, Any], key: str, convert: Callable[[Any, str], _T], default: _T
) -> _T:
    value = data.get(key)
    return default if value is None else convert(value, key)


def _as_str(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise ConfigurationError(f"invalid type for `{key}`: expected a string, got {value!r}")
    return value


def _as_bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"invalid type for `{key}`: expected a boolean, got {value!r}")
    return value


def _as_port(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"invalid type for `{key}`: expected an integer, got {value!r}")
    if not 0 <= value <= 0xFFFF:
        raise ConfigurationError(f"invalid value for `{key}`: {value} is not a valid port number")
    return value


def _as_list(value: Any, key: str) -> list[Any]:
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, (list, tuple)):
        raise ConfigurationError(f"invalid type for `{key}`: expected an array, got {value!r}")
    return list(value)


def _as_str_list(value: Any, key: str) -> list[str]:
    return [_as_str(item, key) for item in _as_list(value, key)]


def _as_env_vars(value: Any, key: str) -> list[EnvVar]:
    return [item if isinstance(item, EnvVar) else EnvVar.from_dict(item) for item in _as_list(value, key)]


def _as_ip(value: Any, key: str) -> IpAddress:
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    try:
        return ipaddress.ip_address(_as_str(value, key))
    except ValueError as exc:
        raise ConfigurationError(f"invalid IP address for `{key}`: {value!r}") from exc


def _as_enum(enum_cls: type[_E], value: Any, key: str) -> _E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(_as_str(value, key))
    except ValueError as exc:
        variants = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(
            f"unknown variant {value!r} for `{key}`, expected one of {variants}"
        ) from exc


def _as_log_format(value: Any, key: str) -> LogFormat:
    return _as_enum(LogFormat, value, key)


def _as_log_level(value: Any, key: str) -> LogLevel:
    try:
        return parse_log_level(value)
    except ConfigurationError as exc:
        raise ConfigurationError(f"invalid value for `{key}`: {exc}") from exc


def _as_version(value: Any, key: str) -> OddBoxConfigVersion:
    return _as_enum(OddBoxConfigVersion, value, key)


def _as_tables(convert: Callable[[Any], _T]) -> Callable[[Any, str], list[_T]]:
    def parse(value: Any, key: str) -> list[_T]:
        return [convert(item) for item in _as_list(value, key)]

    return parse
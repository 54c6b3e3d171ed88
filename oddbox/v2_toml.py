"""Writing version 2 configurations as TOML in a fixed, hand-kept layout."""

from __future__ import annotations

from pathlib import Path

from oddbox.model import ConfigurationError, EnvVar, OddBoxConfigVersion
from oddbox.v2 import Backend, Hint, InProcessSiteConfig, OddBoxV2Config, RemoteSiteConfig

SCHEMA_REFERENCE = "#:schema ./odd-box-schema-v2.json"

_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


def _quote(text: str) -> str:
    """Quote a string as a TOML basic string."""
    parts = []
    for char in text:
        if char in _ESCAPES:
            parts.append(_ESCAPES[char])
        elif ord(char) < 0x20 or ord(char) == 0x7F:
            parts.append(f"\\u{ord(char):04X}")
        else:
            parts.append(char)
    return '"' + "".join(parts) + '"'


def _toml_bool(value: bool | None, default: bool = False) -> str:
    """Render an optional boolean as a TOML literal, using the default when unset."""
    chosen = default if value is None else value
    return "true" if chosen else "false"


def _hint_list(hints: list[Hint]) -> str:
    return ", ".join(f"'{hint.value}'" for hint in hints)


def _env_var_lines(env_vars: list[EnvVar]) -> list[str]:
    return [
        "env_vars = [",
        *(f"\t{{ key = {_quote(var.key)}, value = {_quote(var.value)} }}," for var in env_vars),
        "]",
    ]


def _backend_line(backend: Backend) -> str:
    https = "https = true, " if backend.https is True else ""
    hints = f", hints = [{_hint_list(backend.hints)}]" if backend.hints is not None else ""
    return f'\t{{ {https}address="{backend.address}", port={backend.port}{hints}}}'


def _remote_site_lines(site: RemoteSiteConfig) -> list[str]:
    lines = ["\n[[remote_target]]", f"host_name = {_quote(site.host_name)}"]
    if site.forward_subdomains is True:
        lines.append("forward_subdomains = true")
    if site.capture_subdomains is True:
        lines.append("capture_subdomains = true")
    if site.disable_tcp_tunnel_mode is True:
        lines.append("disable_tcp_tunnel_mode = true")
    if site.enable_lets_encrypt is True:
        lines.append("enable_lets_encrypt = true")
    lines.append("backends = [")
    lines.append(",\n".join(_backend_line(backend) for backend in site.backends))
    lines.append("]")
    return lines


def _hosted_process_lines(process: InProcessSiteConfig) -> list[str]:
    lines = ["\n[[hosted_process]]", f"host_name = {_quote(process.host_name)}"]
    if process.dir is not None:
        lines.append(f"dir = {_quote(process.dir)}")
    lines.append(f"bin = {_quote(process.bin)}")
    if process.hints is not None:
        lines.extend(["hints = [", _hint_list(process.hints), "]"])
    args = ", ".join(f"\n  {_quote(arg)}" for arg in process.args or [])
    lines.append(f"args = [{args}\n]")
    if process.auto_start is not None:
        lines.append(f"auto_start = {_toml_bool(process.auto_start)}")
    if process.enable_lets_encrypt is True:
        lines.append("enable_lets_encrypt = true")
    if process.https is not None:
        lines.append(f"https = {_toml_bool(process.https)}")
    if process.port is not None:
        lines.append(f"port = {process.port}")
    if process.capture_subdomains is True:
        lines.append("capture_subdomains = true")
    if process.env_vars is not None:
        lines.extend(_env_var_lines(process.env_vars))
    return lines


def to_toml_string(config: OddBoxV2Config) -> str:
    """Render a version 2 configuration in the layout used for configuration files."""
    if config.version is not OddBoxConfigVersion.V2:
        raise ConfigurationError(
            f"cannot write a configuration marked {config.version.value} in the V2 format"
        )

    lines = [SCHEMA_REFERENCE, f'version = "{config.version.value}"']
    lines.append(f"alpn = {_toml_bool(config.alpn)}")
    if config.http_port is not None:
        lines.append(f"http_port = {config.http_port}")
    if config.admin_api_port is not None:
        lines.append(f"admin_api_port = {config.admin_api_port}")
    lines.append(f'ip = "{config.ip}"' if config.ip is not None else 'ip = "127.0.0.1"')
    if config.tls_port is not None:
        lines.append(f"tls_port = {config.tls_port}")
    lines.append(f"auto_start = {_toml_bool(config.auto_start)}")
    lines.append(
        f"root_dir = {_quote(config.root_dir)}" if config.root_dir is not None else 'root_dir = "~"'
    )
    if config.log_level is not None:
        lines.append(f'log_level = "{config.log_level.value}"')
    lines.append(f"port_range_start = {config.port_range_start}")
    lines.append(f'default_log_format = "{config.default_log_format.value}"')
    if config.lets_encrypt_account_email is not None:
        lines.append(f'lets_encrypt_account_email = "{config.lets_encrypt_account_email}"')

    if config.env_vars:
        lines.extend(_env_var_lines(config.env_vars))
    else:
        lines.append("env_vars = []")

    for site in config.remote_target or []:
        lines.extend(_remote_site_lines(site))
    for process in config.hosted_process or []:
        lines.extend(_hosted_process_lines(process))

    return "\n".join(lines)


def write_to_disk(config: OddBoxV2Config) -> None:
    """Save the configuration to its path, keeping the previous file as a backup."""
    if config.path is None:
        raise ConfigurationError(
            "Failed to save due to a bug: No path found to the current configuration"
        )

    formatted = to_toml_string(config)
    original = Path(config.path)
    original.replace(original.with_suffix(".toml.backup"))
    try:
        original.write_text(formatted, encoding="utf-8")
    except OSError as exc:
        raise OSError(f"Failed to write config to disk: {exc}") from exc
"""Runtime holder of the active configuration, with lookup maps and port bookkeeping."""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from pathlib import Path, PurePath

from oddbox import v2_toml
from oddbox.model import ConfigurationError
from oddbox.v2 import (
    FullyResolvedInProcessSiteConfig,
    InProcessSiteConfig,
    OddBoxV2Config,
    RemoteSiteConfig,
)

logger = logging.getLogger(__name__)

_U16 = re.compile(r"\+?[0-9]+")


def _parse_u16(text: str) -> int | None:
    if _U16.fullmatch(text) is None:
        return None
    value = int(text)
    return value if value <= 0xFFFF else None


class ConfigWrapper:
    """A version 2 configuration plus maps of its sites keyed by host name."""

    def __init__(self, config: OddBoxV2Config) -> None:
        self.config = config
        self.remote_sites: dict[str, RemoteSiteConfig] = {}
        self.hosted_processes: dict[str, InProcessSiteConfig] = {}
        self.wrapper_cache_map_is_dirty = False
        self.reload()

    def reload(self) -> None:
        """Rebuild the host-name maps from the configuration lists."""
        self.remote_sites = {site.host_name: site for site in self.config.remote_target or []}
        self.hosted_processes = {
            proc.host_name: proc for proc in self.config.hosted_process or []
        }
        self.wrapper_cache_map_is_dirty = False

    def persist(self) -> None:
        """Copy the host-name maps back into the configuration lists."""
        self.config.remote_target = list(self.remote_sites.values()) or None
        self.config.hosted_process = list(self.hosted_processes.values()) or None
        self.wrapper_cache_map_is_dirty = False

    def set_disk_path(self, cfg_path: str) -> None:
        """Record the canonical location of the configuration file."""
        self.config.path = str(Path(cfg_path).resolve(strict=True))

    def is_valid(self) -> None:
        """Raise ConfigurationError if the configuration is inconsistent."""
        if any(var.key.lower() == "port" for var in self.config.env_vars):
            raise ConfigurationError(
                "Invalid configuration. You cannot use 'port' as a global environment variable"
            )

        for target in self.config.remote_target or []:
            if target.enable_lets_encrypt:
                if not target.disable_tcp_tunnel_mode:
                    raise ConfigurationError(
                        f"Invalid configuration for remote target '{target.host_name}'. "
                        "LetsEncrypt cannot be enabled when TCP tunnel mode is enabled."
                    )
                if target.capture_subdomains:
                    raise ConfigurationError(
                        f"Invalid configuration for remote target '{target.host_name}'. "
                        "LetsEncrypt cannot be enabled when capture_subdomains is enabled as "
                        "odd-box does not yet support wildcard certificates"
                    )

        host_names: dict[str, int] = {}
        ports: dict[int, list[str]] = {}
        for process in self.config.hosted_process or []:
            host_names[process.host_name] = host_names.get(process.host_name, 0) + 1
            if process.port is not None:
                ports.setdefault(process.port, []).append(process.host_name)

            if process.enable_lets_encrypt:
                if not process.disable_tcp_tunnel_mode:
                    raise ConfigurationError(
                        f"Invalid configuration for hosted process '{process.host_name}'. "
                        "LetsEncrypt cannot be enabled when TCP tunnel mode is enabled."
                    )
                if process.capture_subdomains:
                    raise ConfigurationError(
                        f"Invalid configuration for hosted process '{process.host_name}'. "
                        "LetsEncrypt cannot be enabled when capture_subdomains is enabled as "
                        "odd-box does not yet support wildcard certificates"
                    )

            if process.port is not None:
                for var in process.env_vars or []:
                    if var.key.lower() != "port":
                        continue
                    env_port = _parse_u16(var.value)
                    if env_port is not None and env_port != process.port:
                        raise ConfigurationError(
                            f"Environment variable PORT for '{process.host_name}' does not "
                            "match the port specified in the configuration.\n"
                            "It is recommended to rely on the port setting - it will "
                            "automatically inject the port variable to the process-local context."
                        )

        duplicate_names = [name for name, count in host_names.items() if count > 1]
        if duplicate_names:
            raise ConfigurationError(f"Duplicate host names found: {', '.join(duplicate_names)}")

        conflicts = [
            f"Port {port}: [{', '.join(sites)}]" for port, sites in ports.items() if len(sites) > 1
        ]
        if conflicts:
            raise ConfigurationError(
                f"Duplicate ports found with conflicting sites: {'; '.join(conflicts)}"
            )

    def get_parent_path(self) -> str:
        """The directory holding the configuration file, used for $cfg_dir."""
        if self.config.path is None:
            raise ConfigurationError("Failed to resolve path.")
        if not self.config.path:
            raise ConfigurationError("Failed to resolve $cfg_dir")
        path = PurePath(self.config.path)
        if path.anchor and path.parent == path:
            raise ConfigurationError("Failed to resolve $cfg_dir")
        return str(path.parent) or "."

    def busy_ports(self) -> list[tuple[str, int]]:
        """Ports configured for, or in use by, hosted processes."""
        busy: list[tuple[str, int]] = []
        for proc in self.config.hosted_process or []:
            # configured ports count as busy even while the process is stopped
            if proc.port is not None:
                busy.append((proc.host_name, proc.port))
            if proc.active_port is not None:
                busy.append((proc.host_name, proc.active_port))
        return busy

    def find_and_set_unused_port(self, proc: InProcessSiteConfig) -> int:
        """The port a new process should use: its own choice, or the range start."""
        if self.config.hosted_process is not None and proc.port is not None:
            used = {other.port for other in self.config.hosted_process if other.port is not None}
            if proc.port in used:
                raise ConfigurationError("The port configured for this site is already in use..")
            return proc.port
        if proc.port is not None:
            return proc.port
        return self.config.port_range_start

    def set_active_port(self, resolved_proc: FullyResolvedInProcessSiteConfig) -> int:
        """Pick the port a process will start on and mark it as active for that process."""
        host = resolved_proc.host_name
        unavailable = [entry for entry in self.busy_ports() if entry[0] != host]
        selected: int | None = None

        if resolved_proc.port is not None:
            preferred = resolved_proc.port
            taken_by = next((entry for entry in unavailable if entry[1] == preferred), None)
            if taken_by is not None:
                logger.warning(
                    "[%s] The configured port '%s' is unavailable (configured for another site: '%s')..",
                    host, preferred, taken_by[0],
                )
            else:
                logger.info("[%s] Starting on port '%s' as configured for the process!", host, preferred)
                selected = preferred
        else:
            port_var = next(
                (var for var in resolved_proc.env_vars or [] if var.key.lower() == "port"), None
            )
            if port_var is not None:
                value = port_var.value
                taken_by = next((entry for entry in unavailable if str(entry[1]) == value), None)
                if taken_by is not None:
                    logger.warning(
                        "[%s] The configured port (via env var in cfg) '%s' is unavailable "
                        "(configured for another site: '%s')..",
                        host, value, taken_by[0],
                    )
                else:
                    parsed = _parse_u16(value)
                    if parsed is not None:
                        logger.info(
                            "[%s] Starting on port '%s' as selected via a configured "
                            "environment variable for port!",
                            host, value,
                        )
                        selected = parsed
                    else:
                        logger.info(
                            "[%s] The env var for port was configured to '%s' which is not a "
                            "valid u16, ignoring.",
                            host, value,
                        )

        if selected is None:
            start = self.config.port_range_start
            taken = {entry[1] for entry in unavailable}
            selected = start
            while selected in taken:
                selected += 1
            logger.info(
                "[%s] Using the first available port found (starting from the configured start "
                "port: %s) ---> '%s'",
                host, start, selected,
            )

        if self.config.hosted_process is None:
            logger.error("[%s] The site proc list is empty!", host)
        else:
            match = next((p for p in self.config.hosted_process if p.host_name == host), None)
            if match is None:
                logger.error("[%s] Could not find an active site in the hosted process list.", host)
            else:
                match.active_port = selected
        return selected

    def resolve_process_configuration(
        self, proc: InProcessSiteConfig
    ) -> FullyResolvedInProcessSiteConfig:
        """A copy of the process configuration with $root_dir, $cfg_dir and ~ substituted."""
        resolved = FullyResolvedInProcessSiteConfig(
            excluded_from_start_all=bool(proc.exclude_from_start_all),
            proc_id=proc.proc_id,
            active_port=proc.active_port,
            disable_tcp_tunnel_mode=proc.disable_tcp_tunnel_mode,
            hints=list(proc.hints) if proc.hints is not None else None,
            host_name=proc.host_name,
            dir=proc.dir,
            bin=proc.bin,
            args=list(proc.args) if proc.args is not None else None,
            env_vars=list(proc.env_vars) if proc.env_vars is not None else None,
            log_format=proc.log_format,
            auto_start=proc.auto_start,
            port=proc.port,
            https=proc.https,
            capture_subdomains=proc.capture_subdomains,
            forward_subdomains=proc.forward_subdomains,
        )

        try:
            home = str(Path.home())
        except (RuntimeError, KeyError) as exc:
            raise ConfigurationError("Failed to resolve home directory.") from exc

        cfg_dir = self.get_parent_path()

        configured_root = self.config.root_dir
        if configured_root is not None:
            if "$root_dir" in configured_root:
                raise ConfigurationError(
                    "it is clearly not a good idea to use $root_dir in the configuration of root dir..."
                )
            substituted = configured_root.replace("$cfg_dir", cfg_dir).replace("~", home)
            try:
                root_dir = str(Path(substituted).resolve(strict=True)).replace("\\\\?\\", "")
            except OSError as exc:
                raise ConfigurationError(
                    f"root_dir item in configuration ({configured_root}) resolved to this: "
                    f"'{substituted}' - error: {exc}"
                ) from exc
        else:
            root_dir = "$root_dir"

        def with_vars(text: str) -> str:
            return text.replace("$root_dir", root_dir).replace("$cfg_dir", cfg_dir).replace("~", home)

        return replace(
            resolved,
            args=[with_vars(arg) for arg in resolved.args] if resolved.args is not None else None,
            dir=with_vars(resolved.dir) if resolved.dir is not None else None,
            bin=with_vars(resolved.bin),
        )

    def write_to_disk(self) -> None:
        """Save the configuration to its file, keeping a backup of the previous one."""
        v2_toml.write_to_disk(self.config)
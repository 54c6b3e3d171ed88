"""Loading configuration files of any supported version."""

from __future__ import annotations

import copy
import tomllib
from dataclasses import dataclass

from oddbox.legacy import OddBoxLegacyConfig
from oddbox.model import ConfigurationError, OddBoxConfigVersion
from oddbox.v1 import OddBoxV1Config
from oddbox.v2 import OddBoxV2Config

AnyConfig = OddBoxLegacyConfig | OddBoxV1Config | OddBoxV2Config


@dataclass(frozen=True)
class OddBoxConfig:
    """A configuration as it was read, in whichever version it was written."""

    config: AnyConfig

    def try_upgrade_to_latest_version(self) -> tuple[OddBoxV2Config, OddBoxConfigVersion]:
        """Return the configuration as version 2, together with the version it came from."""
        if isinstance(self.config, OddBoxLegacyConfig):
            v1 = OddBoxV1Config.from_legacy(self.config)
            return OddBoxV2Config.from_v1(v1), OddBoxConfigVersion.Unmarked
        if isinstance(self.config, OddBoxV1Config):
            return OddBoxV2Config.from_v1(self.config), OddBoxConfigVersion.V1
        return copy.deepcopy(self.config), OddBoxConfigVersion.V2


_READERS: tuple[tuple[str, type[OddBoxV2Config] | type[OddBoxV1Config] | type[OddBoxLegacyConfig]], ...] = (
    ("v2", OddBoxV2Config),
    ("v1", OddBoxV1Config),
    ("legacy", OddBoxLegacyConfig),
)


def parse_config(content: str) -> OddBoxConfig:
    """Read TOML configuration content, trying the newest format first."""
    errors: dict[str, str] = {}
    try:
        data = tomllib.loads(content)
    except tomllib.TOMLDecodeError as exc:
        errors = {label: str(exc) for label, _ in _READERS}
    else:
        for label, reader in _READERS:
            try:
                return OddBoxConfig(reader.from_dict(data))
            except ConfigurationError as exc:
                errors[label] = str(exc)

    if 'version = "V2"' in content:
        raise ConfigurationError(f"invalid v2 configuration file.\n{errors['v2']}")
    if 'version = "V1"' in content:
        raise ConfigurationError(f"invalid v1 configuration file.\n{errors['v1']}")
    raise ConfigurationError(f"invalid (legacy) configuration file.\n{errors['legacy']}")
"""Configuration loader for guacsetup."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from guacsetup.errors import ConfigError
from guacsetup.models import InstallSettings


class ConfigLoader:
    """Loads YAML configuration files overriding the built-in settings."""

    SUPPORTED_KEYS = InstallSettings.field_names()

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(map(str, unknown))
            raise ConfigError(f"Unknown configuration keys: {unknown_list}")

        return parsed

    def load_settings(self, config_path: Optional[str]) -> InstallSettings:
        values = self.load(config_path)
        try:
            return InstallSettings.from_mapping(values)
        except TypeError as exc:
            raise ConfigError(f"Invalid config file '{config_path}': {exc}") from exc

"""Configuration loader for the n8n installer."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from n8ninstaller.errors import InstallerError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    DEFAULT_FILENAME = ".n8n-installer.yml"

    SUPPORTED_KEYS = {
        "domain",
        "db_password",
        "tunnel_name",
        "timezone",
        "assume_yes",
        "verbose",
        "log_file",
        "state_file",
        "home_dir",
        "backup_dir",
        "retention_days",
        "backup_schedule",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise InstallerError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise InstallerError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise InstallerError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise InstallerError(f"Unknown configuration keys: {unknown_list}")

        return parsed

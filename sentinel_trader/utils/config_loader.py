"""
Settings loader.

Reads `config/<name>.yaml` once per name and serves nested values by
dot path ("guard.cooldown_minutes"). Secrets never live in YAML: a key
ending in `_env` holds the name of the environment variable to read.
"""

import os
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

import yaml

REQUIRED_SECTIONS = ("instruments", "guard", "positions", "feed")


class ConfigLoader:
    """Cached access to the YAML files in one settings directory."""

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self._cache: Dict[str, Dict[str, Any]] = {}

    def path_for(self, name: str) -> Path:
        return self.config_dir / f"{name}.yaml"

    def load(self, name: str, required: bool = True) -> Optional[Dict[str, Any]]:
        """
        Parsed settings for `name`.

        Raises:
            FileNotFoundError: the file is missing and `required` is set
            yaml.YAMLError: the file is not valid YAML
        """
        if name in self._cache:
            return self._cache[name]

        path = self.path_for(name)
        if not path.exists():
            if required:
                raise FileNotFoundError(f"Settings file not found: {path}")
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Cannot parse settings file {path}: {e}")

        if not isinstance(data, dict):
            raise yaml.YAMLError(f"Settings file {path} must hold a mapping at the top level")
        self._cache[name] = data
        return data

    def get(self, name: str, key_path: str, default: Any = None) -> Any:
        """
        Example:
            >>> ConfigLoader().get("settings", "guard.max_trades_per_day", 6)
        """
        data = self.load(name, required=False)
        if data is None:
            return default
        return lookup(data, key_path, default)

    def reload(self, name: Optional[str] = None) -> None:
        """Forget cached settings; the next `load` reads from disk again."""
        if name is None:
            self._cache.clear()
        else:
            self._cache.pop(name, None)


def lookup(config: Mapping[str, Any], key_path: str, default: Any = None) -> Any:
    """Walk nested mappings along a dot-separated path."""
    node: Any = config
    for key in key_path.split("."):
        if not isinstance(node, Mapping) or key not in node:
            return default
        node = node[key]
    return node


def env_secret(config: Mapping[str, Any], key_path: str) -> Optional[str]:
    """Value of the environment variable whose name sits at `key_path`."""
    var_name = lookup(config, key_path)
    if not var_name:
        return None
    return os.environ.get(str(var_name)) or None


def require_sections(config: Mapping[str, Any], sections: Iterable[str] = REQUIRED_SECTIONS) -> None:
    """Fail fast at boot when the engine cannot be wired from these settings."""
    missing = [s for s in sections if not config.get(s)]
    if missing:
        raise ValueError(f"Settings missing required section(s): {', '.join(missing)}")

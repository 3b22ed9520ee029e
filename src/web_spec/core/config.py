import copy
import os
import json
import yaml
from pathlib import Path
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """Manages configuration for web-spec"""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else self._get_default_config_path()
        self._config = self._load_config()

    def _get_default_config_path(self) -> Path:
        """Get default configuration path"""
        # Check environment variable first
        if env_path := os.getenv("WEB_SPEC_CONFIG"):
            return Path(env_path)

        # Check common locations
        locations = [
            Path.cwd() / "web-spec.yaml",
            Path.cwd() / ".web-spec" / "config.yaml",
            Path.home() / ".web-spec" / "config.yaml",
        ]

        for location in locations:
            if location.exists():
                return location

        # Return default location
        return Path.home() / ".web-spec" / "config.yaml"

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file, layered over the defaults"""
        defaults = self._get_default_config()
        if not self.config_path.exists():
            return defaults

        with open(self.config_path, 'r') as f:
            try:
                if self.config_path.suffix in ('.yaml', '.yml'):
                    loaded = yaml.safe_load(f)
                elif self.config_path.suffix == '.json':
                    loaded = json.load(f)
                else:
                    raise ConfigurationError(f"Unsupported config format: {self.config_path.suffix}")
            except (yaml.YAMLError, json.JSONDecodeError) as e:
                raise ConfigurationError(f"Invalid configuration file {self.config_path}: {e}") from e

        if loaded is None:
            return defaults
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")
        return _deep_merge(defaults, loaded)

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration"""
        return {
            "general": {
                "log_level": "INFO",
            },
            "executor": {
                "browser": "chromium",
                "headless": True,
                "timeout_ms": 30000,
                "slow_mo": 0,
                "viewport": {"width": 1280, "height": 720},
                "base_url": None,
                "screenshot_on_failure": False,
                "screenshot_dir": "screenshots",
            },
            "batch": {
                "parallel": True,
                "max_workers": None,  # None = available hardware parallelism
                "continue_on_failure": False,
                "pattern": "*.feature",
                "strict": False,
            },
            "debugger": {
                "auto_step_delay": 0.5,
            },
            "comparison": {
                "duration_tolerance_percent": 5.0,
            },
            "report": {
                "format": "text",
            },
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def save(self) -> None:
        """Save configuration to file"""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            if self.config_path.suffix == '.json':
                json.dump(self._config, f, indent=2)
            else:
                yaml.safe_dump(self._config, f, default_flow_style=False)

    def get_module_config(self, module_name: str) -> Dict[str, Any]:
        """Get configuration for a specific module"""
        return self.get(module_name, {})

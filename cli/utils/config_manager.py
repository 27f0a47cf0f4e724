"""Configuration Management for CLI Settings"""

import os
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console

console = Console()


class ConfigManager:
    """Manage CLI configuration settings"""

    def __init__(self, config_dir: Path | None = None):
        self.config_dir = config_dir or Path(
            os.getenv("ORDERQUEUE_CONFIG_DIR", Path.home() / ".orderqueue")
        )
        self.config_file = self.config_dir / "config.yaml"

    def ensure_config_dir(self):
        """Ensure config directory exists"""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def load_config(self) -> dict[str, Any]:
        """Load configuration from file"""
        if not self.config_file.exists():
            return self.get_default_config()

        try:
            with open(self.config_file) as f:
                config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            console.print(f"[red]Error loading config: {e}[/red]")
            return self.get_default_config()

        # Merge with defaults to ensure all keys exist
        return _deep_merge(self.get_default_config(), config)

    def save_config(self, config: dict[str, Any]):
        """Save configuration to file"""
        self.ensure_config_dir()
        try:
            with open(self.config_file, "w") as f:
                yaml.safe_dump(config, f, default_flow_style=False)
        except OSError as e:
            console.print(f"[red]Error saving config: {e}[/red]")
            raise

    def get_default_config(self) -> dict[str, Any]:
        """Get default configuration"""
        return {
            "api": {
                "base_url": os.getenv("ORDERQUEUE_API_URL", "http://localhost:8000"),
                "timeout": 30,
                "headers": {},
            },
            "display": {
                "jobs_per_page": 20,
            },
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        config = self.load_config()
        for k in key.split("."):
            if isinstance(config, dict) and k in config:
                config = config[k]
            else:
                return default

        return config

    def set(self, key: str, value: Any):
        """Set configuration value using dot notation"""
        config = self.load_config()
        keys = key.split(".")

        # Navigate to the parent dict
        current = config
        for k in keys[:-1]:
            if not isinstance(current.get(k), dict):
                current[k] = {}
            current = current[k]

        current[keys[-1]] = value
        self.save_config(config)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


# Global config manager instance
config = ConfigManager()

"""
Configuration management for the operator.

Handles loading and merging configuration from:
- Default configuration file (config/default.yaml)
- An optional override file
- Environment variables
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


class Config:
    """Configuration manager for the operator."""

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_file: Path to configuration file. If None, uses default.
        """
        self._config: Dict[str, Any] = {}
        self._load_default_config()

        if config_file:
            self._load_config_file(config_file)

        self._apply_env_overrides()

    def _load_default_config(self) -> None:
        """Load default configuration."""
        default_config_path = Path(__file__).parent.parent.parent / "config" / "default.yaml"
        if default_config_path.exists():
            self._load_config_file(str(default_config_path))

    def _load_config_file(self, config_file: str) -> None:
        """
        Load configuration from YAML file.

        Args:
            config_file: Path to YAML configuration file
        """
        with open(config_file, "r") as f:
            file_config = yaml.safe_load(f) or {}
            self._merge_config(file_config)

    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        self._config = self._deep_merge(self._config, new_config)

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two dictionaries.

        Args:
            base: Base dictionary
            override: Override dictionary

        Returns:
            Merged dictionary
        """
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        if log_level := os.getenv("LOG_LEVEL"):
            self.set("logging.level", log_level)

        if log_format := os.getenv("LOG_FORMAT"):
            self.set("logging.format", log_format)

        if rebalance_url := os.getenv("REBALANCE_URL"):
            self.set("rebalance.url_template", rebalance_url)

        if resync := os.getenv("RESYNC_INTERVAL_MS"):
            self.set("operator.resync_interval_ms", int(resync))

        if namespace := os.getenv("WATCH_NAMESPACE"):
            self.set("operator.namespace", namespace)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., "upgrade.stability_window_ms")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in dot notation
            value: Value to set
        """
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def to_dict(self) -> Dict[str, Any]:
        return self._config.copy()


@dataclass
class OperatorConfig:
    """
    Typed operator settings.

    Attributes:
        namespace: Namespace to watch (empty string for all)
        resync_interval_ms: Timed resync period per cluster
        requeue_interval_ms: Delay before the next pass while converging
        stability_window_ms: How long a restarted broker must stay ready
        readiness_timeout_ms: Max wait for a restarted broker to become ready
        rebalance_url_template: Default rebalancing service URL
        rebalance_timeout_ms: HTTP timeout for rebalancing service calls
    """
    namespace: str = ""
    resync_interval_ms: int = 300000        # 5 minutes
    requeue_interval_ms: int = 15000        # 15 seconds
    stability_window_ms: int = 30000        # 30 seconds
    readiness_timeout_ms: int = 600000      # 10 minutes
    rebalance_url_template: str = "http://{name}-cruisecontrol-svc.{namespace}.svc.cluster.local:8090"
    rebalance_timeout_ms: int = 10000       # 10 seconds

    @classmethod
    def from_config(cls, config: Config) -> "OperatorConfig":
        """Build typed settings from a Config, falling back to defaults."""
        defaults = cls()
        return cls(
            namespace=config.get("operator.namespace", defaults.namespace),
            resync_interval_ms=int(
                config.get("operator.resync_interval_ms", defaults.resync_interval_ms)
            ),
            requeue_interval_ms=int(
                config.get("operator.requeue_interval_ms", defaults.requeue_interval_ms)
            ),
            stability_window_ms=int(
                config.get("upgrade.stability_window_ms", defaults.stability_window_ms)
            ),
            readiness_timeout_ms=int(
                config.get("upgrade.readiness_timeout_ms", defaults.readiness_timeout_ms)
            ),
            rebalance_url_template=config.get(
                "rebalance.url_template", defaults.rebalance_url_template
            ),
            rebalance_timeout_ms=int(
                config.get("rebalance.timeout_ms", defaults.rebalance_timeout_ms)
            ),
        )


# Global configuration instance
_config: Optional[Config] = None


def get_config(config_file: Optional[str] = None) -> Config:
    """
    Get global configuration instance.

    Args:
        config_file: Optional configuration file path

    Returns:
        Configuration instance
    """
    global _config
    if _config is None:
        _config = Config(config_file)
    return _config


def reset_config() -> None:
    """Reset global configuration (mainly for testing)."""
    global _config
    _config = None

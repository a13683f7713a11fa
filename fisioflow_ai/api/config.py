"""API configuration loader."""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_API_CONFIG: dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 8000,
        "workers": 1,
        "reload": False,
    },
    "engine": {
        "config_path": os.path.join("config", "engine.yaml"),
    },
    "cors": {
        "enabled": True,
        "allow_origins": ["*"],
        "allow_methods": ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        "allow_headers": ["Content-Type", "Authorization"],
    },
    "logging": {
        "level": "INFO",
        "log_requests": True,
    },
}


class APIConfig:
    """Load and manage HTTP server configuration from api.yaml."""

    def __init__(self, config_path: str | None = None):
        """Initialize configuration.

        Args:
            config_path: Path to api.yaml config file (default: config/api.yaml)
        """
        if config_path is None:
            config_path = os.path.join("config", "api.yaml")

        self.config_path = Path(config_path)
        self.config: dict[str, Any] = {}

        self._load_config()

    def _load_config(self):
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            logger.warning(f"Config file not found: {self.config_path}, using defaults")
            self.config = dict(DEFAULT_API_CONFIG)
            return

        try:
            with open(self.config_path) as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config: {e}")
            self.config = dict(DEFAULT_API_CONFIG)
            return

        self.config = {**DEFAULT_API_CONFIG, **loaded}
        logger.info(f"Loaded API configuration from {self.config_path}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dot-separated key.

        Args:
            key: Dot-separated key path (e.g., "server.port")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self.config
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

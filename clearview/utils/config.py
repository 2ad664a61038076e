"""
Configuration management for Clearview.
"""
import json
import math
import os
from pathlib import Path
from typing import Dict, Any, Optional, Union

from clearview.utils.constants import CONFIGS_DIR, DEFAULT_CONFIDENCE_THRESHOLD
from clearview.utils.logger import Logger

# Environment variable -> dotted config key
ENV_OVERRIDES = {
    'CLEARVIEW_VIDEO': 'capture.source',
    'CLEARVIEW_MODEL_DIR': 'detect.model_dir',
    'CLEARVIEW_CONFIDENCE': 'detect.confidence',
    'CLEARVIEW_LOG_LEVEL': 'logging.level',
}


class Config:
    """Configuration manager that merges multiple domain-specific JSON files."""

    def __init__(self, configs_dir: Optional[Union[str, Path]] = None):
        """
        Initialize configuration by loading all JSON files in the configs directory.

        Args:
            configs_dir: Path to directory containing JSON configs (defaults to clearview/configs)
        """
        self.config: Dict[str, Any] = {}
        self.logger = Logger("Config")

        configs_dir = Path(configs_dir) if configs_dir else CONFIGS_DIR

        # 1. Load all JSON files if directory exists
        if configs_dir.exists() and configs_dir.is_dir():
            for config_file in sorted(configs_dir.glob("*.json")):
                self.load_from_file(str(config_file))
        else:
            self.logger.warning(f"Config directory not found: {configs_dir}")

        # 2. Override from environment variables if present
        self._load_from_env()

    def _load_from_env(self):
        """Load configuration from environment variables."""
        for env_name, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                self.set(key, value)

    def load_from_file(self, path: str):
        """Load configuration from JSON file."""
        try:
            with open(path, 'r') as f:
                self._merge_config(json.load(f))
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to load config from {path}: {e}")

    def _merge_config(self, user_config: Dict[str, Any]):
        """Merge user config with defaults recursively."""
        def update(d, u):
            for k, v in u.items():
                if isinstance(v, dict):
                    d[k] = update(d.get(k, {}), v)
                else:
                    d[k] = v
            return d

        update(self.config, user_config)

    def set(self, key: str, value: Any):
        """Set a dotted key, creating intermediate sections."""
        *parents, leaf = key.split('.')
        section = self.config
        for k in parents:
            section = section.setdefault(k, {})
        section[leaf] = value

    def get_int(self, key: str, default: int = 0) -> int:
        """Get config value as integer."""
        val = self.get(key, default)
        try:
            return int(val)
        except (ValueError, TypeError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        """Get config value as float."""
        val = self.get(key, default)
        try:
            return float(val)
        except (ValueError, TypeError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get config value as boolean."""
        val = self.get(key, default)
        if isinstance(val, bool):
            return val
        if isinstance(val, str):
            return val.lower() in ('true', '1', 'yes', 'on')
        return bool(val)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        value = self.config
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def save_to_file(self, path: str):
        """Save current configuration to file."""
        with open(path, 'w') as f:
            json.dump(self.config, f, indent=2)


def resolve_confidence_threshold(value: Any, default: float = DEFAULT_CONFIDENCE_THRESHOLD) -> float:
    """
    Parse a detection confidence threshold.

    Non-numeric values and values outside [0, 1] fall back to ``default``
    with a warning; the pipeline keeps running.
    """
    logger = Logger("Config")
    try:
        threshold = float(value)
    except (ValueError, TypeError):
        logger.warning(f"Invalid threshold value {value!r}, using {default}")
        return default

    if math.isnan(threshold) or not 0.0 <= threshold <= 1.0:
        logger.warning(f"Threshold {threshold} outside [0, 1], using {default}")
        return default
    return threshold

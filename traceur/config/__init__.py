"""Simple YAML configuration loader for Traceur."""

import copy
import os
import platform
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "perfetto": {
        "binary": "perfetto",
        "session_tag": "traceur",
    },
    "storage": {
        "trace_directory": "/data/local/traces",
        "min_keep_count": 3,
        "min_keep_age_days": 28,
    },
    "device": {
        "board": platform.machine() or "unknown",
        "build_id": platform.release() or "unknown",
    },
    "defaults": {
        "tags": ["aidl", "am", "binder_driver", "camera", "dalvik", "disk", "freq",
                 "gfx", "hal", "idle", "input", "memory", "memreclaim", "network",
                 "power", "res", "sched", "ss", "sync", "thermal", "view",
                 "webview", "wm", "workq"],
        "buffer_size_kb": 16384,
        "apps": True,
        "attach_to_bugreport": True,
        "long_trace": False,
        "max_long_trace_size_mb": 10240,
        "max_long_trace_duration_minutes": 30,
    },
    "logging": {
        "level": "INFO",
        "file_path": "traceur.log",
        "console_output": True,
    },
}


class TraceurConfig:
    """Traceur configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, the built-in
                        defaults are used.
        """
        if config_path is None:
            self.config_file = None
            self.config = copy.deepcopy(DEFAULT_CONFIG)
            logger.info("No configuration file given, using built-in defaults")
            return

        self.config_file = Path(config_path)

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file, layered over the defaults."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")
        except OSError as e:
            raise ValueError(f"Failed to load configuration: {e}")

        if not loaded:
            raise ValueError("Configuration file is empty")
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        config = copy.deepcopy(DEFAULT_CONFIG)
        _merge(config, loaded)

        # Resolve relative paths
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        trace_dir = config['storage'].get('trace_directory')
        if trace_dir and not os.path.isabs(trace_dir):
            config['storage']['trace_directory'] = str(config_dir / trace_dir)

        log_path = config['logging'].get('file_path')
        if log_path and not os.path.isabs(log_path):
            config['logging']['file_path'] = str(config_dir / log_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'perfetto.session_tag').

        Args:
            key_path: Dot-separated key path (e.g., 'storage.trace_directory')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'defaults.long_trace')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        # Navigate to the parent dictionary
        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        # Set the final value
        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_trace_directory(self) -> str:
        """Get the directory traces are written to."""
        trace_dir = self.get('storage.trace_directory', '/data/local/traces')
        return str(Path(trace_dir).absolute())

    def get_session_defaults(self) -> Dict[str, Any]:
        """Get the default SessionRequest fields."""
        return dict(self.get('defaults', {}))


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value

import os
import yaml
from typing import Dict, Any, Optional

from streampool.core.errors import ConfigurationError

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    "concurrency": None,
    "pool_name": "streampool",
    "await_timeout": 180.0,
    "admission_poll_interval": 0.1,
    "await_poll_interval": 0.2,
    "drain_poll_interval": 0.05,
    "worker_type": "process",
    "start_method": None,
    "forward_in_background": True,
    "keep_workdir": False,
    "batch_size": 1000,
    "log_level": "INFO",
}

# Settings passed straight through to StreamPool
POOL_OPTIONS = (
    "concurrency",
    "pool_name",
    "await_timeout",
    "admission_poll_interval",
    "await_poll_interval",
    "drain_poll_interval",
    "worker_type",
    "start_method",
    "forward_in_background",
    "keep_workdir",
)

POSITIVE_NUMBERS = ("await_timeout", "admission_poll_interval", "await_poll_interval", "drain_poll_interval")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Config:
    """
    Manages configuration settings for a pool run.

    Loads settings from a YAML file and layers explicit overrides (typically
    command-line options) on top. Validates values after loading.
    """
    def __init__(self):
        self._settings: Dict[str, Any] = DEFAULT_CONFIG.copy()

    def load(self, config_file: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> "Config":
        """
        Loads configuration from a file and overrides.

        Args:
            config_file: Optional path to a YAML configuration file.
            overrides: Optional mapping of settings; None values are ignored
                so unset command-line options do not mask file values.
        """
        # 1. Load from config file if specified
        if config_file:
            if not os.path.exists(config_file):
                raise ConfigurationError(f"Config file not found: {config_file}")
            try:
                with open(config_file, 'r') as f:
                    file_config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Error parsing config file {config_file}: {e}")
            except OSError as e:
                raise ConfigurationError(f"Error reading config file {config_file}: {e}")
            if file_config:  # Check if file is not empty
                if not isinstance(file_config, dict):
                    raise ConfigurationError(f"Config file {config_file} must contain a mapping")
                self._settings.update(file_config)

        # 2. Override with explicitly provided values
        if overrides:
            self._settings.update({key: value for key, value in overrides.items() if value is not None})

        # 3. Validate
        self._validate()
        return self

    def _validate(self):
        """Checks that all settings hold usable values."""
        unknown = sorted(set(self._settings) - set(DEFAULT_CONFIG))
        if unknown:
            raise ConfigurationError(f"Unknown configuration parameters: {', '.join(unknown)}")

        concurrency = self._settings.get("concurrency")
        if concurrency is None:
            self._settings["concurrency"] = os.cpu_count() or 1
        elif isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
            raise ConfigurationError(f"concurrency must be an integer >= 1, got {concurrency!r}")

        batch_size = self._settings.get("batch_size")
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
            raise ConfigurationError(f"batch_size must be an integer >= 1, got {batch_size!r}")

        for key in POSITIVE_NUMBERS:
            value = self._settings.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"{key} must be a positive number, got {value!r}")

        worker_type = str(self._settings.get("worker_type")).lower()
        if worker_type not in ("process", "thread"):
            raise ConfigurationError(f"worker_type must be 'process' or 'thread', got {worker_type!r}")
        self._settings["worker_type"] = worker_type

        if not self._settings.get("pool_name"):
            raise ConfigurationError("pool_name must not be empty")
        if os.sep in str(self._settings["pool_name"]):
            raise ConfigurationError(f"pool_name must not contain '{os.sep}'")

        log_level = str(self._settings.get("log_level")).upper()
        if log_level not in LOG_LEVELS:
            raise ConfigurationError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")
        self._settings["log_level"] = log_level

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieves a configuration value."""
        return self._settings.get(key, default)

    def get_all(self) -> Dict[str, Any]:
        """Retrieves all configuration settings."""
        return self._settings.copy()

    def pool_options(self) -> Dict[str, Any]:
        """Keyword arguments for StreamPool."""
        return {key: self._settings[key] for key in POOL_OPTIONS}

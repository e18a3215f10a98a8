"""
Upload Queue Configuration Handler

Layers an optional YAML file over the defaults from config/settings.py.
Provides validation and typed accessors.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from config.settings import (
    MAX_COMPLETED_HISTORY,
    MAX_CONCURRENT_UPLOADS,
    MAX_FILE_SIZE_BYTES,
    MAX_QUEUE_SIZE,
    MAX_UPLOAD_RETRIES,
    PROGRESS_MIN_DELTA,
    PROGRESS_MIN_INTERVAL_SECONDS,
    QUEUE_CONFIG_FILE,
    QUEUE_KEY_PREFIX,
    QUEUE_STORE_PATH,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_JITTER_RATIO,
    RETRY_MAX_DELAY_SECONDS,
    SCHEDULER_TICK_SECONDS,
    SUCCEEDED_RETENTION_SECONDS,
    UPLOAD_TIMEOUT_SECONDS,
)


class QueueConfig:
    """
    Upload queue configuration with YAML file support.

    Without a path only the defaults (settings + environment) are used and
    nothing touches the disk. With a path, the file overrides the defaults
    and is created with the defaults if it does not exist yet.

    Usage:
        config = QueueConfig()
        limit = config.max_queue_size

        config = QueueConfig(Path("config/upload_queue.yaml"))
        config = QueueConfig(overrides={"max_upload_retries": 0})
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (None = UPLOAD_QUEUE_CONFIG_FILE
                from the environment, or no file at all)
            overrides: Values applied last, e.g. from tests

        Raises:
            ValueError: If a value fails validation
        """
        self.logger = logging.getLogger(__name__)
        if config_path is None and QUEUE_CONFIG_FILE:
            config_path = Path(QUEUE_CONFIG_FILE)
        self.config_path = Path(config_path) if config_path else None
        self._overrides = dict(overrides or {})

        # Load configuration (defaults + file overrides + explicit overrides)
        self._config = self._load_config()

    def _get_defaults(self) -> Dict[str, Any]:
        """Get default configuration values from settings"""
        return {
            # Scheduling
            "max_concurrent_uploads": MAX_CONCURRENT_UPLOADS,
            "scheduler_tick_seconds": SCHEDULER_TICK_SECONDS,
            "upload_timeout_seconds": UPLOAD_TIMEOUT_SECONDS,
            # Queue limits
            "max_queue_size": MAX_QUEUE_SIZE,
            "max_file_size_bytes": MAX_FILE_SIZE_BYTES,
            "succeeded_retention_seconds": SUCCEEDED_RETENTION_SECONDS,
            "max_completed_history": MAX_COMPLETED_HISTORY,
            # Retry
            "max_upload_retries": MAX_UPLOAD_RETRIES,
            "retry_base_delay_seconds": RETRY_BASE_DELAY_SECONDS,
            "retry_max_delay_seconds": RETRY_MAX_DELAY_SECONDS,
            "retry_jitter_ratio": RETRY_JITTER_RATIO,
            # Progress
            "progress_min_delta": PROGRESS_MIN_DELTA,
            "progress_min_interval_seconds": PROGRESS_MIN_INTERVAL_SECONDS,
            # Storage
            "store_path": str(QUEUE_STORE_PATH),
            "key_prefix": QUEUE_KEY_PREFIX,
        }

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file or use defaults"""
        # Start with defaults
        config = self._get_defaults()

        if self.config_path is not None:
            if self.config_path.exists():
                try:
                    with open(self.config_path, "r") as f:
                        file_config = yaml.safe_load(f) or {}

                    if not isinstance(file_config, dict):
                        raise ValueError("top level must be a mapping")

                    unknown = set(file_config) - set(config)
                    if unknown:
                        self.logger.warning(
                            f"Ignoring unknown config keys in {self.config_path}: "
                            f"{sorted(unknown)}",
                        )
                    config.update(
                        {k: v for k, v in file_config.items() if k in config},
                    )

                    self.logger.info(f"Loaded config from {self.config_path}")

                except (OSError, yaml.YAMLError, ValueError) as e:
                    self.logger.warning(
                        f"Failed to load config from {self.config_path}: {e}. "
                        f"Using defaults.",
                    )
            else:
                self.logger.info(
                    f"Config file not found at {self.config_path}. "
                    f"Using defaults. Creating default config file...",
                )
                self._save_config(config)

        config.update(self._overrides)

        # Validate configuration
        self._validate_config(config)

        return config

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """Validate configuration values"""
        if config["max_concurrent_uploads"] < 1:
            raise ValueError("max_concurrent_uploads must be at least 1")

        if config["max_queue_size"] < 1:
            raise ValueError("max_queue_size must be at least 1")

        if config["max_file_size_bytes"] <= 0:
            raise ValueError("max_file_size_bytes must be positive")

        if config["max_upload_retries"] < 0:
            raise ValueError("max_upload_retries cannot be negative")

        if config["retry_base_delay_seconds"] < 0:
            raise ValueError("retry_base_delay_seconds cannot be negative")

        if not 0 <= config["retry_jitter_ratio"] < 1:
            raise ValueError("retry_jitter_ratio must be in [0, 1)")

        if config["upload_timeout_seconds"] <= 0:
            raise ValueError("upload_timeout_seconds must be positive")

        if config["scheduler_tick_seconds"] <= 0:
            raise ValueError("scheduler_tick_seconds must be positive")

        if not 0 <= config["progress_min_delta"] <= 1:
            raise ValueError("progress_min_delta must be in [0, 1]")

        # Max delay below base delay makes backoff flat
        if config["retry_max_delay_seconds"] < config["retry_base_delay_seconds"]:
            self.logger.warning(
                "retry_max_delay_seconds is less than retry_base_delay_seconds. "
                "Every retry will wait the maximum delay.",
            )

    def _save_config(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Save configuration to YAML file"""
        if self.config_path is None:
            return
        if config is None:
            config = self._config

        try:
            # Create config directory if it doesn't exist
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.config_path, "w") as f:
                yaml.dump(
                    config,
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    indent=2,
                )

            self.logger.info(f"Config saved to {self.config_path}")

        except OSError as e:
            self.logger.error(f"Failed to save config: {e}")

    # =========================================================================
    # PROPERTY ACCESSORS
    # =========================================================================

    @property
    def max_concurrent_uploads(self) -> int:
        """Global number of simultaneous uploads across all owners"""
        return int(self._config["max_concurrent_uploads"])

    @property
    def scheduler_tick_seconds(self) -> float:
        return float(self._config["scheduler_tick_seconds"])

    @property
    def upload_timeout_seconds(self) -> float:
        """Per-attempt transfer timeout"""
        return float(self._config["upload_timeout_seconds"])

    @property
    def max_queue_size(self) -> int:
        """Maximum tasks kept per owner"""
        return int(self._config["max_queue_size"])

    @property
    def max_file_size_bytes(self) -> int:
        return int(self._config["max_file_size_bytes"])

    @property
    def succeeded_retention_seconds(self) -> float:
        """How long succeeded tasks stay in the queue before archiving"""
        return float(self._config["succeeded_retention_seconds"])

    @property
    def max_completed_history(self) -> int:
        return int(self._config["max_completed_history"])

    @property
    def max_upload_retries(self) -> int:
        """Automatic retries after the first attempt"""
        return int(self._config["max_upload_retries"])

    @property
    def retry_base_delay_seconds(self) -> float:
        return float(self._config["retry_base_delay_seconds"])

    @property
    def retry_max_delay_seconds(self) -> float:
        return float(self._config["retry_max_delay_seconds"])

    @property
    def retry_jitter_ratio(self) -> float:
        return float(self._config["retry_jitter_ratio"])

    @property
    def progress_min_delta(self) -> float:
        return float(self._config["progress_min_delta"])

    @property
    def progress_min_interval_seconds(self) -> float:
        return float(self._config["progress_min_interval_seconds"])

    @property
    def store_path(self) -> Path:
        """Directory for the file-backed store"""
        return Path(self._config["store_path"])

    @property
    def key_prefix(self) -> str:
        return str(self._config["key_prefix"])

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by key.

        Args:
            key: Configuration key
            default: Default value if key not found
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any, save: bool = True) -> None:
        """
        Set configuration value.

        Args:
            key: Configuration key
            value: New value
            save: If True and a file is configured, save immediately

        Raises:
            KeyError: If the key is unknown
            ValueError: If the new value fails validation
        """
        if key not in self._config:
            raise KeyError(f"Unknown config key: {key}")

        candidate = dict(self._config)
        candidate[key] = value
        self._validate_config(candidate)
        self._config = candidate

        if save:
            self._save_config()

    def reload(self) -> None:
        """Reload configuration from file"""
        self._config = self._load_config()
        self.logger.info("Configuration reloaded")

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary"""
        return self._config.copy()

    def __repr__(self) -> str:
        """Human-readable representation"""
        return f"QueueConfig(path={self.config_path})"

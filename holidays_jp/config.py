"""Configuration management module."""

import os
import json
import copy
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Any
from pathlib import Path

from .security import SecureFileHandler, validate_file_path_input
from .error_handler import ValidationError, ConfigurationError, FileSystemError
from .refresh_policy import RefreshStrategy


logger = logging.getLogger(__name__)

CABINET_OFFICE_URL = "https://www8.cao.go.jp/chosei/shukujitsu/syukujitsu.csv"


@dataclass(frozen=True)
class CacheSettings:
    """Validated settings for the holiday cache, fixed for the process lifetime."""
    source_url: str = CABINET_OFFICE_URL
    cache_file: str = "./data/holidays.json"
    strategy: RefreshStrategy = RefreshStrategy.HYBRID
    max_age_hours: int = 168  # 7 days
    etag_check_interval_hours: int = 24
    force_refresh_on_startup: bool = False
    download_timeout: float = 30
    probe_timeout: float = 10
    allow_insecure_http: bool = False

    def __post_init__(self):
        for key in ('max_age_hours', 'etag_check_interval_hours'):
            value = getattr(self, key)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigurationError(f"{key} must be a non-negative integer, got: {value!r}",
                                         config_key=f"cache.{key}")

        if not isinstance(self.strategy, RefreshStrategy):
            raise ConfigurationError(f"Invalid cache strategy: {self.strategy!r}",
                                     config_key="cache.strategy")

        if not isinstance(self.force_refresh_on_startup, bool):
            raise ConfigurationError(
                f"force_refresh_on_startup must be a boolean, got: {self.force_refresh_on_startup!r}",
                config_key="cache.force_refresh_on_startup")

        for key in ('download_timeout', 'probe_timeout'):
            value = getattr(self, key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"{key} must be a positive number, got: {value!r}",
                                         config_key=f"network.{key}")

        # HEADはGETより短いタイムアウトで打ち切る
        if self.probe_timeout >= self.download_timeout:
            raise ConfigurationError(
                f"probe_timeout ({self.probe_timeout}s) must be shorter than "
                f"download_timeout ({self.download_timeout}s)",
                config_key="network.probe_timeout")

        if not self.source_url or not isinstance(self.source_url, str):
            raise ConfigurationError("source_url must be a non-empty string",
                                     config_key="holiday_data.source_url")

        if not self.cache_file or not isinstance(self.cache_file, str):
            raise ConfigurationError("cache_file must be a non-empty path",
                                     config_key="holiday_data.cache_file")


class Config:
    """Configuration management for the application."""

    DEFAULT_CONFIG = {
        'holiday_data': {
            'source_url': CABINET_OFFICE_URL,
            'cache_file': './data/holidays.json',
            'allow_insecure_http': False
        },
        'cache': {
            'strategy': RefreshStrategy.HYBRID.value,
            'max_age_hours': 168,  # 7 days - aligns with the weekly upstream update
            'etag_check_interval_hours': 24,  # daily ETag check for emergency updates
            'force_refresh_on_startup': False
        },
        'network': {
            'download_timeout': 30,
            'probe_timeout': 10
        }
    }

    ENV_OVERRIDES = {
        'HOLIDAYS_JP_SOURCE_URL': 'holiday_data.source_url',
        'HOLIDAYS_JP_CACHE_FILE': 'holiday_data.cache_file',
        'HOLIDAYS_JP_CACHE_STRATEGY': 'cache.strategy',
    }

    def __init__(self, config_file: Optional[str] = None):
        """Initialize configuration.

        Args:
            config_file: Path to configuration file (optional)
        """
        self.config_file = config_file or self._get_default_config_path()
        self.config = copy.deepcopy(self.DEFAULT_CONFIG)
        self.load_config()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path.

        Returns:
            Default config file path
        """
        return str(Path.home() / '.holidays-jp' / 'config.json')

    def load_config(self):
        """Load configuration from file and environment variables."""
        if os.path.exists(self.config_file):
            try:
                validated_path = validate_file_path_input(self.config_file, allow_create=False,
                                                          require_exists=True)
                content = SecureFileHandler.read_secure_file(validated_path)
                file_config = json.loads(content)
                if not isinstance(file_config, dict):
                    raise ConfigurationError(f"Config file must contain a JSON object: {self.config_file}")
                self._merge_config(file_config)
                logger.info(f"Loaded configuration from {self.config_file}")
            except (json.JSONDecodeError, ValidationError, FileSystemError) as e:
                raise ConfigurationError(
                    f"Failed to load config file {self.config_file}: {e}",
                    config_key="config_file",
                    cause=e
                )

        env_config: Dict[str, Any] = {}
        for env_name, key_path in self.ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                section, key = key_path.split('.')
                env_config.setdefault(section, {})[key] = value

        if env_config:
            self._merge_config(env_config)

    def save_config(self):
        """Save current configuration to file."""
        content = json.dumps(self.config, indent=2, ensure_ascii=False)
        try:
            SecureFileHandler.write_secure_file(
                self.config_file,
                content,
                permissions=SecureFileHandler.READABLE_FILE_PERMISSIONS
            )
        except (ValidationError, FileSystemError) as e:
            raise ConfigurationError(f"Failed to save config file {self.config_file}: {e}",
                                     config_key="config_file", cause=e)

    def _merge_config(self, new_config: Dict[str, Any]):
        """Merge new configuration with existing config.

        Args:
            new_config: New configuration to merge
        """
        def merge_dict(base: Dict, update: Dict):
            for key, value in update.items():
                if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                    merge_dict(base[key], value)
                else:
                    base[key] = value

        merge_dict(self.config, new_config)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value by key path.

        Args:
            key_path: Dot-separated key path (e.g., 'cache.strategy')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key_path.split('.')
        value = self.config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key_path: str, value: Any):
        """Set configuration value by key path.

        Args:
            key_path: Dot-separated key path
            value: Value to set
        """
        keys = key_path.split('.')
        config = self.config

        for key in keys[:-1]:
            if key not in config:
                config[key] = {}
            config = config[key]

        config[keys[-1]] = value

    def get_cache_settings(self) -> CacheSettings:
        """Build validated cache settings.

        Returns:
            CacheSettings for HolidayCache / HolidayService

        Raises:
            ConfigurationError: unknown strategy or out-of-range values
        """
        strategy_name = self.get('cache.strategy')
        try:
            strategy = RefreshStrategy.from_name(strategy_name)
        except ValueError as e:
            raise ConfigurationError(str(e), config_key="cache.strategy", cause=e)

        return CacheSettings(
            source_url=self.get('holiday_data.source_url'),
            cache_file=self.get('holiday_data.cache_file'),
            strategy=strategy,
            max_age_hours=self.get('cache.max_age_hours'),
            etag_check_interval_hours=self.get('cache.etag_check_interval_hours'),
            force_refresh_on_startup=self.get('cache.force_refresh_on_startup'),
            download_timeout=self.get('network.download_timeout'),
            probe_timeout=self.get('network.probe_timeout'),
            allow_insecure_http=bool(self.get('holiday_data.allow_insecure_http', False))
        )

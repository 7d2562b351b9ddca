"""
Unit tests for Configuration management.
"""

import json
import pytest
from dataclasses import replace

from holidays_jp.config import Config, CacheSettings, CABINET_OFFICE_URL
from holidays_jp.error_handler import ConfigurationError
from holidays_jp.refresh_policy import RefreshStrategy


class TestConfig:
    """Test cases for Config class."""

    def test_init_with_defaults(self, temp_dir):
        """Test initialization with default values."""
        config = Config()

        assert config.config_file == str(temp_dir / '.holidays-jp' / 'config.json')
        assert config.get('holiday_data.source_url') == CABINET_OFFICE_URL
        assert config.get('cache.strategy') == 'Hybrid'
        assert config.get('cache.max_age_hours') == 168
        assert config.get('cache.etag_check_interval_hours') == 24

    def test_default_cache_settings(self):
        settings = Config().get_cache_settings()

        assert settings.strategy is RefreshStrategy.HYBRID
        assert settings.cache_file == './data/holidays.json'
        assert settings.force_refresh_on_startup is False
        assert settings.download_timeout == 30
        assert settings.probe_timeout == 10
        assert settings.allow_insecure_http is False

    def test_load_config_from_file(self, temp_dir):
        config_file = temp_dir / 'config.json'
        config_file.write_text(json.dumps({
            'cache': {'strategy': 'TimeBased', 'max_age_hours': 72},
            'holiday_data': {'cache_file': str(temp_dir / 'cache.json')}
        }), encoding='utf-8')

        settings = Config(str(config_file)).get_cache_settings()

        assert settings.strategy is RefreshStrategy.TIME_BASED
        assert settings.max_age_hours == 72
        assert settings.cache_file == str(temp_dir / 'cache.json')
        # 指定していない値はデフォルトのまま
        assert settings.etag_check_interval_hours == 24

    def test_load_invalid_json(self, temp_dir):
        config_file = temp_dir / 'config.json'
        config_file.write_text('{"cache": ', encoding='utf-8')

        with pytest.raises(ConfigurationError, match="Failed to load config file"):
            Config(str(config_file))

    def test_load_non_object_json(self, temp_dir):
        config_file = temp_dir / 'config.json'
        config_file.write_text('["Hybrid"]', encoding='utf-8')

        with pytest.raises(ConfigurationError):
            Config(str(config_file))

    def test_environment_overrides(self, monkeypatch, temp_dir):
        monkeypatch.setenv('HOLIDAYS_JP_CACHE_STRATEGY', 'EtagBased')
        monkeypatch.setenv('HOLIDAYS_JP_CACHE_FILE', str(temp_dir / 'env.json'))
        monkeypatch.setenv('HOLIDAYS_JP_SOURCE_URL', 'https://example.jp/holidays.csv')

        settings = Config().get_cache_settings()

        assert settings.strategy is RefreshStrategy.ETAG_BASED
        assert settings.cache_file == str(temp_dir / 'env.json')
        assert settings.source_url == 'https://example.jp/holidays.csv'

    def test_environment_overrides_file(self, monkeypatch, temp_dir):
        config_file = temp_dir / 'config.json'
        config_file.write_text(json.dumps({'cache': {'strategy': 'NeverRefresh'}}), encoding='utf-8')
        monkeypatch.setenv('HOLIDAYS_JP_CACHE_STRATEGY', 'AlwaysRefresh')

        settings = Config(str(config_file)).get_cache_settings()

        assert settings.strategy is RefreshStrategy.ALWAYS_REFRESH

    def test_unknown_strategy(self):
        config = Config()
        config.set('cache.strategy', 'Sometimes')

        with pytest.raises(ConfigurationError) as exc_info:
            config.get_cache_settings()

        assert exc_info.value.config_key == 'cache.strategy'

    def test_get_and_set(self):
        config = Config()
        config.set('cache.max_age_hours', 12)
        config.set('new_section.key', 'value')

        assert config.get('cache.max_age_hours') == 12
        assert config.get('new_section.key') == 'value'
        assert config.get('missing.key', 'fallback') == 'fallback'

    def test_save_config(self, temp_dir):
        config_file = temp_dir / 'nested' / 'config.json'
        config = Config(str(config_file))
        config.set('cache.strategy', 'TimeBased')
        config.save_config()

        reloaded = Config(str(config_file))

        assert reloaded.get('cache.strategy') == 'TimeBased'


class TestCacheSettings:
    """Test cases for CacheSettings validation."""

    def test_defaults(self):
        settings = CacheSettings()
        assert settings.source_url == CABINET_OFFICE_URL
        assert settings.strategy is RefreshStrategy.HYBRID

    @pytest.mark.parametrize("field,value", [
        ('max_age_hours', -1),
        ('max_age_hours', 1.5),
        ('max_age_hours', '168'),
        ('etag_check_interval_hours', -24),
        ('force_refresh_on_startup', 'yes'),
        ('download_timeout', 0),
        ('probe_timeout', -1),
        ('source_url', ''),
        ('cache_file', ''),
        ('strategy', 'Hybrid'),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ConfigurationError):
            CacheSettings(**{field: value})

    def test_probe_timeout_must_be_shorter_than_download(self):
        with pytest.raises(ConfigurationError, match="probe_timeout"):
            CacheSettings(download_timeout=10, probe_timeout=10)

    def test_zero_hours_are_allowed(self):
        settings = CacheSettings(max_age_hours=0, etag_check_interval_hours=0)
        assert settings.max_age_hours == 0

    def test_settings_are_immutable(self):
        settings = CacheSettings()
        with pytest.raises(AttributeError):
            settings.max_age_hours = 1

    def test_replace_revalidates(self):
        with pytest.raises(ConfigurationError):
            replace(CacheSettings(), max_age_hours=-5)

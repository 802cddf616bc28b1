"""
Unit Tests for Configuration Module

These tests verify that the configuration system works correctly:
- Default values are applied when needed
- Derived paths and flags are computed from raw settings
- Validation catches invalid configurations

Run with:
    pytest tests/unit/test_config.py -v
"""

import pytest
from core.config import Settings, settings, validate_configuration


def make_settings(**overrides) -> Settings:
    """Settings built from defaults plus overrides, ignoring any local .env"""
    return Settings(_env_file=None, **overrides)


class TestConfigurationLoading:
    """Test that configuration loads with sane values"""

    def test_provider_urls_loaded(self):
        """Verify upstream URLs are set"""
        assert settings.coingecko_base_url.startswith("http")
        assert settings.cmc_base_url.startswith("http")
        assert settings.ecb_daily_url.endswith(".xml")

    def test_app_port_is_valid_integer(self):
        """Verify app port is a valid integer"""
        assert isinstance(settings.app_port, int)
        assert 1 <= settings.app_port <= 65535

    def test_default_ttls(self):
        """Verify the default cache TTLs"""
        config = make_settings()

        assert config.coins_list_ttl == 2 * 3600
        assert config.latest_prices_ttl == 5 * 60
        assert config.history_ttl == 24 * 3600
        assert config.history_max_ttl == 7 * 24 * 3600
        assert config.fx_rates_ttl == 24 * 3600

    def test_request_timeout_is_positive(self):
        assert settings.request_timeout > 0


class TestConfigurationProperties:
    """Test property methods and computed values"""

    def test_store_paths_derived_from_data_dir(self):
        """Verify persisted file paths live under data_dir"""
        config = make_settings(data_dir="/var/lib/prices")

        assert config.coin_meta_path == "/var/lib/prices/coins_meta.json"
        assert config.cmc_meta_path == "/var/lib/prices/cmc_coins_meta.json"
        assert config.cmc_map_path == "/var/lib/prices/cmc_mapping.json"

    def test_cmc_enabled_follows_api_key(self):
        assert make_settings(cmc_api_key="").cmc_enabled is False
        assert make_settings(cmc_api_key="secret").cmc_enabled is True

    def test_cors_origins_list(self):
        """Verify CORS origins are split and stripped"""
        config = make_settings(cors_origins="https://a.example, https://b.example ,")

        assert config.cors_origins_list == ["https://a.example", "https://b.example"]


class TestConfigurationValidation:
    """Test configuration validation function"""

    def test_validate_configuration_succeeds(self):
        """Verify validation passes with default configuration"""
        try:
            validate_configuration(make_settings())
        except ValueError as e:
            pytest.fail(f"Configuration validation failed: {e}")

    @pytest.mark.parametrize("overrides", [
        {"data_dir": "  "},
        {"app_port": 70000},
        {"upstream_max_attempts": 0},
        {"prewarm_workers": 0},
        {"prewarm_rate_interval": 0},
        {"history_ttl": 0},
        {"log_level": "VERBOSE"},
    ])
    def test_validation_rejects_invalid_values(self, overrides):
        """Verify each invalid setting raises ValueError"""
        with pytest.raises(ValueError):
            validate_configuration(make_settings(**overrides))

    def test_log_level_case_insensitive(self):
        validate_configuration(make_settings(log_level="debug"))

"""
Configuration Management Module

This module handles loading, validating, and providing access to application configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from .env file
- Validates all required settings
- Provides type-safe access to configuration values
- Derives persisted file paths from the data directory
- Handles optional settings (provider API keys) with sensible defaults

Usage:
    from core.config import settings

    # Access configuration values
    print(settings.coingecko_base_url)
    print(settings.cmc_map_path)  # data/cmc_mapping.json
"""

from pathlib import Path
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Application Settings

    This class defines all configuration parameters for the application.
    Values are automatically loaded from environment variables or .env file.

    Attributes:
        coingecko_base_url: Base URL for the CoinGecko public API
        coingecko_api_key: Optional CoinGecko demo API key
        cmc_base_url: Base URL for the CoinMarketCap pro API
        cmc_api_key: CoinMarketCap API key (CMC features are disabled without it)
        ecb_daily_url: ECB daily reference rates feed (XML)
        request_timeout: Timeout for a single upstream HTTP request in seconds
        upstream_max_attempts: Attempts per upstream request before giving up
        data_dir: Directory holding the persisted JSON records
        coins_list_ttl: TTL of the top coins snapshot
        latest_prices_ttl: TTL of the latest price listings
        history_ttl: TTL of canonical history series
        history_max_ttl: TTL of "max" range history series
        fx_rates_ttl: TTL of FX rates
        coin_meta_max_age: Max age of persisted coin metadata before refetch
        prewarm_workers: Worker count of the history prewarm pool
        prewarm_rate_interval: Seconds between two prewarm upstream requests
    """

    # ============================================
    # Upstream Providers
    # ============================================

    coingecko_base_url: str = Field(
        default="https://api.coingecko.com/api/v3",
        description="CoinGecko API base URL"
    )

    coingecko_api_key: str = Field(
        default="",
        description="CoinGecko demo API key (optional)"
    )

    cmc_base_url: str = Field(
        default="https://pro-api.coinmarketcap.com/v1",
        description="CoinMarketCap pro API base URL"
    )

    cmc_api_key: str = Field(
        default="",
        description="CoinMarketCap API key (required for CMC listings and mapping)"
    )

    ecb_daily_url: str = Field(
        default="https://www.ecb.europa.eu/stats/eurofxref/eurofxref-daily.xml",
        description="ECB daily FX reference rates feed"
    )

    request_timeout: int = Field(
        default=10,
        description="HTTP request timeout in seconds"
    )

    upstream_max_attempts: int = Field(
        default=3,
        description="Attempts per upstream request (timeouts, 5xx, rate limits are retried)"
    )

    coins_per_page: int = Field(
        default=250,
        description="Coins fetched per CoinGecko markets page"
    )

    cmc_listing_limit: int = Field(
        default=100,
        description="Number of top CMC coins used for listings and mapping"
    )

    # ============================================
    # Persistent Storage
    # ============================================

    data_dir: str = Field(
        default="data",
        description="Directory for persisted metadata and mapping files"
    )

    coin_meta_file: str = Field(default="coins_meta.json")
    cmc_meta_file: str = Field(default="cmc_coins_meta.json")
    cmc_map_file: str = Field(default="cmc_mapping.json")

    coin_meta_max_age: int = Field(
        default=7 * 24 * 3600,
        description="Max age (seconds) of persisted coin metadata"
    )

    # ============================================
    # Cache TTLs (seconds)
    # ============================================

    coins_list_ttl: int = Field(default=2 * 3600, description="Top coins snapshot TTL")
    latest_prices_ttl: int = Field(default=5 * 60, description="Latest prices TTL")
    history_ttl: int = Field(default=24 * 3600, description="History series TTL")
    history_max_ttl: int = Field(default=7 * 24 * 3600, description="'max' range history TTL")
    fx_rates_ttl: int = Field(default=24 * 3600, description="FX rates TTL")

    cache_sweep_interval: int = Field(
        default=10 * 60,
        description="Seconds between two expired-entry sweeps"
    )

    # ============================================
    # Background Scheduler
    # ============================================

    latest_prices_refresh_interval: int = Field(default=5 * 60)
    coins_refresh_interval: int = Field(default=2 * 3600)
    fx_refresh_interval: int = Field(default=24 * 3600)
    mapping_refresh_interval: int = Field(default=24 * 3600)

    prewarm_workers: int = Field(
        default=5,
        description="Concurrent workers in the history prewarm pool"
    )

    prewarm_rate_interval: float = Field(
        default=2.0,
        description="Seconds between prewarm upstream requests (~30 requests/min)"
    )

    prewarm_initial_delay: int = Field(
        default=30,
        description="Delay before the first prewarm sweep after startup"
    )

    prewarm_interval: int = Field(
        default=24 * 3600,
        description="Seconds between prewarm sweeps"
    )

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="FastAPI server host address"
    )

    app_port: int = Field(
        default=8080,
        description="FastAPI server port"
    )

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    # ============================================
    # Derived Properties
    # ============================================

    @property
    def coin_meta_path(self) -> str:
        """Path of the persisted CoinGecko coin metadata file."""
        return str(Path(self.data_dir) / self.coin_meta_file)

    @property
    def cmc_meta_path(self) -> str:
        """Path of the persisted CoinMarketCap coin metadata file."""
        return str(Path(self.data_dir) / self.cmc_meta_file)

    @property
    def cmc_map_path(self) -> str:
        """Path of the persisted CMC -> CoinGecko mapping file."""
        return str(Path(self.data_dir) / self.cmc_map_file)

    @property
    def cmc_enabled(self) -> bool:
        """
        Check if CoinMarketCap is configured.

        Returns:
            True if a CMC API key is set
        """
        return bool(self.cmc_api_key)

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Convert comma-separated CORS origins string to a list.

        Example:
            >>> settings.cors_origins_list
            ['*']
        """
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# ============================================
# Global Settings Instance
# ============================================

settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration(config: Settings = settings) -> None:
    """
    Validate critical configuration settings on application startup.

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    # Import logger here to avoid circular import
    from core.logging import logger

    if not config.data_dir.strip():
        raise ValueError("DATA_DIR must not be empty")

    if not (1 <= config.app_port <= 65535):
        raise ValueError(f"Invalid port number: {config.app_port}. Must be between 1 and 65535")

    if config.upstream_max_attempts < 1:
        raise ValueError("UPSTREAM_MAX_ATTEMPTS must be at least 1")

    if config.prewarm_workers < 1:
        raise ValueError("PREWARM_WORKERS must be at least 1")

    if config.prewarm_rate_interval <= 0:
        raise ValueError("PREWARM_RATE_INTERVAL must be positive")

    for name in ("coins_list_ttl", "latest_prices_ttl", "history_ttl", "history_max_ttl", "fx_rates_ttl"):
        if getattr(config, name) <= 0:
            raise ValueError(f"{name.upper()} must be positive")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    logger.info("Configuration validated successfully")
    logger.info(f"CoinGecko API: {config.coingecko_base_url}")
    logger.info(f"CoinMarketCap: {'enabled' if config.cmc_enabled else 'disabled (no CMC_API_KEY)'}")
    logger.info(f"Data directory: {config.data_dir}")
    logger.info(f"Server: {config.app_host}:{config.app_port}")
    logger.info(f"Log level: {config.log_level.upper()}")

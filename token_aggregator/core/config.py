"""
Configuration Management Module

This module handles all service configuration loading from environment variables
and the .env file. It uses pydantic-settings for validation and type safety.
"""

from typing import Dict, List, Optional
from pathlib import Path
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from token_aggregator.core.exceptions import ConfigurationError

ENV_FILE = Path(__file__).resolve().parents[2] / ".env"

SUPPORTED_PROVIDERS = ("dexscreener", "geckoterminal")


class RateLimitConfig(BaseModel):
    """Sliding-window rate limit for one provider"""

    max_requests: int = Field(..., gt=0)
    window_seconds: float = Field(..., gt=0)


class Config(BaseSettings):
    """
    Main configuration class for the aggregation service.

    Loads configuration from environment variables and .env file.

    Usage:
        config = Config()
        ttl = config.cache_ttl
        limit = config.get_rate_limit("dexscreener")
    """

    # Environment
    environment: str = Field(default="dev", description="dev/test/prod")
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default="logs/token_aggregator.log")
    timezone: str = Field(default="UTC")

    # API Server
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3000)

    # Cache
    redis_url: str = Field(default="redis://localhost:6379/0")
    cache_ttl: int = Field(default=30, gt=0, description="Snapshot TTL in seconds")
    identity_cache_ttl: int = Field(default=60, gt=0, description="Per-token TTL in seconds")
    redis_connect_attempts: int = Field(default=3, ge=1)
    redis_reconnect_max_delay: float = Field(default=2.0, gt=0)
    redis_reconnect_interval: float = Field(
        default=30.0,
        description="Seconds between durable-tier probes while degraded"
    )

    # Providers
    enabled_providers: str = Field(
        default="dexscreener,geckoterminal",
        description="Comma separated provider names"
    )
    chain_id: str = Field(default="solana")
    dexscreener_base_url: str = Field(default="https://api.dexscreener.com")
    dexscreener_seed_queries: str = Field(default="bonk,wif,popcat,myro,samo")
    dexscreener_rate_limit: int = Field(default=300)
    dexscreener_rate_window: float = Field(default=60.0)
    geckoterminal_base_url: str = Field(default="https://api.geckoterminal.com/api/v2")
    geckoterminal_rate_limit: int = Field(default=30)
    geckoterminal_rate_window: float = Field(default=60.0)
    jupiter_base_url: str = Field(default="https://api.jup.ag/price/v2")
    jupiter_rate_limit: int = Field(default=600)
    jupiter_rate_window: float = Field(default=60.0)
    request_timeout: float = Field(default=10.0, gt=0)

    # Retry
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_backoff_factor: float = Field(default=2.0, ge=1)
    retry_max_delay: float = Field(default=10.0, ge=0)

    # Quote asset conversion
    quote_mint: str = Field(default="So11111111111111111111111111111111111111112")
    quote_usd_fallback: float = Field(
        default=100.0,
        gt=0,
        description="SOL/USD used when the price oracle is unreachable"
    )
    quote_price_ttl: int = Field(default=60, gt=0)

    # Query
    default_page_limit: int = Field(default=20, ge=1)
    max_page_limit: int = Field(default=100, ge=1)

    # Change detection
    refresh_interval: float = Field(default=5.0, gt=0, description="Seconds between cycles")
    price_change_threshold: float = Field(default=1.0, ge=0, description="Percent")
    volume_spike_floor: float = Field(default=1000.0, ge=0)
    volume_spike_threshold: float = Field(default=50.0, description="Percent, 1h change")
    initial_batch_size: int = Field(default=30, ge=1)

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize log level names"""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    def get_enabled_providers(self) -> List[str]:
        """
        Get the list of enabled provider names.

        Raises:
            ConfigurationError: If an unknown provider is configured
        """
        names = [p.strip().lower() for p in self.enabled_providers.split(",") if p.strip()]
        unknown = [name for name in names if name not in SUPPORTED_PROVIDERS]
        if unknown:
            raise ConfigurationError(
                "Unsupported provider configured",
                details={"providers": ",".join(unknown)}
            )
        return names

    def get_seed_queries(self) -> List[str]:
        """DexScreener search terms used to build the trending list"""
        return [q.strip() for q in self.dexscreener_seed_queries.split(",") if q.strip()]

    def get_rate_limit(self, provider: str) -> RateLimitConfig:
        """
        Get rate limit configuration by provider name.

        Raises:
            ConfigurationError: If the provider is unknown
        """
        limits: Dict[str, RateLimitConfig] = {
            "dexscreener": RateLimitConfig(
                max_requests=self.dexscreener_rate_limit,
                window_seconds=self.dexscreener_rate_window,
            ),
            "geckoterminal": RateLimitConfig(
                max_requests=self.geckoterminal_rate_limit,
                window_seconds=self.geckoterminal_rate_window,
            ),
            "jupiter": RateLimitConfig(
                max_requests=self.jupiter_rate_limit,
                window_seconds=self.jupiter_rate_window,
            ),
        }
        try:
            return limits[provider.lower()]
        except KeyError:
            raise ConfigurationError(
                "No rate limit configured",
                details={"provider": provider}
            ) from None

    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.environment == "prod"

    def validate_config(self) -> List[str]:
        """
        Validate configuration and return list of warnings.

        Returns:
            List of warning messages
        """
        warnings = []

        if not self.enabled_providers.strip():
            warnings.append("No providers enabled, snapshots will always be empty")

        if self.default_page_limit > self.max_page_limit:
            warnings.append(
                f"default_page_limit ({self.default_page_limit}) exceeds "
                f"max_page_limit ({self.max_page_limit}) and will be clamped"
            )

        if self.retry_max_delay < self.retry_base_delay:
            warnings.append("retry_max_delay is smaller than retry_base_delay")

        if self.is_production() and self.redis_url.startswith("redis://localhost"):
            warnings.append("Production environment is using a local Redis URL")

        return warnings


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get global configuration instance (singleton pattern).

    Returns:
        Config object
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config() -> Config:
    """
    Reload configuration from environment.

    Returns:
        New Config object
    """
    global _config
    _config = Config()
    return _config

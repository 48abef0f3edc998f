"""Configuration settings for the data refresh service."""
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Data source
    data_source_url: str = "https://www.pais.co.il/lotto/archive.aspx"
    local_data_path: Optional[str] = None  # tried before the remote source when set

    # Retry settings
    max_retries: int = 3
    retry_delay: float = 1.0  # seconds, before kind multiplier and exponent
    max_backoff: float = 30.0
    request_timeout: float = 15.0

    # Refresh behaviour
    validate_data_quality: bool = True
    fallback_to_cached_data: bool = True
    allow_synthetic_fallback: bool = False

    # Cache settings
    cache_dir: str = "./data/cache"
    cache_timeout_hours: float = 24.0  # freshness window
    cache_expiry_hours: float = 168.0  # hard eviction age on load
    max_cache_size: int = 1000
    compression_enabled: bool = True
    memory_optimization: bool = True
    storage_quota_bytes: int = 4 * 1024 * 1024

    # Parser settings
    large_payload_threshold: int = 1024 * 1024
    parse_chunk_size: int = 10000

    # Output settings
    output_format: Literal["json", "csv", "both"] = "both"
    output_dir: str = "./data"

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )


# Global settings instance
settings = Settings()

"""
Engine configuration using Pydantic settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings."""

    # App
    app_name: str = "Recurwise"

    # Database
    database_url: str = "sqlite:///./data/recurwise.sqlite"

    # Logging
    log_level: str = "INFO"

    # Recurring detection
    min_series_confidence: float = 0.6
    override_confidence_bonus: float = 0.3
    day_consistency_pin_threshold: float = 0.7
    max_pinned_day: int = 28  # Avoids short-month overflow
    day_cluster_tolerance: int = 3
    min_merchant_key_length: int = 3

    # Missed payments
    missed_payment_window_days: int = 30
    missed_medium_after_days: int = 7
    missed_high_after_days: int = 14
    overdue_after_days: int = 7

    # Classification
    review_confidence_threshold: float = 0.70
    aggregator_primary_discount: float = 0.9
    reclassify_chunk_size: int = 200

    model_config = SettingsConfigDict(
        env_prefix="RECURWISE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )


# Global settings instance
settings = Settings()

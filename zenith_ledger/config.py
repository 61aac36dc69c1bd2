"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ZenithConfig(BaseSettings):
    """Zenith ledger core configuration"""

    model_config = SettingsConfigDict(
        env_prefix="ZENITH_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Storage configuration
    database_url: str = "sqlite:///zenith_ledger.db"  # or memory://

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    # Bookkeeping rules
    balance_tolerance: Decimal = Decimal("0.001")
    opening_balances_account_id: str = "equity-opening"
    enforce_placeholder_postings: bool = True

    # Bootstrap
    seed_default_accounts: bool = True


# Global configuration instance
config = ZenithConfig()


def get_config() -> ZenithConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> ZenithConfig:
    """Reload configuration from environment"""
    global config
    config = ZenithConfig()
    return config

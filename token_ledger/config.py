"""
Configuration Management Module

Environment-driven configuration using pydantic-settings. Every field can be
overridden with a TOKEN_LEDGER_-prefixed environment variable or a .env file.
"""

from pydantic_settings import BaseSettings
from typing import List


class LedgerConfig(BaseSettings):
    """Token ledger configuration"""

    # Storage configuration
    storage_backend: str = "memory"  # memory or sqlite
    database_path: str = "token_ledger.db"

    # Ledger configuration
    amount_bits: int = 256
    lock_stripes: int = 64

    # Token metadata
    token_name: str = "token"
    token_symbol: str = "TKN"
    token_decimals: int = 18

    # Mint authorization
    token_owner: str = ""
    minters: List[str] = []  # JSON list in the environment

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Feature flags
    enable_audit_logging: bool = True
    enable_events: bool = True

    class Config:
        env_prefix = "TOKEN_LEDGER_"
        env_file = ".env"
        case_sensitive = False


config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config

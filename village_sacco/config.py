"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class SaccoConfig(BaseSettings):
    """Village SACCO configuration"""

    # Database configuration
    database_url: str = "sqlite:///village_sacco.db"  # "memory://" for in-process storage

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration (tokens are issued by the auth service)
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Lending rules
    default_loan_interest_rate: str = "0.15"  # 15% annual

    # Savings rules
    regular_savings_rate: str = "0.05"
    fixed_deposit_rate: str = "0.08"
    interest_posting_threshold: str = "0.01"  # Smaller accruals are not posted
    days_in_year: int = 365

    # External ledger relay (smart-contract mirror). Empty = disabled
    chain_relay_url: str = ""
    chain_relay_timeout: float = 2.0
    chain_relay_api_key: str = ""

    # Member lookup. Empty = the members table in the configured database
    user_directory_url: str = ""
    user_directory_timeout: float = 2.0
    user_directory_api_key: str = ""

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "SACCO_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = SaccoConfig()


def get_config() -> SaccoConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> SaccoConfig:
    """Reload configuration from environment"""
    global config
    config = SaccoConfig()
    return config

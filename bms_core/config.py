"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import Optional


class BmsConfig(BaseSettings):
    """Funds-movement back office configuration"""

    # Database configuration
    database_url: str = "sqlite:///bms.db"  # Default SQLite
    database_echo: bool = False

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    step_up_threshold: Decimal = Decimal("25000.00")  # Transfers above this need an OTP
    default_per_transaction_limit: Decimal = Decimal("50000.00")
    default_daily_transaction_limit: Decimal = Decimal("100000.00")
    default_minimum_balance: Decimal = Decimal("0.00")

    # One-time code configuration
    otp_length: int = 6
    otp_expiry_minutes: int = 5
    otp_max_attempts: int = 3
    otp_webhook_url: str = ""  # Empty = log delivery only
    otp_webhook_timeout: float = 5.0

    # Housekeeping configuration
    enable_housekeeping: bool = True
    otp_purge_interval_minutes: int = 15
    pending_sweep_interval_minutes: int = 5
    pending_transfer_ttl_minutes: Optional[int] = None  # Defaults to OTP expiry

    # Event delivery
    event_queue_size: int = 10000

    # Directory bootstrap (first administrator, created at startup if missing)
    bootstrap_admin_username: str = ""
    bootstrap_admin_email: str = ""

    class Config:
        env_prefix = "BMS_"
        env_file = ".env"
        case_sensitive = False

    @property
    def pending_transfer_ttl(self) -> int:
        """Minutes a PENDING transfer may wait for its OTP before it is expired"""
        if self.pending_transfer_ttl_minutes is not None:
            return self.pending_transfer_ttl_minutes
        return self.otp_expiry_minutes


# Global configuration instance
config = BmsConfig()


def get_config() -> BmsConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BmsConfig:
    """Reload configuration from environment"""
    global config
    config = BmsConfig()
    return config

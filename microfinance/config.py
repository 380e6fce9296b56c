"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class MicrofinanceConfig(BaseSettings):
    """Loan engine configuration"""

    # Storage configuration
    use_sqlite: bool = True
    database_path: str = "microfinance.db"

    # Calendar configuration
    business_timezone: str = "UTC"  # Calendar days for due dates and the notification fence

    # Business rules configuration
    currency: str = "PHP"
    interest_basis: str = "annual"  # annual (rate pro-rated by months/12) or flat
    overpayment_tolerance: str = "0.01"
    due_soon_days: int = 7

    # Sweep configuration
    sweep_interval_seconds: int = 3600

    # SMS gateway configuration
    sms_enabled: bool = False
    sms_mode: str = "cloud"  # local or cloud
    sms_local_server_url: str = ""
    sms_cloud_server_url: str = "https://api.sms-gate.app/3rdparty/v1"
    sms_username: str = ""
    sms_password: str = ""
    sms_timeout: float = 10.0
    company_name: str = "Glan Credible and Capital Inc."

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    class Config:
        env_prefix = "MICROFINANCE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = MicrofinanceConfig()


def get_config() -> MicrofinanceConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> MicrofinanceConfig:
    """Reload configuration from environment"""
    global config
    config = MicrofinanceConfig()
    return config

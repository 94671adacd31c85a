"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class SimulatorConfig(BaseSettings):
    """Bank time simulator configuration"""

    model_config = SettingsConfigDict(
        env_prefix="BANKSIM_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Persistence
    database_path: str = "bank_simulator.db"  # ":memory:" for throwaway runs

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None

    # External transfer gateway
    gateway_base_url: str = "http://localhost:3020"
    gateway_timeout: float = 10.0
    gateway_enabled: bool = False  # False = offline simulated gateway
    gateway_success_rate: float = 0.75

    # Fees and rates (strings so env values stay exact)
    sepa_fee: str = "1.50"
    swift_fee: str = "25.00"
    bill_payment_fee: str = "0.50"
    default_interest_rate: str = "0.01"
    default_maintenance_fee: str = "25.00"
    interest_rate_precision: int = 10

    # Scheduler and simulation rules
    max_execution_day: int = 28
    settle_on_target_date: bool = True

    def decimal(self, name: str) -> Decimal:
        """Read a money/rate setting as Decimal"""
        return Decimal(getattr(self, name))


# Global configuration instance
config = SimulatorConfig()


def get_config() -> SimulatorConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> SimulatorConfig:
    """Reload configuration from environment"""
    global config
    config = SimulatorConfig()
    return config

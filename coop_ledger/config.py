"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based
configuration, plus the cooperative's persisted business settings.
"""

from dataclasses import dataclass, asdict, fields
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings

from .dates import parse_datetime
from .money import to_decimal


class CoopSettings(BaseSettings):
    """Process-level configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "coop_ledger.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business defaults, used to seed a brand new cooperative
    monthly_share_amount: str = "25.00"
    monthly_expense_amount: str = "5.00"
    penalty_amount: str = "5.00"
    penalty_day_threshold: int = 3
    monthly_interest_rate: str = "1"  # Percent per month
    transfer_fee: str = "0.41"
    retention_rate: str = "1"  # Percent of the loan amount
    currency_symbol: str = "$"
    currency_code: str = "USD"
    opening_balance: str = "0.00"

    class Config:
        env_prefix = "COOP_"
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = CoopSettings()


def get_settings() -> CoopSettings:
    """Get global settings instance"""
    return settings


def reload_settings() -> CoopSettings:
    """Reload settings from environment"""
    global settings
    settings = CoopSettings()
    return settings


_DECIMAL_FIELDS = (
    'monthly_share_amount', 'monthly_expense_amount', 'penalty_amount',
    'monthly_interest_rate', 'transfer_fee', 'retention_rate', 'opening_balance'
)


@dataclass
class CooperativeConfig:
    """Business settings stored in the `config` collection"""
    monthly_share_amount: Decimal = Decimal('25.00')
    monthly_expense_amount: Decimal = Decimal('5.00')
    penalty_amount: Decimal = Decimal('5.00')
    penalty_day_threshold: int = 3
    monthly_interest_rate: Decimal = Decimal('1')
    transfer_fee: Decimal = Decimal('0.41')
    retention_rate: Decimal = Decimal('1')
    currency_symbol: str = "$"
    currency_code: str = "USD"
    opening_balance: Decimal = Decimal('0.00')
    period_start: Optional[datetime] = None  # Set by the annual closing

    def __post_init__(self):
        for name in _DECIMAL_FIELDS:
            setattr(self, name, to_decimal(getattr(self, name)))
        self.penalty_day_threshold = int(self.penalty_day_threshold)
        if isinstance(self.period_start, str):
            self.period_start = parse_datetime(self.period_start)

    @classmethod
    def from_settings(cls, source: Optional[CoopSettings] = None) -> 'CooperativeConfig':
        source = source or get_settings()
        return cls(**{f.name: getattr(source, f.name) for f in fields(cls) if hasattr(source, f.name)})

    def updated(self, **changes: Any) -> 'CooperativeConfig':
        """Copy with some fields replaced; unknown keys are rejected"""
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        data = asdict(self)
        data.update(changes)
        return CooperativeConfig(**data)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        for name in _DECIMAL_FIELDS:
            result[name] = str(result[name])
        result['period_start'] = self.period_start.isoformat() if self.period_start else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CooperativeConfig':
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

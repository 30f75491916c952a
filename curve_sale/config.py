"""
Configuration management for the sale engine.
"""
import json
import logging
import os
import time
from dataclasses import dataclass, asdict, field

from curve_sale.errors import InvalidParameter

# Smallest-unit scale for both the token and the native currency (18 decimals)
TOKEN_UNIT = 10 ** 18
WAD = TOKEN_UNIT

CURVE_LINEAR = "linear"
CURVE_LOGARITHMIC = "logarithmic"
CURVES = (CURVE_LINEAR, CURVE_LOGARITHMIC)

# Hard ceiling for the admin-tunable price impact limit (percent)
MAX_PRICE_IMPACT_LIMIT = 20

# Bounds for the admin-tunable curve factor (percent, 100 = neutral)
MIN_CURVE_FACTOR = 50
MAX_CURVE_FACTOR = 200

BPS = 10_000


@dataclass
class SaleConfig:
    """Sale parameters. Fixed at construction except where noted."""
    total_supply_cap: int = 1_000_000_000 * TOKEN_UNIT
    initial_token_reserve: int = 15_500_000_000 * TOKEN_UNIT
    initial_currency_reserve: int = 100 * TOKEN_UNIT
    migration_threshold: int = 800_000_000 * TOKEN_UNIT
    migration_fee: int = TOKEN_UNIT // 10
    migration_deadline: int = 300  # seconds granted to the venue call
    min_trade: int = TOKEN_UNIT // 1000
    max_trade: int = 10 * TOKEN_UNIT
    price_impact_limit: int = 10  # percent, mutable via update_ai_parameters
    curve_factor: int = 100  # percent, mutable via update_ai_parameters
    rate_limit_window: int = 3600
    rate_limit_quota: int = 5
    max_active_users: int = 1000
    curve: str = CURVE_LINEAR
    reserve_buffer_bps: int = 500
    dynamic_reserve_buffer: bool = True

    @classmethod
    def for_curve(cls, curve: str, **overrides) -> 'SaleConfig':
        """
        Defaults matching a curve family.

        The linear curve keeps a dynamic 5% buffer of the pre-trade reserve,
        the logarithmic curve a fixed 10% of the initial reserve.
        """
        if curve == CURVE_LOGARITHMIC:
            defaults = {'reserve_buffer_bps': 1000, 'dynamic_reserve_buffer': False}
        else:
            defaults = {'reserve_buffer_bps': 500, 'dynamic_reserve_buffer': True}
        defaults.update(overrides)
        return cls(curve=curve, **defaults)

    def validate(self):
        """Check construction invariants."""
        if self.curve not in CURVES:
            raise InvalidParameter(f"Unknown curve: {self.curve}")
        if self.total_supply_cap <= 0:
            raise InvalidParameter("Total supply cap must be positive")
        if self.initial_token_reserve <= 0 or self.initial_currency_reserve <= 0:
            raise InvalidParameter("Initial reserves must be positive")
        if not 0 < self.migration_threshold < self.total_supply_cap:
            raise InvalidParameter("Migration threshold must be below the total supply cap")
        if self.migration_fee < 0:
            raise InvalidParameter("Migration fee cannot be negative")
        if not 0 < self.min_trade <= self.max_trade:
            raise InvalidParameter("Trade bounds must satisfy 0 < min_trade <= max_trade")
        if not 0 < self.price_impact_limit <= MAX_PRICE_IMPACT_LIMIT:
            raise InvalidParameter(
                f"Price impact limit must be in (0, {MAX_PRICE_IMPACT_LIMIT}]"
            )
        if not MIN_CURVE_FACTOR <= self.curve_factor <= MAX_CURVE_FACTOR:
            raise InvalidParameter(
                f"Curve factor must be in [{MIN_CURVE_FACTOR}, {MAX_CURVE_FACTOR}]"
            )
        if self.rate_limit_window <= 0 or self.rate_limit_quota <= 0:
            raise InvalidParameter("Rate limit window and quota must be positive")
        if self.max_active_users <= 0:
            raise InvalidParameter("Active user cap must be positive")
        if not 0 <= self.reserve_buffer_bps < BPS:
            raise InvalidParameter("Reserve buffer must be below 100%")
        if self.migration_deadline <= 0:
            raise InvalidParameter("Migration deadline must be positive")


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s %(name)s %(levelname)s %(message)s"


@dataclass
class MonitoringConfig:
    """Monitoring configuration."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9090


@dataclass
class Config:
    """Main configuration."""
    sale: SaleConfig
    logging: LoggingConfig
    monitoring: MonitoringConfig

    @classmethod
    def default(cls) -> 'Config':
        """Create default configuration."""
        return cls(
            sale=SaleConfig(),
            logging=LoggingConfig(),
            monitoring=MonitoringConfig()
        )

    @classmethod
    def from_file(cls, path: str) -> 'Config':
        """Load configuration from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)

        config = cls(
            sale=SaleConfig(**data.get('sale', {})),
            logging=LoggingConfig(**data.get('logging', {})),
            monitoring=MonitoringConfig(**data.get('monitoring', {}))
        )
        config.sale.validate()
        return config

    def to_file(self, path: str):
        """Save configuration to JSON file."""
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'sale': asdict(self.sale),
            'logging': asdict(self.logging),
            'monitoring': asdict(self.monitoring)
        }


def configure_logging(config: LoggingConfig = None):
    """Apply a logging configuration to the root logger."""
    config = config or LoggingConfig()
    logging.basicConfig(level=getattr(logging, config.level.upper(), logging.INFO),
                        format=config.format)


# ==============================================================================
# AUDIT LOG
# ==============================================================================

@dataclass
class ConfigChange:
    """One mutation of a runtime-tunable parameter."""
    parameter: str
    old_value: int
    new_value: int
    changed_by: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return asdict(self)

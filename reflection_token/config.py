"""
Configuration management for the reflection token.
"""
import json
import os
from dataclasses import dataclass, asdict
from typing import Optional


@dataclass
class TokenConfig:
    """Token identity and supply."""
    name: str = "TODAMOON"
    symbol: str = "TDM"
    decimals: int = 6
    total_supply: int = 1_000_000_000  # Whole tokens, scaled by decimals at genesis

    @property
    def total_supply_units(self) -> int:
        return self.total_supply * 10 ** self.decimals


@dataclass
class FeeConfig:
    """Fee percentages and the transaction cap."""
    tax_fee_percent: int = 5
    liquidity_fee_percent: int = 5
    max_tx_percent: int = 100


@dataclass
class LiquidityConfig:
    """Swap-and-liquify controller configuration."""
    swap_and_liquify_enabled: bool = True
    min_tokens_before_swap_bps: int = 5  # 0.05% of supply
    deadline_seconds: int = 300
    raise_conversion_failures: bool = True


@dataclass
class MonitoringConfig:
    """Monitoring configuration."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9090
    max_events: Optional[int] = None  # Event log retention, unbounded if None


@dataclass
class Config:
    """Main configuration."""
    token: TokenConfig
    fees: FeeConfig
    liquidity: LiquidityConfig
    monitoring: MonitoringConfig

    @classmethod
    def default(cls) -> 'Config':
        """Create default configuration."""
        return cls(
            token=TokenConfig(),
            fees=FeeConfig(),
            liquidity=LiquidityConfig(),
            monitoring=MonitoringConfig()
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        return cls(
            token=TokenConfig(**data.get('token', {})),
            fees=FeeConfig(**data.get('fees', {})),
            liquidity=LiquidityConfig(**data.get('liquidity', {})),
            monitoring=MonitoringConfig(**data.get('monitoring', {}))
        )

    @classmethod
    def from_file(cls, path: str) -> 'Config':
        """Load configuration from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    def to_file(self, path: str):
        """Save configuration to JSON file."""
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'token': asdict(self.token),
            'fees': asdict(self.fees),
            'liquidity': asdict(self.liquidity),
            'monitoring': asdict(self.monitoring)
        }

"""Application settings and configuration management."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


# Chains the engine knows how to talk to. Keys are the identifiers stored on
# deployment rows.
KNOWN_CHAINS = (
    "ethereum",
    "sepolia",
    "bsc",
    "bsc-testnet",
    "base",
    "base-sepolia",
)


class Settings(BaseSettings):
    """Main engine settings with environment variable support."""

    # App basics
    app_name: str = "Cross-Chain Liquidity Sync"
    debug: bool = False
    version: str = "1.0.0"
    environment: str = "development"  # development, staging, production

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/crosschain.db"
    database_echo: bool = False

    # Logging
    log_level: str = "INFO"
    log_retention_days: int = 90
    logs_dir: Path = Field(default_factory=lambda: Path("data/logs"))

    # RPC URLs
    ethereum_rpc_url: Optional[str] = "https://eth.llamarpc.com"
    sepolia_rpc_url: Optional[str] = "https://ethereum-sepolia-rpc.publicnode.com"
    bsc_rpc_url: Optional[str] = "https://bsc-dataseed.binance.org"
    bsc_testnet_rpc_url: Optional[str] = "https://bsc-testnet.publicnode.com"
    base_rpc_url: Optional[str] = "https://mainnet.base.org"
    base_sepolia_rpc_url: Optional[str] = "https://base-sepolia-rpc.publicnode.com"

    # Liquidity bridge contracts (unset = store-only fallback for that chain)
    ethereum_liquidity_bridge_address: Optional[str] = None
    sepolia_liquidity_bridge_address: Optional[str] = None
    bsc_liquidity_bridge_address: Optional[str] = None
    bsc_testnet_liquidity_bridge_address: Optional[str] = None
    base_liquidity_bridge_address: Optional[str] = None
    base_sepolia_liquidity_bridge_address: Optional[str] = None

    # Signer credentials. Per-chain keys win over the shared bridge key.
    ethereum_private_key: Optional[str] = None
    sepolia_private_key: Optional[str] = None
    bsc_private_key: Optional[str] = None
    bsc_testnet_private_key: Optional[str] = None
    base_private_key: Optional[str] = None
    base_sepolia_private_key: Optional[str] = None
    bridge_private_key: Optional[str] = None

    # Reserve policy
    min_reserve_ratio: float = 0.3       # min reserve = 30% of ideal
    critical_reserve_ratio: float = 0.5  # critical below 50% of min
    surplus_reserve_ratio: float = 1.5   # surplus above 150% of ideal
    optimistic_reserve_updates: bool = True

    # Price consistency
    max_price_variance: float = 0.005  # 0.5% coefficient of variation

    # Graduation
    graduation_min_liquidity: float = 0.1  # native units

    # Chain calls
    chain_call_timeout_seconds: float = 30.0
    receipt_timeout_seconds: float = 180.0
    receipt_poll_interval_seconds: float = 2.0
    gas_buffer_multiplier: float = 1.2

    # Retry / backoff for rebalance and graduation attempts
    max_rebalance_attempts: int = 5
    max_graduation_attempts: int = 5
    retry_initial_delay_seconds: float = 30.0
    retry_max_delay_seconds: float = 1800.0
    stale_request_timeout_minutes: int = 60

    # Job intervals (seconds)
    reserve_monitor_interval_seconds: int = 30
    graduation_monitor_interval_seconds: int = 30
    price_monitor_interval_seconds: int = 300
    reconcile_interval_seconds: int = 300

    def get_rpc_url(self, chain: str) -> Optional[str]:
        """
        Get RPC URL for a specific chain.

        Args:
            chain: Chain identifier (ethereum, sepolia, bsc, ...)

        Returns:
            RPC URL or None if the chain is not configured
        """
        return getattr(self, f"{self._field_prefix(chain)}_rpc_url", None)

    def get_bridge_address(self, chain: str) -> Optional[str]:
        """Get the liquidity bridge contract address for a chain."""
        return getattr(self, f"{self._field_prefix(chain)}_liquidity_bridge_address", None)

    def get_private_key(self, chain: str) -> Optional[str]:
        """Get the signer key for a chain, falling back to the shared bridge key."""
        key = getattr(self, f"{self._field_prefix(chain)}_private_key", None)
        return key or self.bridge_private_key

    @staticmethod
    def _field_prefix(chain: str) -> str:
        return chain.lower().replace("-", "_")

    @field_validator(
        "min_reserve_ratio",
        "critical_reserve_ratio",
        "surplus_reserve_ratio",
        "max_price_variance",
        "graduation_min_liquidity",
        "gas_buffer_multiplier",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Ensure policy ratios are non-negative."""
        if v < 0:
            raise ValueError("Policy ratios must be non-negative")
        return v

    @field_validator("max_rebalance_attempts", "max_graduation_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        """Ensure attempt limits allow at least one try."""
        if v < 1:
            raise ValueError("Attempt limits must be at least 1")
        return v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is a valid value."""
        if v not in ["development", "staging", "production"]:
            raise ValueError("Environment must be one of: development, staging, production")
        return v

    def configured_chains(self) -> List[str]:
        """Known chains that have an RPC URL set."""
        return [chain for chain in KNOWN_CHAINS if self.get_rpc_url(chain)]

    def bridge_summary(self) -> Dict[str, bool]:
        """Which chains have both a bridge contract and a signer configured."""
        return {
            chain: bool(self.get_bridge_address(chain) and self.get_private_key(chain))
            for chain in KNOWN_CHAINS
        }

    model_config = {
        "extra": "allow",  # Allow extra fields from .env
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "validate_assignment": True,
        "str_strip_whitespace": True,
    }


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """
    Get the global settings instance.

    Returns:
        Settings: The global settings instance
    """
    return settings


def reload_settings() -> Settings:
    """
    Reload settings from environment.

    Returns:
        Settings: Reloaded settings instance
    """
    global settings
    settings = Settings()
    return settings


__all__ = [
    "KNOWN_CHAINS",
    "Settings",
    "settings",
    "get_settings",
    "reload_settings",
]

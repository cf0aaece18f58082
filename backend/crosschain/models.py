"""Result models returned by the synchronization services.
Kept in one module so services can share them without circular imports.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ReserveStatus(str, Enum):
    """Reserve health classification."""
    SUFFICIENT = "sufficient"
    LOW = "low"
    CRITICAL = "critical"


class GraduationState(str, Enum):
    """Graduation state of a (token, chain) deployment."""
    NOT_ELIGIBLE = "not_eligible"
    BELOW_THRESHOLD = "below_threshold"
    READY = "ready"
    GRADUATED = "graduated"
    FAILED = "failed"


class ReserveSnapshot(BaseModel):
    """Derived reserve view of one chain."""

    chain: str = Field(..., description="Chain identifier")
    reserve: Decimal = Field(..., description="Current stored reserve")
    local_supply: Decimal = Field(..., description="Tokens sold on this chain")
    ideal_reserve: Decimal = Field(..., description="Supply-proportional share of total reserve")
    min_reserve: Decimal = Field(..., description="Lower bound before the chain is low")
    status: ReserveStatus = Field(..., description="Reserve classification")


class ReserveCheck(BaseModel):
    """Answer to 'can this chain pay out `required_amount`'."""

    sufficient: bool = Field(..., description="Reserve covers the required amount")
    current_reserve: Decimal = Field(..., description="Reserve the answer was based on")
    required_amount: Decimal = Field(..., description="Amount asked about")
    source: str = Field(..., description="'bridge' when read on-chain, 'store' otherwise")


class ChainReserveStatus(BaseModel):
    """Reserve snapshot of one chain plus its sell capability."""

    snapshot: ReserveSnapshot
    can_sell: bool = Field(..., description="Reserve is at least the critical floor")


class PriceSyncResult(BaseModel):
    """Synchronized price and the market caps written for every chain."""

    token_id: str
    price: Decimal
    global_supply: Decimal
    market_caps: Dict[str, Decimal] = Field(default_factory=dict)


class PriceDeviation(BaseModel):
    """Quoted price of one chain relative to the cross-chain mean."""

    chain: str
    price: Decimal
    deviation_percent: Decimal = Field(..., description="Absolute deviation from the mean in percent")
    source: str = Field(..., description="'curve' when quoted on-chain, 'formula' otherwise")


class PriceConsistencyReport(BaseModel):
    """Read-only price consistency diagnostic for one token."""

    token_id: str
    mean_price: Decimal
    coefficient_of_variation: Decimal
    out_of_sync: bool
    deviations: List[PriceDeviation] = Field(default_factory=list)
    checked_at: datetime


class BridgeResult(BaseModel):
    """Outcome of a bridge orchestration call. Never raised, always returned."""

    success: bool
    message: str = ""
    request_id: Optional[str] = None
    tx_hash: Optional[str] = None
    status: Optional[str] = None
    transfer_mode: Optional[str] = None


class RebalanceResult(BaseModel):
    """Outcome of one rebalance pass for a token."""

    token_id: str
    rebalanced: bool
    source_chain: Optional[str] = None
    target_chain: Optional[str] = None
    amount: Optional[Decimal] = None
    bridge: Optional[BridgeResult] = None
    message: str = ""
    deferred_chains: List[str] = Field(default_factory=list)
    exhausted_chains: List[str] = Field(default_factory=list)


class GraduationStatus(BaseModel):
    """Read-only graduation progress of one deployment."""

    token_id: str
    chain: str
    state: GraduationState
    is_graduated: bool
    market_cap: Decimal
    threshold: Decimal
    progress_percent: Decimal
    needs_graduation: bool
    dex_pool_address: Optional[str] = None
    graduation_attempts: int = 0


class GraduationResult(BaseModel):
    """Outcome of a graduation attempt on one chain."""

    token_id: str
    chain: str
    graduated: bool
    already_graduated: bool = False
    pool_address: Optional[str] = None
    tx_hash: Optional[str] = None
    dex_name: Optional[str] = None
    error: Optional[str] = None


class TokenGraduationSummary(BaseModel):
    """Per-chain graduation outcomes for one token pass."""

    token_id: str
    cross_chain: bool
    results: List[GraduationResult] = Field(default_factory=list)

    @property
    def graduated_chains(self) -> List[str]:
        return [r.chain for r in self.results if r.graduated and not r.already_graduated]

    @property
    def failed_chains(self) -> List[str]:
        return [r.chain for r in self.results if not r.graduated]


__all__ = [
    "BridgeResult",
    "ChainReserveStatus",
    "GraduationResult",
    "GraduationState",
    "GraduationStatus",
    "PriceConsistencyReport",
    "PriceDeviation",
    "PriceSyncResult",
    "RebalanceResult",
    "ReserveCheck",
    "ReserveSnapshot",
    "ReserveStatus",
    "TokenGraduationSummary",
]

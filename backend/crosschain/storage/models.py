"""
Database models for tokens, per-chain deployments and liquidity requests.

Supply, reserve and market-cap figures are stored as decimal strings so
no precision is lost between chains with different native decimals.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index,
    Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentStatus(str, Enum):
    """Lifecycle status of a (token, chain) deployment."""
    PENDING = "pending"
    DEPLOYED = "deployed"


class LiquidityRequestStatus(str, Enum):
    """Liquidity request states; COMPLETED and FAILED are terminal."""
    PENDING = "pending"
    BRIDGING = "bridging"
    COMPLETED = "completed"
    FAILED = "failed"


class TransferMode(str, Enum):
    """How a liquidity transfer moved collateral."""
    BRIDGE = "bridge"          # real on-chain bridge transaction
    STORE_ONLY = "store_only"  # bookkeeping only, no collateral moved


class Token(Base):
    """
    Token curve parameters, shared by every chain the token is deployed on.
    """
    __tablename__ = "tokens"

    id = Column(String(64), primary_key=True)
    name = Column(String(100), nullable=False, default="")
    symbol = Column(String(20), nullable=False, default="")

    base_price = Column(String(78), nullable=False, default="0")
    slope = Column(String(78), nullable=False, default="0")
    graduation_threshold = Column(String(78), nullable=False, default="0")
    cross_chain_enabled = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Token(id={self.id}, symbol={self.symbol})>"


class TokenDeployment(Base):
    """
    One row per (token, chain) deployment.

    `is_graduated` is terminal: once set it is never cleared.
    """
    __tablename__ = "token_deployments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(String(64), ForeignKey("tokens.id"), nullable=False)
    chain = Column(String(32), nullable=False)

    # Contracts
    token_address = Column(String(66), nullable=True)
    curve_address = Column(String(66), nullable=True)
    bridge_address = Column(String(66), nullable=True)

    status = Column(String(16), nullable=False, default=DeploymentStatus.PENDING.value)

    # Bonding-curve bookkeeping
    local_supply = Column(String(78), nullable=False, default="0")
    local_reserve = Column(String(78), nullable=False, default="0")
    market_cap = Column(String(78), nullable=False, default="0")

    # Graduation
    is_graduated = Column(Boolean, default=False, nullable=False)
    graduated_at = Column(DateTime(timezone=True), nullable=True)
    dex_pool_address = Column(String(66), nullable=True)
    dex_name = Column(String(32), nullable=True)
    graduation_tx_hash = Column(String(66), nullable=True)
    graduation_attempts = Column(Integer, default=0, nullable=False)
    graduation_error = Column(Text, nullable=True)
    graduation_failed = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("token_id", "chain", name="uq_token_deployments_token_chain"),
        Index("ix_token_deployments_token_id", "token_id"),
        Index("ix_token_deployments_chain", "chain"),
        CheckConstraint("graduation_attempts >= 0", name="check_graduation_attempts_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<TokenDeployment(token={self.token_id}, chain={self.chain}, status={self.status})>"


class LiquidityRequest(Base):
    """
    A cross-chain collateral transfer, keyed by its externally issued
    request id (or the source transaction hash when none was emitted).
    """
    __tablename__ = "liquidity_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(String(80), nullable=False, unique=True)
    token_id = Column(String(64), ForeignKey("tokens.id"), nullable=False)
    source_chain = Column(String(32), nullable=True)
    target_chain = Column(String(32), nullable=False)
    amount = Column(String(78), nullable=False)

    status = Column(String(16), nullable=False, default=LiquidityRequestStatus.PENDING.value)
    transfer_mode = Column(String(16), nullable=False, default=TransferMode.BRIDGE.value)
    request_tx_hash = Column(String(66), nullable=True)
    request_block = Column(Integer, nullable=True)
    tx_hash = Column(String(66), nullable=True)
    reserve_credited = Column(Boolean, default=False, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_liquidity_requests_token_status", "token_id", "status"),
        Index("ix_liquidity_requests_updated", "updated_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<LiquidityRequest(request_id={self.request_id}, "
            f"{self.source_chain}->{self.target_chain}, status={self.status})>"
        )

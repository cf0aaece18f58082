"""
Repository pattern implementation for deployment store operations.

Repositories never swallow database errors: every read/write failure
propagates to the caller.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    DeploymentStatus, LiquidityRequest, LiquidityRequestStatus, Token,
    TokenDeployment, TransferMode,
)


class BaseRepository:
    """Base repository with common async operations."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize repository with database session.

        Args:
            session: Async database session
        """
        self.session = session


class TokenRepository(BaseRepository):
    """Repository for token curve parameters."""

    async def create_token(
        self,
        token_id: str,
        base_price: str,
        slope: str,
        graduation_threshold: str = "0",
        cross_chain_enabled: bool = False,
        name: str = "",
        symbol: str = "",
    ) -> Token:
        token = Token(
            id=token_id,
            name=name,
            symbol=symbol,
            base_price=base_price,
            slope=slope,
            graduation_threshold=graduation_threshold,
            cross_chain_enabled=cross_chain_enabled,
        )
        self.session.add(token)
        await self.session.flush()
        return token

    async def get(self, token_id: str) -> Optional[Token]:
        """
        Get token by ID.

        Args:
            token_id: Token identifier

        Returns:
            Token instance or None
        """
        return await self.session.get(Token, token_id)

    async def list_cross_chain_token_ids(self) -> List[str]:
        """Tokens with cross-chain liquidity enabled."""
        stmt = select(Token.id).where(Token.cross_chain_enabled.is_(True))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_synced_token_ids(self) -> List[str]:
        """Tokens that have at least one deployed chain."""
        stmt = (
            select(TokenDeployment.token_id)
            .where(TokenDeployment.status == DeploymentStatus.DEPLOYED.value)
            .distinct()
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_graduation_candidate_ids(self) -> List[str]:
        """
        Tokens with graduation enabled that still have a deployed,
        non-graduated chain with a curve contract.
        """
        stmt = (
            select(Token.id, Token.graduation_threshold)
            .join(TokenDeployment, TokenDeployment.token_id == Token.id)
            .where(
                and_(
                    TokenDeployment.status == DeploymentStatus.DEPLOYED.value,
                    TokenDeployment.is_graduated.is_(False),
                    TokenDeployment.curve_address.is_not(None),
                )
            )
            .distinct()
        )
        result = await self.session.execute(stmt)
        # Threshold is a decimal string; "0", "0.0" etc. all disable graduation
        return [row.id for row in result.all() if _is_positive(row.graduation_threshold)]


class DeploymentRepository(BaseRepository):
    """Repository for (token, chain) deployment rows."""

    async def create_deployment(
        self,
        token_id: str,
        chain: str,
        token_address: Optional[str] = None,
        curve_address: Optional[str] = None,
        bridge_address: Optional[str] = None,
        status: DeploymentStatus = DeploymentStatus.DEPLOYED,
        local_supply: str = "0",
        local_reserve: str = "0",
    ) -> TokenDeployment:
        deployment = TokenDeployment(
            token_id=token_id,
            chain=chain,
            token_address=token_address,
            curve_address=curve_address,
            bridge_address=bridge_address,
            status=status.value,
            local_supply=local_supply,
            local_reserve=local_reserve,
        )
        self.session.add(deployment)
        await self.session.flush()
        return deployment

    async def get(self, token_id: str, chain: str) -> Optional[TokenDeployment]:
        """
        Get the deployment of a token on one chain.

        Args:
            token_id: Token identifier
            chain: Chain identifier

        Returns:
            TokenDeployment instance or None
        """
        stmt = select(TokenDeployment).where(
            and_(TokenDeployment.token_id == token_id, TokenDeployment.chain == chain)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_token(
        self,
        token_id: str,
        deployed_only: bool = False,
    ) -> List[TokenDeployment]:
        """
        List all deployments of a token, ordered by chain.

        Args:
            token_id: Token identifier
            deployed_only: Skip deployments still pending

        Returns:
            List of TokenDeployment instances
        """
        conditions = [TokenDeployment.token_id == token_id]
        if deployed_only:
            conditions.append(TokenDeployment.status == DeploymentStatus.DEPLOYED.value)

        stmt = select(TokenDeployment).where(and_(*conditions)).order_by(TokenDeployment.chain)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_fields(self, token_id: str, chain: str, **values: Any) -> int:
        """
        Update columns on one deployment row.

        Returns:
            Number of rows updated (0 when the deployment does not exist)
        """
        values["updated_at"] = datetime.now(timezone.utc)
        stmt = (
            update(TokenDeployment)
            .where(and_(TokenDeployment.token_id == token_id, TokenDeployment.chain == chain))
            .values(**values)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def set_local_supply(self, token_id: str, chain: str, local_supply: str) -> int:
        return await self.update_fields(token_id, chain, local_supply=local_supply)

    async def set_local_reserve(self, token_id: str, chain: str, local_reserve: str) -> int:
        return await self.update_fields(token_id, chain, local_reserve=local_reserve)

    async def set_market_caps(self, token_id: str, market_caps: Dict[str, str]) -> None:
        for chain, market_cap in market_caps.items():
            await self.update_fields(token_id, chain, market_cap=market_cap)

    async def mark_graduated(
        self,
        token_id: str,
        chain: str,
        pool_address: str,
        dex_name: Optional[str],
        tx_hash: Optional[str],
    ) -> int:
        """
        Record graduation and its evidence in a single update.

        Only flips rows that are not graduated yet, so a concurrent second
        writer cannot overwrite the first pool address.
        """
        stmt = (
            update(TokenDeployment)
            .where(
                and_(
                    TokenDeployment.token_id == token_id,
                    TokenDeployment.chain == chain,
                    TokenDeployment.is_graduated.is_(False),
                )
            )
            .values(
                is_graduated=True,
                graduated_at=datetime.now(timezone.utc),
                dex_pool_address=pool_address,
                dex_name=dex_name,
                graduation_tx_hash=tx_hash,
                graduation_error=None,
                graduation_failed=False,
                updated_at=datetime.now(timezone.utc),
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount


class LiquidityRequestRepository(BaseRepository):
    """Repository for cross-chain liquidity requests."""

    async def create_if_absent(
        self,
        request_id: str,
        token_id: str,
        target_chain: str,
        amount: str,
        source_chain: Optional[str] = None,
        transfer_mode: TransferMode = TransferMode.BRIDGE,
        request_tx_hash: Optional[str] = None,
        request_block: Optional[int] = None,
    ) -> tuple[LiquidityRequest, bool]:
        """
        Create a liquidity request unless one already exists for the id.

        Returns:
            Tuple of (request, created)
        """
        existing = await self.get_by_request_id(request_id)
        if existing is not None:
            return existing, False

        request = LiquidityRequest(
            request_id=request_id,
            token_id=token_id,
            source_chain=source_chain,
            target_chain=target_chain,
            amount=amount,
            status=LiquidityRequestStatus.PENDING.value,
            transfer_mode=transfer_mode.value,
            request_tx_hash=request_tx_hash,
            request_block=request_block,
        )
        self.session.add(request)
        await self.session.flush()
        return request, True

    async def get_by_request_id(self, request_id: str) -> Optional[LiquidityRequest]:
        stmt = select(LiquidityRequest).where(LiquidityRequest.request_id == request_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_request(self, request_id: str, **values: Any) -> int:
        values["updated_at"] = datetime.now(timezone.utc)
        stmt = (
            update(LiquidityRequest)
            .where(LiquidityRequest.request_id == request_id)
            .values(**values)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def list_open(
        self,
        token_id: Optional[str] = None,
        source_chain: Optional[str] = None,
        target_chain: Optional[str] = None,
    ) -> List[LiquidityRequest]:
        """Requests still pending or bridging, oldest first."""
        conditions = [
            LiquidityRequest.status.in_(
                [LiquidityRequestStatus.PENDING.value, LiquidityRequestStatus.BRIDGING.value]
            )
        ]
        if token_id is not None:
            conditions.append(LiquidityRequest.token_id == token_id)
        if source_chain is not None:
            conditions.append(LiquidityRequest.source_chain == source_chain)
        if target_chain is not None:
            conditions.append(LiquidityRequest.target_chain == target_chain)

        stmt = select(LiquidityRequest).where(and_(*conditions)).order_by(LiquidityRequest.created_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_bridging(self, token_id: Optional[str] = None) -> List[LiquidityRequest]:
        """Bridge-mode requests funded on the source chain and awaiting settlement."""
        conditions = [
            LiquidityRequest.status == LiquidityRequestStatus.BRIDGING.value,
            LiquidityRequest.transfer_mode == TransferMode.BRIDGE.value,
        ]
        if token_id is not None:
            conditions.append(LiquidityRequest.token_id == token_id)

        stmt = select(LiquidityRequest).where(and_(*conditions)).order_by(LiquidityRequest.updated_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_stale(self, older_than: datetime) -> Sequence[LiquidityRequest]:
        """Open requests whose last update is older than the cutoff."""
        stmt = select(LiquidityRequest).where(
            and_(
                LiquidityRequest.status.in_(
                    [LiquidityRequestStatus.PENDING.value, LiquidityRequestStatus.BRIDGING.value]
                ),
                LiquidityRequest.updated_at < older_than,
            )
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


def _is_positive(value: Optional[str]) -> bool:
    try:
        return Decimal(value or "0") > 0
    except InvalidOperation:
        return False

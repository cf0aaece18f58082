"""
Graduation state machine.

Per (token, chain):

    not_eligible (threshold 0)
    below_threshold --market_cap >= threshold--> graduated (terminal)

A deployment whose pool creation kept failing until attempts ran out is
reported as `failed` until an operator calls reset_graduation.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional

from ..chains.registry import ChainRegistry
from ..core.amounts import ZERO, parse_amount
from ..core.exceptions import DeploymentNotFoundError, SyncEngineError, TokenNotFoundError
from ..core.retry import BackoffTracker, RetryConfig, RetryStrategy
from ..core.settings import Settings, get_settings
from ..models import GraduationResult, GraduationState, GraduationStatus, TokenGraduationSummary
from ..storage.database import DatabaseManager
from ..storage.models import Token, TokenDeployment
from ..storage.repositories import DeploymentRepository, TokenRepository

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


def graduation_status(token: Token, deployment: TokenDeployment) -> GraduationStatus:
    """Derive the read-only graduation status of one deployment."""
    threshold = parse_amount(token.graduation_threshold, field="graduation_threshold")
    market_cap = parse_amount(deployment.market_cap, field="market_cap")

    if deployment.is_graduated:
        state = GraduationState.GRADUATED
        progress = HUNDRED
    elif threshold == 0:
        state = GraduationState.NOT_ELIGIBLE
        progress = ZERO
    else:
        progress = min(HUNDRED, market_cap / threshold * HUNDRED)
        if deployment.graduation_failed:
            state = GraduationState.FAILED
        elif market_cap >= threshold:
            state = GraduationState.READY
        else:
            state = GraduationState.BELOW_THRESHOLD

    needs_graduation = (
        not deployment.is_graduated
        and threshold > 0
        and market_cap >= threshold
    )
    return GraduationStatus(
        token_id=token.id,
        chain=deployment.chain,
        state=state,
        is_graduated=bool(deployment.is_graduated),
        market_cap=market_cap,
        threshold=threshold,
        progress_percent=progress,
        needs_graduation=needs_graduation,
        dex_pool_address=deployment.dex_pool_address,
        graduation_attempts=deployment.graduation_attempts or 0,
    )


class GraduationService:
    """Drives deployments across the market-cap threshold into a DEX pool."""

    def __init__(
        self,
        db: DatabaseManager,
        registry: ChainRegistry,
        backoff: Optional[BackoffTracker] = None,
        min_liquidity: Optional[float] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.db = db
        self.registry = registry
        self.min_liquidity = Decimal(str(
            settings.graduation_min_liquidity if min_liquidity is None else min_liquidity
        ))
        self.backoff = backoff or BackoffTracker(
            RetryConfig(
                max_attempts=settings.max_graduation_attempts,
                initial_delay=settings.retry_initial_delay_seconds,
                max_delay=settings.retry_max_delay_seconds,
                strategy=RetryStrategy.EXPONENTIAL,
                jitter=False,
            )
        )

    async def _load(self, token_id: str, chain: str) -> tuple[Token, TokenDeployment]:
        async with self.db.get_session() as session:
            token = await TokenRepository(session).get(token_id)
            if token is None:
                raise TokenNotFoundError(token_id)
            deployment = await DeploymentRepository(session).get(token_id, chain)
            if deployment is None:
                raise DeploymentNotFoundError(token_id, chain)
        return token, deployment

    async def check_graduation_status(self, token_id: str, chain: str) -> GraduationStatus:
        """
        Graduation progress of one deployment. Read-only.

        Raises:
            TokenNotFoundError: Unknown token
            DeploymentNotFoundError: Token is not deployed on the chain
        """
        token, deployment = await self._load(token_id, chain)
        return graduation_status(token, deployment)

    async def check_and_graduate(
        self,
        token_id: str,
        chain: str,
        force: bool = False,
    ) -> GraduationResult:
        """
        Graduate one deployment when its market cap has reached the threshold.

        Args:
            token_id: Token identifier
            chain: Chain identifier
            force: Graduate below the threshold (cross-chain group graduation);
                never overrides a disabled threshold

        Returns:
            GraduationResult; chain and pool failures are returned, not raised
        """
        token, deployment = await self._load(token_id, chain)
        status = graduation_status(token, deployment)

        if status.is_graduated:
            return GraduationResult(
                token_id=token_id,
                chain=chain,
                graduated=True,
                already_graduated=True,
                pool_address=deployment.dex_pool_address,
                tx_hash=deployment.graduation_tx_hash,
                dex_name=deployment.dex_name,
            )
        if status.state == GraduationState.NOT_ELIGIBLE:
            return self._not_graduated(token_id, chain, "Graduation disabled for token")
        if status.state == GraduationState.FAILED:
            return self._not_graduated(token_id, chain, "Graduation attempts exhausted; reset required")
        if not status.needs_graduation and not force:
            return self._not_graduated(token_id, chain, "Market cap below graduation threshold")

        key = f"graduation:{token_id}:{chain}"
        if not self.backoff.can_attempt(key):
            return self._not_graduated(token_id, chain, "Graduation retry deferred by backoff")

        creator = self.registry.pool_creator_for(chain)
        if creator is None:
            return await self._record_failure(
                token_id, chain, key, f"DEX integration not supported for chain: {chain}"
            )
        if not deployment.token_address:
            return await self._record_failure(token_id, chain, key, "Token address not set")

        reserve = parse_amount(deployment.local_reserve, field="local_reserve")
        if reserve < self.min_liquidity:
            return await self._record_failure(
                token_id, chain, key,
                f"Insufficient liquidity: {reserve} < {self.min_liquidity}",
            )

        supply = parse_amount(deployment.local_supply, field="local_supply")
        try:
            pool = await creator.create_pool(deployment.token_address, reserve, supply)
        except (SyncEngineError, ValueError) as e:
            return await self._record_failure(token_id, chain, key, f"Pool creation failed: {e}")

        if not pool.success or not pool.pool_address:
            return await self._record_failure(
                token_id, chain, key, pool.error or "Pool creation returned no pool address"
            )

        async with self.db.get_session() as session:
            updated = await DeploymentRepository(session).mark_graduated(
                token_id, chain, pool.pool_address, pool.dex_name or creator.dex_name, pool.tx_hash
            )
        self.backoff.record_success(key)

        if updated == 0:
            # Another pass graduated the row first; its pool address stands
            token, deployment = await self._load(token_id, chain)
            return GraduationResult(
                token_id=token_id,
                chain=chain,
                graduated=True,
                already_graduated=True,
                pool_address=deployment.dex_pool_address,
                tx_hash=deployment.graduation_tx_hash,
                dex_name=deployment.dex_name,
            )

        logger.info(
            f"Token graduated to {pool.dex_name or creator.dex_name} pool {pool.pool_address}",
            extra={"token_id": token_id, "chain": chain, "tx_hash": pool.tx_hash},
        )
        return GraduationResult(
            token_id=token_id,
            chain=chain,
            graduated=True,
            pool_address=pool.pool_address,
            tx_hash=pool.tx_hash,
            dex_name=pool.dex_name or creator.dex_name,
        )

    async def check_and_graduate_token(self, token_id: str) -> TokenGraduationSummary:
        """
        Evaluate every deployed, not yet graduated chain of a token.

        Cross-chain tokens deployed on more than one chain graduate all chains
        together as soon as any one is ready, so prices stay consistent.
        """
        async with self.db.get_session() as session:
            token = await TokenRepository(session).get(token_id)
            if token is None:
                raise TokenNotFoundError(token_id)
            deployments = await DeploymentRepository(session).list_for_token(
                token_id, deployed_only=True
            )

        cross_chain = bool(token.cross_chain_enabled) and len(deployments) > 1
        pending = [d for d in deployments if not d.is_graduated]
        ready = [d.chain for d in pending if graduation_status(token, d).needs_graduation]

        summary = TokenGraduationSummary(token_id=token_id, cross_chain=cross_chain)
        if not ready:
            return summary

        targets: List[str] = [d.chain for d in pending] if cross_chain else ready
        if cross_chain:
            logger.info(
                f"Graduating all {len(targets)} chains together",
                extra={"token_id": token_id, "extra_data": {"ready": ready, "targets": targets}},
            )

        # Sequential: each attempt commits its own row before the next starts
        for chain in targets:
            summary.results.append(
                await self.check_and_graduate(token_id, chain, force=cross_chain)
            )
        return summary

    async def reset_graduation(self, token_id: str, chain: str) -> None:
        """Clear exhausted-attempt state so the next tick retries the chain."""
        async with self.db.get_session() as session:
            updated = await DeploymentRepository(session).update_fields(
                token_id,
                chain,
                graduation_failed=False,
                graduation_attempts=0,
                graduation_error=None,
            )
        if updated == 0:
            raise DeploymentNotFoundError(token_id, chain)
        self.backoff.reset(f"graduation:{token_id}:{chain}")

    async def list_candidates(self) -> List[str]:
        """Tokens with a positive threshold and an ungraduated deployed chain."""
        async with self.db.get_session() as session:
            return await TokenRepository(session).list_graduation_candidate_ids()

    async def _record_failure(
        self,
        token_id: str,
        chain: str,
        key: str,
        error: str,
    ) -> GraduationResult:
        state = self.backoff.record_failure(key, error)
        exhausted = self.backoff.is_exhausted(key)

        async with self.db.get_session() as session:
            await DeploymentRepository(session).update_fields(
                token_id,
                chain,
                graduation_attempts=state.attempts,
                graduation_error=error,
                graduation_failed=exhausted,
            )

        log = logger.error if exhausted else logger.warning
        log(
            f"Graduation attempt {state.attempts} failed: {error}",
            extra={"token_id": token_id, "chain": chain},
        )
        return self._not_graduated(token_id, chain, error)

    @staticmethod
    def _not_graduated(token_id: str, chain: str, error: str) -> GraduationResult:
        return GraduationResult(token_id=token_id, chain=chain, graduated=False, error=error)


__all__ = ["GraduationService", "graduation_status"]

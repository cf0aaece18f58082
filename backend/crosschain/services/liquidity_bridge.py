"""
Liquidity rebalancing and bridge orchestration.

A rebalance moves collateral from a chain holding more than its share to a
chain running short, in two idempotent steps keyed by the request id:

1. request_liquidity on the target chain's bridge records a `pending` request
2. execute_bridge funds it from the source chain and moves it to `bridging`

The destination side is confirmed by confirm_bridge (`bridging -> completed`),
which the reconcile pass calls once the LiquidityBridged event shows up on the
target chain.

Chains without a bridge contract or signer use a store-only path that moves
the bookkeeping figures without moving any collateral.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..chains.registry import ChainRegistry
from ..core.amounts import AmountLike, format_amount, parse_amount
from ..core.exceptions import DeploymentNotFoundError, InvalidAmountError, SyncEngineError
from ..core.retry import BackoffTracker, RetryConfig, RetryStrategy
from ..core.settings import Settings, get_settings
from ..models import BridgeResult, RebalanceResult, ReserveStatus
from ..storage.database import DatabaseManager
from ..storage.models import LiquidityRequestStatus, TransferMode
from ..storage.repositories import DeploymentRepository, LiquidityRequestRepository
from .reserve_monitor import ReserveMonitorService

logger = logging.getLogger(__name__)

STORE_ONLY_PREFIX = "local-"


class LiquidityBridgeService:
    """Decides when to move collateral between chains and drives the transfer."""

    def __init__(
        self,
        db: DatabaseManager,
        registry: ChainRegistry,
        reserve_monitor: Optional[ReserveMonitorService] = None,
        optimistic_reserve_updates: Optional[bool] = None,
        backoff: Optional[BackoffTracker] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.db = db
        self.registry = registry
        self.reserve_monitor = reserve_monitor or ReserveMonitorService(db, registry, settings=settings)
        self.optimistic = (
            settings.optimistic_reserve_updates
            if optimistic_reserve_updates is None
            else optimistic_reserve_updates
        )
        self.surplus_ratio = Decimal(str(settings.surplus_reserve_ratio))
        self.stale_request_timeout = timedelta(minutes=settings.stale_request_timeout_minutes)
        self.backoff = backoff or BackoffTracker(
            RetryConfig(
                max_attempts=settings.max_rebalance_attempts,
                initial_delay=settings.retry_initial_delay_seconds,
                max_delay=settings.retry_max_delay_seconds,
                strategy=RetryStrategy.EXPONENTIAL,
                jitter=False,
            )
        )
        self.transfer_counts: Dict[str, int] = {
            TransferMode.BRIDGE.value: 0,
            TransferMode.STORE_ONLY.value: 0,
        }

    # Rebalancing

    async def check_and_rebalance(self, token_id: str) -> RebalanceResult:
        """
        Trigger at most one transfer that closes a deficit chain's shortfall.

        Deficit chains are `low` or `critical`; surplus chains hold more than
        surplus_reserve_ratio times their ideal reserve. The first deficit
        whose shortfall some surplus chain's excess covers is rebalanced.
        """
        snapshots = await self.reserve_monitor.monitor_reserves(token_id)
        deficits = [s for s in snapshots if s.status in (ReserveStatus.LOW, ReserveStatus.CRITICAL)]
        surpluses = [s for s in snapshots if s.reserve > self.surplus_ratio * s.ideal_reserve]

        if not deficits:
            return RebalanceResult(token_id=token_id, rebalanced=False, message="No deficit chains")

        deferred: List[str] = []
        exhausted: List[str] = []
        for deficit in deficits:
            key = self._rebalance_key(token_id, deficit.chain)
            if self.backoff.is_exhausted(key):
                exhausted.append(deficit.chain)
                continue
            if not self.backoff.can_attempt(key):
                logger.debug(
                    "Rebalance deferred by backoff",
                    extra={"token_id": token_id, "target_chain": deficit.chain},
                )
                deferred.append(deficit.chain)
                continue
            if await self._has_transfer_in_flight(token_id, deficit.chain):
                logger.debug(
                    "Transfer already in flight",
                    extra={"token_id": token_id, "target_chain": deficit.chain},
                )
                continue

            shortfall = deficit.ideal_reserve - deficit.reserve
            for surplus in surpluses:
                if surplus.chain == deficit.chain:
                    continue
                excess = surplus.reserve - surplus.ideal_reserve
                if excess < shortfall:
                    continue

                bridge_result, amount = await self._transfer(
                    token_id, surplus.chain, deficit.chain, shortfall, excess
                )
                self._record_attempt(key, bridge_result)
                if not bridge_result.success and self.backoff.is_exhausted(key):
                    await self._fail_open_requests(token_id, deficit.chain, bridge_result.message)

                return RebalanceResult(
                    token_id=token_id,
                    rebalanced=bridge_result.success,
                    source_chain=surplus.chain,
                    target_chain=deficit.chain,
                    amount=amount,
                    bridge=bridge_result,
                    message=bridge_result.message,
                    deferred_chains=deferred,
                    exhausted_chains=exhausted,
                )

        if exhausted:
            message = f"Rebalance attempts exhausted for: {', '.join(exhausted)}"
        elif deferred:
            message = f"Rebalance deferred by backoff for: {', '.join(deferred)}"
        else:
            message = "No surplus chain covers any deficit"
        return RebalanceResult(
            token_id=token_id,
            rebalanced=False,
            message=message,
            deferred_chains=deferred,
            exhausted_chains=exhausted,
        )

    def reset_rebalance(self, token_id: str, chain: str) -> bool:
        """
        Clear the backoff state of a deficit chain so the next tick retries it.

        Returns:
            True when the chain had recorded failures
        """
        key = self._rebalance_key(token_id, chain)
        had_failures = self.backoff.attempts(key) > 0
        self.backoff.reset(key)
        logger.info(
            "Rebalance backoff reset",
            extra={"token_id": token_id, "target_chain": chain, "extra_data": {"had_failures": had_failures}},
        )
        return had_failures

    @staticmethod
    def _rebalance_key(token_id: str, chain: str) -> str:
        return f"rebalance:{token_id}:{chain}"

    def _record_attempt(self, key: str, result: BridgeResult) -> None:
        if result.success:
            self.backoff.record_success(key)
        else:
            self.backoff.record_failure(key, result.message)

    async def _has_transfer_in_flight(self, token_id: str, target_chain: str) -> bool:
        async with self.db.get_session() as session:
            open_requests = await LiquidityRequestRepository(session).list_open(
                token_id=token_id, target_chain=target_chain
            )
        return any(r.status == LiquidityRequestStatus.BRIDGING.value for r in open_requests)

    async def _transfer(
        self,
        token_id: str,
        source_chain: str,
        target_chain: str,
        amount: Decimal,
        source_excess: Decimal,
    ) -> Tuple[BridgeResult, Decimal]:
        """
        Move `amount` from source to target.

        Returns:
            Tuple of (result, amount actually moved); a resumed request moves
            the amount it was issued for
        """
        if not self._bridge_capable(source_chain) or not self._bridge_capable(target_chain):
            result = await self._store_only_transfer(token_id, source_chain, target_chain, amount)
            return result, amount

        # Resume a request left pending by an earlier failed funding step
        async with self.db.get_session() as session:
            open_requests = await LiquidityRequestRepository(session).list_open(
                token_id=token_id, target_chain=target_chain
            )
        pending = next(
            (
                r for r in open_requests
                if r.status == LiquidityRequestStatus.PENDING.value
                and r.transfer_mode == TransferMode.BRIDGE.value
            ),
            None,
        )

        if pending is not None and parse_amount(pending.amount) > source_excess:
            # Funding it now would take the source below its ideal reserve
            await self._supersede_request(pending.request_id, pending.amount, source_excess)
            pending = None

        if pending is not None:
            request_id = pending.request_id
            amount = parse_amount(pending.amount)
        else:
            requested = await self.request_liquidity(token_id, target_chain, amount, source_chain=source_chain)
            if not requested.success or requested.request_id is None:
                return requested, amount
            request_id = requested.request_id

        result = await self.execute_bridge(token_id, source_chain, target_chain, amount, request_id)
        return result, amount

    async def _supersede_request(self, request_id: str, amount: str, source_excess: Decimal) -> None:
        reason = f"Requested {amount} exceeds source surplus {format_amount(source_excess)}"
        async with self.db.get_session() as session:
            await LiquidityRequestRepository(session).update_request(
                request_id,
                status=LiquidityRequestStatus.FAILED.value,
                last_error=reason,
            )
        logger.warning(
            "Pending liquidity request superseded",
            extra={"request_id": request_id, "extra_data": {"reason": reason}},
        )

    def _bridge_capable(self, chain: str) -> bool:
        return (
            self.registry.bridge_for(chain) is not None
            and self.registry.eid_for(chain) is not None
        )

    # Bridge transfer protocol

    async def request_liquidity(
        self,
        token_id: str,
        target_chain: str,
        amount: AmountLike,
        source_chain: Optional[str] = None,
    ) -> BridgeResult:
        """
        Issue a liquidity request on the target chain's bridge and record it.

        Args:
            token_id: Token identifier
            target_chain: Chain that needs collateral
            amount: Amount of native currency requested
            source_chain: Chain expected to fund the request, when known

        Returns:
            BridgeResult carrying the request id; failure results never raise
        """
        value = self._positive_amount(amount)

        async with self.db.get_session() as session:
            deployment = await DeploymentRepository(session).get(token_id, target_chain)
        if deployment is None:
            return BridgeResult(success=False, message=f"No deployment of {token_id} on {target_chain}")

        bridge = self.registry.bridge_for(target_chain)
        eid = self.registry.eid_for(target_chain)
        if bridge is None or eid is None or not deployment.token_address:
            return await self._record_store_only_request(token_id, target_chain, value, source_chain)

        try:
            tx_hash, request_id, block_number = await bridge.request_liquidity(
                deployment.token_address, eid, value
            )
        except (SyncEngineError, ValueError) as e:
            logger.error(
                f"Liquidity request failed: {e}",
                extra={"token_id": token_id, "target_chain": target_chain, "bridge_mode": "bridge"},
            )
            return BridgeResult(success=False, message=f"Liquidity request failed: {e}")

        async with self.db.get_session() as session:
            request, created = await LiquidityRequestRepository(session).create_if_absent(
                request_id=request_id,
                token_id=token_id,
                target_chain=target_chain,
                amount=format_amount(value),
                source_chain=source_chain,
                transfer_mode=TransferMode.BRIDGE,
                request_tx_hash=tx_hash,
                request_block=block_number,
            )
            status = request.status

        logger.info(
            "Liquidity requested" if created else "Liquidity request already recorded",
            extra={
                "token_id": token_id,
                "target_chain": target_chain,
                "request_id": request_id,
                "tx_hash": tx_hash,
                "bridge_mode": "bridge",
            },
        )
        return BridgeResult(
            success=True,
            message="Liquidity requested" if created else "Request already recorded",
            request_id=request_id,
            tx_hash=tx_hash,
            status=status,
            transfer_mode=TransferMode.BRIDGE.value,
        )

    async def execute_bridge(
        self,
        token_id: str,
        source_chain: str,
        target_chain: str,
        amount: AmountLike,
        request_id: str,
    ) -> BridgeResult:
        """
        Fund a liquidity request from the source chain.

        Debits the source reserve, and credits the target reserve immediately
        when optimistic updates are enabled (otherwise on confirm_bridge).
        A request already bridging or completed is not resubmitted.
        """
        value = self._positive_amount(amount)
        if source_chain == target_chain:
            return BridgeResult(success=False, message="Source and target chain are the same")

        async with self.db.get_session() as session:
            requests = LiquidityRequestRepository(session)
            request, _ = await requests.create_if_absent(
                request_id=request_id,
                token_id=token_id,
                target_chain=target_chain,
                amount=format_amount(value),
                source_chain=source_chain,
                transfer_mode=(
                    TransferMode.STORE_ONLY
                    if request_id.startswith(STORE_ONLY_PREFIX)
                    else TransferMode.BRIDGE
                ),
            )
            status = request.status
            mode = request.transfer_mode
            source = await DeploymentRepository(session).get(token_id, source_chain)

        if status in (LiquidityRequestStatus.BRIDGING.value, LiquidityRequestStatus.COMPLETED.value):
            return BridgeResult(
                success=True,
                message=f"Request already {status}",
                request_id=request_id,
                status=status,
                transfer_mode=mode,
            )
        if status == LiquidityRequestStatus.FAILED.value:
            return BridgeResult(
                success=False,
                message="Request has failed and cannot be bridged",
                request_id=request_id,
                status=status,
                transfer_mode=mode,
            )
        if source is None:
            return BridgeResult(success=False, message=f"No deployment of {token_id} on {source_chain}")
        if parse_amount(source.local_reserve, field="local_reserve") < value:
            return BridgeResult(
                success=False,
                message=f"Source reserve on {source_chain} is below {format_amount(value)}",
                request_id=request_id,
            )

        bridge = self.registry.bridge_for(source_chain)
        if mode == TransferMode.STORE_ONLY.value or bridge is None:
            return await self._store_only_transfer(
                token_id, source_chain, target_chain, value, request_id=request_id
            )

        try:
            tx_hash = await bridge.bridge_liquidity(request_id, value)
        except (SyncEngineError, ValueError) as e:
            await self._record_request_error(request_id, str(e))
            logger.error(
                f"Bridge execution failed: {e}",
                extra={
                    "token_id": token_id,
                    "source_chain": source_chain,
                    "target_chain": target_chain,
                    "request_id": request_id,
                    "bridge_mode": "bridge",
                },
            )
            return BridgeResult(
                success=False,
                message=f"Bridge execution failed: {e}",
                request_id=request_id,
                status=LiquidityRequestStatus.PENDING.value,
                transfer_mode=TransferMode.BRIDGE.value,
            )

        async with self.db.get_session() as session:
            deployments = DeploymentRepository(session)
            await self._adjust_reserve(deployments, token_id, source_chain, -value)
            if self.optimistic:
                await self._adjust_reserve(deployments, token_id, target_chain, value)
            await LiquidityRequestRepository(session).update_request(
                request_id,
                status=LiquidityRequestStatus.BRIDGING.value,
                source_chain=source_chain,
                tx_hash=tx_hash,
                reserve_credited=self.optimistic,
                attempts=request.attempts + 1,
                last_error=None,
            )

        self.transfer_counts[TransferMode.BRIDGE.value] += 1
        logger.info(
            f"Bridged {format_amount(value)} from {source_chain} to {target_chain}",
            extra={
                "token_id": token_id,
                "source_chain": source_chain,
                "target_chain": target_chain,
                "request_id": request_id,
                "tx_hash": tx_hash,
                "bridge_mode": "bridge",
            },
        )
        return BridgeResult(
            success=True,
            message="Bridge transaction submitted",
            request_id=request_id,
            tx_hash=tx_hash,
            status=LiquidityRequestStatus.BRIDGING.value,
            transfer_mode=TransferMode.BRIDGE.value,
        )

    async def confirm_bridge(self, request_id: str) -> BridgeResult:
        """
        Record destination-side settlement of a bridging request.

        Credits the target reserve here unless it was credited optimistically.
        """
        async with self.db.get_session() as session:
            requests = LiquidityRequestRepository(session)
            request = await requests.get_by_request_id(request_id)
            if request is None:
                return BridgeResult(success=False, message=f"Unknown request {request_id}")

            status = request.status
            if status == LiquidityRequestStatus.COMPLETED.value:
                return BridgeResult(
                    success=True,
                    message="Request already completed",
                    request_id=request_id,
                    tx_hash=request.tx_hash,
                    status=status,
                    transfer_mode=request.transfer_mode,
                )
            if status != LiquidityRequestStatus.BRIDGING.value:
                return BridgeResult(
                    success=False,
                    message=f"Request is {status}, not bridging",
                    request_id=request_id,
                    status=status,
                    transfer_mode=request.transfer_mode,
                )

            if not request.reserve_credited:
                await self._adjust_reserve(
                    DeploymentRepository(session),
                    request.token_id,
                    request.target_chain,
                    parse_amount(request.amount),
                )
            await requests.update_request(
                request_id,
                status=LiquidityRequestStatus.COMPLETED.value,
                reserve_credited=True,
                completed_at=datetime.now(timezone.utc),
            )
            token_id, target_chain, tx_hash = request.token_id, request.target_chain, request.tx_hash

        logger.info(
            "Bridge settlement confirmed",
            extra={"token_id": token_id, "target_chain": target_chain, "request_id": request_id},
        )
        return BridgeResult(
            success=True,
            message="Bridge completed",
            request_id=request_id,
            tx_hash=tx_hash,
            status=LiquidityRequestStatus.COMPLETED.value,
            transfer_mode=TransferMode.BRIDGE.value,
        )

    async def update_reserve(self, token_id: str, chain: str, new_reserve: AmountLike) -> BridgeResult:
        """
        Set a chain's reserve on the bridge contract and in the store.

        Without a bridge for the chain only the store is written.
        """
        value = parse_amount(new_reserve, field="new_reserve")

        async with self.db.get_session() as session:
            deployment = await DeploymentRepository(session).get(token_id, chain)
        if deployment is None:
            raise DeploymentNotFoundError(token_id, chain)

        bridge = self.registry.bridge_for(chain)
        eid = self.registry.eid_for(chain)
        tx_hash = None
        mode = TransferMode.STORE_ONLY
        if bridge is not None and eid is not None and deployment.token_address:
            try:
                tx_hash = await bridge.update_reserve(deployment.token_address, eid, value)
            except (SyncEngineError, ValueError) as e:
                logger.error(
                    f"On-chain reserve update failed: {e}",
                    extra={"token_id": token_id, "chain": chain, "bridge_mode": "bridge"},
                )
                return BridgeResult(success=False, message=f"Reserve update failed: {e}")
            mode = TransferMode.BRIDGE

        async with self.db.get_session() as session:
            await DeploymentRepository(session).set_local_reserve(token_id, chain, format_amount(value))

        logger.info(
            f"Reserve set to {format_amount(value)}",
            extra={"token_id": token_id, "chain": chain, "tx_hash": tx_hash, "bridge_mode": mode.value},
        )
        return BridgeResult(
            success=True,
            message="Reserve updated",
            tx_hash=tx_hash,
            transfer_mode=mode.value,
        )

    # Store-only fallback

    async def _record_store_only_request(
        self,
        token_id: str,
        target_chain: str,
        amount: Decimal,
        source_chain: Optional[str],
    ) -> BridgeResult:
        request_id = f"{STORE_ONLY_PREFIX}{uuid.uuid4()}"
        async with self.db.get_session() as session:
            await LiquidityRequestRepository(session).create_if_absent(
                request_id=request_id,
                token_id=token_id,
                target_chain=target_chain,
                amount=format_amount(amount),
                source_chain=source_chain,
                transfer_mode=TransferMode.STORE_ONLY,
            )

        logger.warning(
            "No bridge configured, liquidity request recorded in store only",
            extra={
                "token_id": token_id,
                "target_chain": target_chain,
                "request_id": request_id,
                "bridge_mode": TransferMode.STORE_ONLY.value,
            },
        )
        return BridgeResult(
            success=True,
            message="Request recorded without bridge",
            request_id=request_id,
            status=LiquidityRequestStatus.PENDING.value,
            transfer_mode=TransferMode.STORE_ONLY.value,
        )

    async def _store_only_transfer(
        self,
        token_id: str,
        source_chain: str,
        target_chain: str,
        amount: Decimal,
        request_id: Optional[str] = None,
    ) -> BridgeResult:
        """Move reserve figures between chains in the store; no collateral moves."""
        request_id = request_id or f"{STORE_ONLY_PREFIX}{uuid.uuid4()}"

        async with self.db.get_session() as session:
            requests = LiquidityRequestRepository(session)
            await requests.create_if_absent(
                request_id=request_id,
                token_id=token_id,
                target_chain=target_chain,
                amount=format_amount(amount),
                source_chain=source_chain,
                transfer_mode=TransferMode.STORE_ONLY,
            )
            deployments = DeploymentRepository(session)
            await self._adjust_reserve(deployments, token_id, source_chain, -amount)
            await self._adjust_reserve(deployments, token_id, target_chain, amount)
            await requests.update_request(
                request_id,
                status=LiquidityRequestStatus.COMPLETED.value,
                source_chain=source_chain,
                transfer_mode=TransferMode.STORE_ONLY.value,
                reserve_credited=True,
                completed_at=datetime.now(timezone.utc),
            )

        self.transfer_counts[TransferMode.STORE_ONLY.value] += 1
        logger.warning(
            f"Store-only transfer of {format_amount(amount)} from {source_chain} to {target_chain}",
            extra={
                "token_id": token_id,
                "source_chain": source_chain,
                "target_chain": target_chain,
                "request_id": request_id,
                "bridge_mode": TransferMode.STORE_ONLY.value,
            },
        )
        return BridgeResult(
            success=True,
            message="Reserves moved in store only; no collateral was bridged",
            request_id=request_id,
            status=LiquidityRequestStatus.COMPLETED.value,
            transfer_mode=TransferMode.STORE_ONLY.value,
        )

    # Reconciliation

    async def settle_bridging_requests(self, token_id: Optional[str] = None) -> Tuple[int, Set[str]]:
        """
        Confirm bridging requests whose LiquidityBridged event has landed on
        the target chain, optionally for one token only.

        Returns:
            Tuple of (number confirmed, ids whose target chain could not be read)
        """
        async with self.db.get_session() as session:
            bridging = [
                (r.request_id, r.token_id, r.target_chain, r.request_block or 0)
                for r in await LiquidityRequestRepository(session).list_bridging(token_id=token_id)
            ]

        settled = 0
        unchecked: Set[str] = set()
        for request_id, request_token, target_chain, from_block in bridging:
            bridge = self.registry.bridge_for(target_chain)
            if bridge is None:
                continue
            try:
                settlement_tx = await bridge.find_settlement(request_id, from_block=from_block)
            except SyncEngineError as e:
                unchecked.add(request_id)
                logger.warning(
                    f"Settlement lookup failed: {e.message}",
                    extra={"token_id": request_token, "target_chain": target_chain, "request_id": request_id},
                )
                continue
            if settlement_tx is None:
                continue

            result = await self.confirm_bridge(request_id)
            if result.success:
                settled += 1
                logger.info(
                    "Bridge settlement found on target chain",
                    extra={
                        "token_id": request_token,
                        "target_chain": target_chain,
                        "request_id": request_id,
                        "tx_hash": settlement_tx,
                    },
                )
        return settled, unchecked

    async def expire_stale_requests(self, exclude: Iterable[str] = ()) -> int:
        """
        Fail pending or bridging requests that have not moved within the
        configured timeout.

        Args:
            exclude: Request ids to leave untouched this pass

        Returns:
            Number of requests marked failed
        """
        excluded = set(exclude)
        cutoff = datetime.now(timezone.utc) - self.stale_request_timeout
        async with self.db.get_session() as session:
            requests = LiquidityRequestRepository(session)
            stale = [
                (r.request_id, r.token_id, r.target_chain, r.status, r.updated_at)
                for r in await requests.list_stale(cutoff)
                if r.request_id not in excluded
            ]
            for request_id, token_id, target_chain, status, updated_at in stale:
                await requests.update_request(
                    request_id,
                    status=LiquidityRequestStatus.FAILED.value,
                    last_error=f"No progress in status {status} since {updated_at}",
                )
                logger.warning(
                    f"Liquidity request expired in status {status}",
                    extra={
                        "token_id": token_id,
                        "target_chain": target_chain,
                        "request_id": request_id,
                    },
                )
        return len(stale)

    async def _fail_open_requests(self, token_id: str, target_chain: str, reason: str) -> None:
        async with self.db.get_session() as session:
            requests = LiquidityRequestRepository(session)
            for request in await requests.list_open(token_id=token_id, target_chain=target_chain):
                if request.status != LiquidityRequestStatus.PENDING.value:
                    continue
                await requests.update_request(
                    request.request_id,
                    status=LiquidityRequestStatus.FAILED.value,
                    last_error=reason,
                )
        logger.error(
            "Rebalance attempts exhausted, open requests marked failed",
            extra={"token_id": token_id, "target_chain": target_chain},
        )

    async def _record_request_error(self, request_id: str, error: str) -> None:
        async with self.db.get_session() as session:
            requests = LiquidityRequestRepository(session)
            request = await requests.get_by_request_id(request_id)
            if request is not None:
                await requests.update_request(
                    request_id, attempts=request.attempts + 1, last_error=error
                )

    @staticmethod
    async def _adjust_reserve(
        deployments: DeploymentRepository,
        token_id: str,
        chain: str,
        delta: Decimal,
    ) -> Decimal:
        deployment = await deployments.get(token_id, chain)
        if deployment is None:
            raise DeploymentNotFoundError(token_id, chain)
        new_reserve = parse_amount(deployment.local_reserve, field="local_reserve") + delta
        if new_reserve < 0:
            raise InvalidAmountError(
                f"Reserve on {chain} would become negative",
                details={"token_id": token_id, "chain": chain, "delta": str(delta)},
            )
        deployment.local_reserve = format_amount(new_reserve)
        deployment.updated_at = datetime.now(timezone.utc)
        return new_reserve

    @staticmethod
    def _positive_amount(amount: AmountLike) -> Decimal:
        value = parse_amount(amount)
        if value <= 0:
            raise InvalidAmountError(
                f"amount must be positive: {amount!r}",
                details={"field": "amount", "value": repr(amount)},
            )
        return value


__all__ = ["LiquidityBridgeService", "STORE_ONLY_PREFIX"]

"""
Synchronization engine.

Owns the services and the periodic ticks that drive them. Each tick walks
every relevant token; within one token the steps run in order (monitor before
rebalance, price sync before graduation) under a per-token lock so
overlapping ticks never race on the same rows.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..chains.registry import ChainRegistry
from ..core.exceptions import SyncEngineError, create_safe_error_dict
from ..core.locks import KeyedLock
from ..core.logging import new_trace_id
from ..core.scheduler import SchedulerManager
from ..core.settings import Settings, get_settings
from ..storage.database import DatabaseManager
from ..storage.repositories import LiquidityRequestRepository, TokenRepository
from .global_supply import GlobalSupplyService
from .graduation import GraduationService
from .liquidity_bridge import LiquidityBridgeService
from .price_sync import PriceSyncService
from .reserve_monitor import ReserveMonitorService

logger = logging.getLogger(__name__)


class SyncEngine:
    """Wires the services together and schedules their ticks."""

    def __init__(
        self,
        db: DatabaseManager,
        registry: ChainRegistry,
        settings: Optional[Settings] = None,
        scheduler: Optional[SchedulerManager] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.db = db
        self.registry = registry
        self.scheduler = scheduler or SchedulerManager()
        self.locks = KeyedLock()

        settings = self.settings
        self.supply = GlobalSupplyService(db)
        self.prices = PriceSyncService(db, registry, settings=settings)
        self.reserves = ReserveMonitorService(db, registry, settings=settings)
        self.bridge = LiquidityBridgeService(
            db, registry, reserve_monitor=self.reserves, settings=settings
        )
        self.graduation = GraduationService(db, registry, settings=settings)

        self.tick_counts: Dict[str, int] = {
            "reserve": 0,
            "graduation": 0,
            "price": 0,
            "reconcile": 0,
        }

    async def _for_each_token(
        self,
        job: str,
        token_ids: List[str],
        step: Callable[[str], Awaitable[Any]],
    ) -> Dict[str, Any]:
        """
        Run `step` for every token under its lock.

        Engine errors for one token are logged and do not stop the others;
        store errors propagate and end the tick.
        """
        trace_id = new_trace_id()
        results: Dict[str, Any] = {}
        for token_id in token_ids:
            async with self.locks.acquire(token_id):
                try:
                    results[token_id] = await step(token_id)
                except SyncEngineError as e:
                    logger.error(
                        f"{job} tick failed for token: {e.message}",
                        extra={
                            "token_id": token_id,
                            "job": job,
                            "trace_id": trace_id,
                            "extra_data": create_safe_error_dict(e, trace_id),
                        },
                    )
        return results

    async def reserve_tick(self) -> Dict[str, Any]:
        """Monitor reserves and rebalance every cross-chain token."""
        async with self.db.get_session() as session:
            token_ids = await TokenRepository(session).list_cross_chain_token_ids()

        results = await self._for_each_token("reserve", token_ids, self.bridge.check_and_rebalance)
        self.tick_counts["reserve"] += 1
        rebalanced = [t for t, r in results.items() if r.rebalanced]
        if rebalanced:
            logger.info(
                f"Reserve tick rebalanced {len(rebalanced)} tokens",
                extra={"job": "reserve", "extra_data": {"tokens": rebalanced}},
            )
        return results

    async def graduation_tick(self) -> Dict[str, Any]:
        """Sync prices, then graduate every token that crossed its threshold."""
        token_ids = await self.graduation.list_candidates()

        async def step(token_id: str):
            await self.prices.sync_price(token_id)
            return await self.graduation.check_and_graduate_token(token_id)

        results = await self._for_each_token("graduation", token_ids, step)
        self.tick_counts["graduation"] += 1
        return results

    async def price_monitor_tick(self) -> Dict[str, Any]:
        """Sync prices and run the consistency check for every deployed token."""
        async with self.db.get_session() as session:
            token_ids = await TokenRepository(session).list_synced_token_ids()

        async def step(token_id: str):
            await self.prices.sync_price(token_id)
            return await self.prices.check_price_consistency(token_id)

        results = await self._for_each_token("price", token_ids, step)
        self.tick_counts["price"] += 1
        return results

    async def reconcile_tick(self) -> Dict[str, int]:
        """
        Confirm bridge transfers settled on their target chain, then fail
        requests stuck past the stale timeout.

        Requests whose target chain could not be read are not expired.
        """
        async with self.db.get_session() as session:
            bridging = [
                (r.request_id, r.token_id)
                for r in await LiquidityRequestRepository(session).list_bridging()
            ]
        token_ids = list(dict.fromkeys(token_id for _, token_id in bridging))

        results = await self._for_each_token(
            "reconcile",
            token_ids,
            lambda token_id: self.bridge.settle_bridging_requests(token_id=token_id),
        )
        settled = sum(count for count, _ in results.values())
        unchecked = {request_id for _, ids in results.values() for request_id in ids}
        # tokens whose settlement pass errored keep their bridging requests
        unchecked.update(request_id for request_id, token_id in bridging if token_id not in results)

        expired = await self.bridge.expire_stale_requests(exclude=unchecked)
        self.tick_counts["reconcile"] += 1
        if settled:
            logger.info(
                f"Confirmed {settled} settled bridge transfers",
                extra={"job": "reconcile"},
            )
        if expired:
            logger.warning(
                f"Expired {expired} stale liquidity requests",
                extra={"job": "reconcile"},
            )
        return {"settled": settled, "expired": expired}

    def register_jobs(self) -> None:
        """Register the periodic ticks with the scheduler."""
        self.scheduler.add_interval_job(
            self.reserve_tick,
            id="reserve_monitor",
            seconds=self.settings.reserve_monitor_interval_seconds,
            name="Reserve monitoring and rebalancing",
            run_immediately=True,
        )
        self.scheduler.add_interval_job(
            self.graduation_tick,
            id="graduation_monitor",
            seconds=self.settings.graduation_monitor_interval_seconds,
            name="Graduation monitoring",
            run_immediately=True,
        )
        self.scheduler.add_interval_job(
            self.price_monitor_tick,
            id="price_monitor",
            seconds=self.settings.price_monitor_interval_seconds,
            name="Price deviation monitoring",
        )
        self.scheduler.add_interval_job(
            self.reconcile_tick,
            id="request_reconciliation",
            seconds=self.settings.reconcile_interval_seconds,
            name="Stale liquidity request reconciliation",
        )

    async def start(self) -> None:
        self.register_jobs()
        await self.scheduler.start()
        logger.info(
            "Synchronization engine started",
            extra={"extra_data": {"bridge_enabled": self.registry.bridge_enabled_chains()}},
        )

    async def stop(self) -> None:
        await self.scheduler.stop()
        logger.info("Synchronization engine stopped")

    def status(self) -> Dict[str, Any]:
        """Diagnostic snapshot for operators."""
        return {
            "scheduler_running": self.scheduler.is_running,
            "jobs": self.scheduler.get_jobs() if self.scheduler.is_running else {},
            "tick_counts": dict(self.tick_counts),
            "transfer_counts": dict(self.bridge.transfer_counts),
            "rebalance_backoff": self.bridge.backoff.snapshot(),
            "graduation_backoff": self.graduation.backoff.snapshot(),
            "bridge_enabled_chains": self.registry.bridge_enabled_chains(),
        }


__all__ = ["SyncEngine"]

"""
Tests for the synchronization engine ticks and job registration.
"""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeChainClient, get_deployment, make_registry, seed_token
from crosschain.chains.protocols import PoolCreationResult
from crosschain.core.exceptions import ChainClientError
from crosschain.core.settings import Settings
from crosschain.models import RebalanceResult
from crosschain.services.engine import SyncEngine
from crosschain.storage.models import LiquidityRequestStatus
from crosschain.storage.repositories import LiquidityRequestRepository

POOL_ADDRESS = "0x" + "d1" * 20
REQUEST_ID = "0x" + "11" * 32

# ideal 100 per chain; bsc is short by 80 and ethereum holds 80 spare
IMBALANCED = {
    "ethereum": {"local_supply": "500", "local_reserve": "180"},
    "bsc": {"local_supply": "500", "local_reserve": "20"},
}


async def get_request(db, request_id):
    async with db.get_session() as session:
        return await LiquidityRequestRepository(session).get_by_request_id(request_id)


async def reserves(db, *chains):
    return {chain: Decimal((await get_deployment(db, "token-1", chain)).local_reserve) for chain in chains}


@pytest.fixture
def scheduler():
    mock = MagicMock()
    mock.start = AsyncMock()
    mock.stop = AsyncMock()
    mock.is_running = False
    return mock


@pytest.fixture
def pool_creator():
    creator = MagicMock()
    creator.dex_name = "uniswap-v3"
    creator.create_pool = AsyncMock(
        return_value=PoolCreationResult(success=True, pool_address=POOL_ADDRESS, dex_name="uniswap-v3")
    )
    return creator


class TestTicks:
    """Test suite for the periodic ticks."""

    @pytest.mark.asyncio
    async def test_reserve_tick_rebalances_cross_chain_tokens(self, db, scheduler):
        imbalanced = {
            "ethereum": {"local_supply": "500", "local_reserve": "180"},
            "bsc": {"local_supply": "500", "local_reserve": "20"},
        }
        await seed_token(db, token_id="token-1", deployments=imbalanced)
        await seed_token(db, token_id="token-2", cross_chain_enabled=False, deployments=imbalanced)
        engine = SyncEngine(db, make_registry({}), scheduler=scheduler)

        results = await engine.reserve_tick()

        assert list(results) == ["token-1"]
        assert results["token-1"].rebalanced is True
        assert engine.tick_counts["reserve"] == 1
        untouched = await get_deployment(db, "token-2", "bsc")
        assert untouched.local_reserve == "20"

    @pytest.mark.asyncio
    async def test_engine_error_does_not_stop_other_tokens(self, db, scheduler):
        await seed_token(db, token_id="token-1", deployments={"ethereum": {}})
        await seed_token(db, token_id="token-2", deployments={"ethereum": {}})
        engine = SyncEngine(db, make_registry({}), scheduler=scheduler)

        async def rebalance(token_id):
            if token_id == "token-1":
                raise ChainClientError("rpc down")
            return RebalanceResult(token_id=token_id, rebalanced=False)

        engine.bridge.check_and_rebalance = AsyncMock(side_effect=rebalance)

        results = await engine.reserve_tick()

        assert set(results) == {"token-2"}
        assert engine.bridge.check_and_rebalance.await_count == 2

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self, db, scheduler):
        await seed_token(db, deployments={"ethereum": {}})
        engine = SyncEngine(db, make_registry({}), scheduler=scheduler)
        engine.bridge.check_and_rebalance = AsyncMock(side_effect=RuntimeError("database is locked"))

        with pytest.raises(RuntimeError):
            await engine.reserve_tick()

    @pytest.mark.asyncio
    async def test_graduation_tick_syncs_price_first(self, db, scheduler, pool_creator):
        # price 0.0101 at global supply 1000, market cap 10.1 >= threshold 10
        await seed_token(
            db,
            graduation_threshold="10",
            deployments={"ethereum": {"local_supply": "1000", "local_reserve": "1"}},
        )
        engine = SyncEngine(
            db, make_registry({}, pool_creators={"ethereum": pool_creator}), scheduler=scheduler
        )

        results = await engine.graduation_tick()

        assert results["token-1"].graduated_chains == ["ethereum"]
        deployment = await get_deployment(db, "token-1", "ethereum")
        assert Decimal(deployment.market_cap) == Decimal("10.1")
        assert deployment.is_graduated is True
        pool_creator.create_pool.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_graduation_tick_skips_disabled_tokens(self, db, scheduler, pool_creator):
        await seed_token(db, graduation_threshold="0", deployments={"ethereum": {"local_supply": "1000"}})
        engine = SyncEngine(
            db, make_registry({}, pool_creators={"ethereum": pool_creator}), scheduler=scheduler
        )

        assert await engine.graduation_tick() == {}
        pool_creator.create_pool.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_price_monitor_tick(self, db, scheduler):
        await seed_token(
            db,
            deployments={"ethereum": {"local_supply": "1000"}, "bsc": {"local_supply": "0"}},
        )
        engine = SyncEngine(db, make_registry({}), scheduler=scheduler)

        results = await engine.price_monitor_tick()

        assert results["token-1"].out_of_sync is False
        deployment = await get_deployment(db, "token-1", "ethereum")
        assert Decimal(deployment.market_cap) == Decimal("10.1")

    @pytest.mark.asyncio
    async def test_reconcile_tick(self, db, scheduler):
        engine = SyncEngine(db, make_registry({}), scheduler=scheduler)

        assert await engine.reconcile_tick() == {"settled": 0, "expired": 0}
        assert engine.tick_counts["reconcile"] == 1


class TestReconcile:
    """Settlement then expiry in the reconcile tick."""

    def _engine(self, db, scheduler, optimistic: bool):
        eth = FakeChainClient("ethereum")
        bsc = FakeChainClient("bsc")
        bsc.receipt_events["LiquidityRequested"] = [{"args": {"requestId": bytes.fromhex("11" * 32)}}]
        registry = make_registry({"ethereum": eth, "bsc": bsc}, bridge_chains=["ethereum", "bsc"])
        engine = SyncEngine(
            db,
            registry,
            settings=Settings(optimistic_reserve_updates=optimistic),
            scheduler=scheduler,
        )
        engine.bridge.stale_request_timeout = timedelta(seconds=-1)
        return engine, bsc

    @pytest.mark.asyncio
    @pytest.mark.parametrize("optimistic", [True, False])
    async def test_settled_transfer_is_confirmed_not_expired(self, db, scheduler, optimistic):
        await seed_token(db, deployments=IMBALANCED)
        engine, bsc = self._engine(db, scheduler, optimistic)
        await engine.reserve_tick()
        bsc.logged_events["LiquidityBridged"] = [
            {"transactionHash": "0x" + "ef" * 32, "args": {"requestId": bytes.fromhex("11" * 32)}}
        ]

        assert await engine.reconcile_tick() == {"settled": 1, "expired": 0}

        request = await get_request(db, REQUEST_ID)
        assert request.status == LiquidityRequestStatus.COMPLETED.value
        after = await reserves(db, "ethereum", "bsc")
        assert after == {"ethereum": Decimal(100), "bsc": Decimal(100)}
        assert sum(after.values()) == Decimal(200)

    @pytest.mark.asyncio
    async def test_unsettled_transfer_expires(self, db, scheduler):
        await seed_token(db, deployments=IMBALANCED)
        engine, _ = self._engine(db, scheduler, optimistic=True)
        await engine.reserve_tick()

        assert await engine.reconcile_tick() == {"settled": 0, "expired": 1}
        assert (await get_request(db, REQUEST_ID)).status == LiquidityRequestStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_unreadable_target_chain_keeps_request(self, db, scheduler):
        await seed_token(db, deployments=IMBALANCED)
        engine, bsc = self._engine(db, scheduler, optimistic=False)
        await engine.reserve_tick()
        bsc.query_events = AsyncMock(side_effect=ChainClientError("rpc down"))

        assert await engine.reconcile_tick() == {"settled": 0, "expired": 0}
        assert (await get_request(db, REQUEST_ID)).status == LiquidityRequestStatus.BRIDGING.value


class TestLifecycle:
    """Job registration, start/stop and status."""

    def test_injected_settings_reach_services(self, db, scheduler):
        settings = Settings(
            min_reserve_ratio=0.4,
            optimistic_reserve_updates=False,
            max_rebalance_attempts=7,
            max_graduation_attempts=2,
            max_price_variance=0.01,
            stale_request_timeout_minutes=5,
        )

        engine = SyncEngine(db, make_registry({}), settings=settings, scheduler=scheduler)

        assert engine.reserves.min_reserve_ratio == Decimal("0.4")
        assert engine.bridge.reserve_monitor is engine.reserves
        assert engine.bridge.optimistic is False
        assert engine.bridge.backoff.config.max_attempts == 7
        assert engine.bridge.stale_request_timeout == timedelta(minutes=5)
        assert engine.graduation.backoff.config.max_attempts == 2
        assert engine.prices.max_price_variance == Decimal("0.01")

    def test_register_jobs(self, db, scheduler):
        engine = SyncEngine(db, make_registry({}), scheduler=scheduler)

        engine.register_jobs()

        registered = {c.kwargs["id"]: c.kwargs for c in scheduler.add_interval_job.call_args_list}
        assert set(registered) == {
            "reserve_monitor",
            "graduation_monitor",
            "price_monitor",
            "request_reconciliation",
        }
        assert registered["reserve_monitor"]["seconds"] == engine.settings.reserve_monitor_interval_seconds
        assert registered["reserve_monitor"]["run_immediately"] is True
        assert registered["price_monitor"]["seconds"] == engine.settings.price_monitor_interval_seconds

    @pytest.mark.asyncio
    async def test_start_and_stop(self, db, scheduler):
        engine = SyncEngine(db, make_registry({}), scheduler=scheduler)

        await engine.start()
        await engine.stop()

        scheduler.start.assert_awaited_once()
        scheduler.stop.assert_awaited_once()
        assert scheduler.add_interval_job.call_count == 4

    def test_status(self, db, scheduler):
        engine = SyncEngine(db, make_registry({}), scheduler=scheduler)

        status = engine.status()

        assert status["scheduler_running"] is False
        assert status["jobs"] == {}
        assert status["transfer_counts"] == {"bridge": 0, "store_only": 0}
        assert status["bridge_enabled_chains"] == []

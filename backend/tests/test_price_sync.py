"""
Tests for price synchronization and the price consistency check.
"""
from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import FakeChainClient, get_deployment, make_registry, seed_token
from crosschain.core.exceptions import ChainClientError, TokenNotFoundError
from crosschain.services.global_supply import GlobalSupplyService
from crosschain.services.price_sync import PriceSyncService, calculate_price


def test_calculate_price_is_linear():
    assert calculate_price(Decimal("0.0001"), Decimal("0.00001"), Decimal("0")) == Decimal("0.0001")
    assert calculate_price(Decimal("1"), Decimal("2"), Decimal("3")) == Decimal("7")


class TestSyncPrice:
    """Test suite for PriceSyncService.sync_price."""

    @pytest.mark.asyncio
    async def test_end_to_end_two_chains(self, db):
        """Chain A sold 1000, chain B sold nothing."""
        await seed_token(
            db,
            base_price="0.0001",
            slope="0.00001",
            deployments={"ethereum": {"local_supply": "1000"}, "bsc": {"local_supply": "0"}},
        )
        service = PriceSyncService(db)

        result = await service.sync_price("token-1")

        assert result.global_supply == Decimal("1000")
        assert result.price == Decimal("0.0101")
        assert result.market_caps["ethereum"] == Decimal("10.1")
        assert result.market_caps["bsc"] == Decimal("0")

        eth = await get_deployment(db, "token-1", "ethereum")
        bsc = await get_deployment(db, "token-1", "bsc")
        assert Decimal(eth.market_cap) == Decimal("10.1")
        assert Decimal(bsc.market_cap) == Decimal("0")

    @pytest.mark.asyncio
    async def test_price_identical_across_chains(self, db):
        """Market caps divided by local supply give the same price on every chain."""
        await seed_token(
            db,
            base_price="0.5",
            slope="0.001",
            deployments={
                "ethereum": {"local_supply": "300"},
                "bsc": {"local_supply": "150"},
                "base": {"local_supply": "50"},
            },
        )
        result = await PriceSyncService(db).sync_price("token-1")

        implied = {
            chain: cap / supply
            for chain, cap, supply in (
                ("ethereum", result.market_caps["ethereum"], Decimal(300)),
                ("bsc", result.market_caps["bsc"], Decimal(150)),
                ("base", result.market_caps["base"], Decimal(50)),
            )
        }
        assert set(implied.values()) == {result.price}
        assert result.price == Decimal("1.0")

    @pytest.mark.asyncio
    async def test_supply_update_moves_every_chain(self, db):
        """A trade on one chain changes the market cap on the others."""
        await seed_token(
            db,
            base_price="1",
            slope="0.01",
            deployments={"ethereum": {"local_supply": "100"}, "bsc": {"local_supply": "100"}},
        )
        prices = PriceSyncService(db)
        before = await prices.sync_price("token-1")

        await GlobalSupplyService(db).update_local_supply("token-1", "ethereum", "200")
        after = await prices.sync_price("token-1")

        assert after.price > before.price
        assert after.market_caps["bsc"] > before.market_caps["bsc"]

    @pytest.mark.asyncio
    async def test_unknown_token_raises(self, db):
        with pytest.raises(TokenNotFoundError):
            await PriceSyncService(db).sync_price("missing")


class TestPriceConsistency:
    """Test suite for the read-only consistency diagnostic."""

    @pytest.mark.asyncio
    async def test_formula_prices_are_consistent(self, db):
        await seed_token(
            db,
            deployments={"ethereum": {"local_supply": "10"}, "bsc": {"local_supply": "20"}},
        )
        service = PriceSyncService(db)

        report = await service.check_price_consistency("token-1")

        assert report.out_of_sync is False
        assert report.coefficient_of_variation == Decimal(0)
        assert {d.source for d in report.deviations} == {"formula"}
        assert service.get_price_alerts("token-1") == []

    @pytest.mark.asyncio
    async def test_divergent_curve_quotes_are_flagged(self, db):
        await seed_token(
            db,
            deployments={"ethereum": {"local_supply": "10"}, "bsc": {"local_supply": "20"}},
        )
        eth = FakeChainClient("ethereum")
        bsc = FakeChainClient("bsc")
        eth.call_results["getCurrentPrice"] = 10**18          # 1.00
        bsc.call_results["getCurrentPrice"] = 11 * 10**17     # 1.10
        service = PriceSyncService(db, make_registry({"ethereum": eth, "bsc": bsc}))

        report = await service.check_price_consistency("token-1")

        # mean 1.05, population std 0.05 -> cv ~ 4.76%
        assert report.out_of_sync is True
        assert report.mean_price == Decimal("1.05")
        assert report.coefficient_of_variation > Decimal("0.005")
        assert {d.source for d in report.deviations} == {"curve"}
        assert len(service.get_price_alerts("token-1")) == 1

    @pytest.mark.asyncio
    async def test_small_deviation_within_tolerance(self, db):
        await seed_token(
            db,
            deployments={"ethereum": {"local_supply": "10"}, "bsc": {"local_supply": "20"}},
        )
        eth = FakeChainClient("ethereum")
        bsc = FakeChainClient("bsc")
        eth.call_results["getCurrentPrice"] = 1000 * 10**15    # 1.000
        bsc.call_results["getCurrentPrice"] = 1004 * 10**15    # 1.004
        service = PriceSyncService(db, make_registry({"ethereum": eth, "bsc": bsc}))

        report = await service.check_price_consistency("token-1")

        assert report.out_of_sync is False

    @pytest.mark.asyncio
    async def test_failed_curve_read_falls_back_to_formula(self, db):
        await seed_token(db, deployments={"ethereum": {"local_supply": "10"}})
        eth = FakeChainClient("ethereum")
        eth.call_results["getCurrentPrice"] = ChainClientError("rpc down")
        service = PriceSyncService(db, make_registry({"ethereum": eth}))

        report = await service.check_price_consistency("token-1")

        assert report.deviations[0].source == "formula"
        assert report.out_of_sync is False

    @pytest.mark.asyncio
    async def test_check_does_not_write_market_caps(self, db):
        await seed_token(db, deployments={"ethereum": {"local_supply": "10"}})
        await PriceSyncService(db).check_price_consistency("token-1")

        deployment = await get_deployment(db, "token-1", "ethereum")
        assert deployment.market_cap == "0"

"""
Tests for the chain layer: registry, bridge contract wrapper, DEX pool creators.

No network access: the registry is built from settings without touching the
RPC endpoints, and contract wrappers run against FakeChainClient.
"""
from __future__ import annotations

from decimal import Decimal

import pytest
from web3 import Web3

from conftest import BRIDGE_ADDRESS, TOKEN_ADDRESS, FakeChainClient, make_registry
from crosschain.chains.bridge import (
    LiquidityBridgeContract,
    from_wei,
    request_id_to_bytes,
    to_wei,
)
from crosschain.chains.evm_client import EvmChainClient
from crosschain.chains.registry import ChainRegistry
from crosschain.core.exceptions import ChainClientError, ConfigurationError
from crosschain.core.settings import KNOWN_CHAINS, Settings
from crosschain.dex.pool_factory import (
    DEX_CONFIGS,
    UniswapV2PoolCreator,
    UniswapV3PoolCreator,
    build_pool_creator,
)

PRIVATE_KEY = "0x" + "11" * 32
POOL_ADDRESS = "0x" + "d1" * 20


def only_chain_settings(chain: str, **overrides) -> Settings:
    """Settings with every RPC URL cleared except `chain`'s."""
    values = {f"{c.replace('-', '_')}_rpc_url": None for c in KNOWN_CHAINS}
    values[f"{chain.replace('-', '_')}_rpc_url"] = "http://localhost:8545"
    values.update(overrides)
    return Settings(**values)


class TestChainRegistry:
    """Test suite for ChainRegistry."""

    def test_from_settings_builds_configured_chains(self):
        settings = only_chain_settings(
            "ethereum",
            ethereum_liquidity_bridge_address=BRIDGE_ADDRESS,
            bridge_private_key=PRIVATE_KEY,
        )

        registry = ChainRegistry.from_settings(settings)

        client = registry.client_for("ethereum")
        assert isinstance(client, EvmChainClient)
        assert client.has_signer is True
        assert registry.client_for("bsc") is None
        assert registry.bridge_enabled_chains() == ["ethereum"]
        assert isinstance(registry.pool_creator_for("ethereum"), UniswapV3PoolCreator)
        assert registry.bridge_for("ethereum") is not None
        assert registry.bridge_for("bsc") is None

    def test_bridge_requires_signer_for_writes(self):
        client = FakeChainClient("bsc", signer=False)
        registry = make_registry({"bsc": client}, bridge_chains=["bsc"])

        assert registry.bridge_for("bsc") is None
        assert registry.bridge_for("bsc", require_signer=False) is not None
        assert registry.bridge_enabled_chains() == []

    def test_eid_lookup(self):
        registry = make_registry({})
        assert registry.eid_for("ethereum") == 30110
        assert registry.eid_for("bsc") == 30102
        assert registry.eid_for("unknown") is None

    def test_settings_key_fallback(self):
        settings = Settings(bridge_private_key="shared", bsc_private_key="bsc-only")
        assert settings.get_private_key("bsc") == "bsc-only"
        assert settings.get_private_key("base-sepolia") == "shared"


class TestEvmChainClient:
    """Signer handling that needs no RPC round-trip."""

    @pytest.mark.asyncio
    async def test_read_only_client_cannot_submit(self):
        client = EvmChainClient("ethereum", "http://localhost:8545", chain_id=1)

        assert client.has_signer is False
        with pytest.raises(ConfigurationError):
            await client.submit(BRIDGE_ADDRESS, [], "updateReserve")

    def test_signer_address(self):
        client = EvmChainClient("ethereum", "http://localhost:8545", private_key=PRIVATE_KEY)
        assert Web3.is_checksum_address(client.signer_address)


class TestBridgeContract:
    """Test suite for LiquidityBridgeContract."""

    def test_unit_conversion(self):
        assert to_wei(Decimal("1.5")) == 15 * 10**17
        assert from_wei(25 * 10**16) == Decimal("0.25")

    def test_request_id_must_be_bytes32(self):
        assert request_id_to_bytes("0x" + "ab" * 32) == bytes.fromhex("ab" * 32)
        with pytest.raises(ValueError):
            request_id_to_bytes("0x1234")

    @pytest.mark.asyncio
    async def test_request_id_from_receipt_event(self):
        client = FakeChainClient("bsc")
        client.receipt_events["LiquidityRequested"] = [{"args": {"requestId": bytes.fromhex("22" * 32)}}]
        bridge = LiquidityBridgeContract(client, BRIDGE_ADDRESS)

        tx_hash, request_id, _ = await bridge.request_liquidity(TOKEN_ADDRESS, 30102, Decimal(3))

        assert request_id == "0x" + "22" * 32
        assert client.submitted[0]["function"] == "requestLiquidity"
        assert client.submitted[0]["args"] == (Web3.to_checksum_address(TOKEN_ADDRESS), 30102, 3 * 10**18)

    @pytest.mark.asyncio
    async def test_request_id_from_block_logs(self):
        class LoggingClient(FakeChainClient):
            async def submit(self, *args, **kwargs):
                tx_hash = await super().submit(*args, **kwargs)
                self.logged_events["LiquidityRequested"] = [
                    {"transactionHash": "0x" + "99" * 32, "args": {"requestId": bytes.fromhex("44" * 32)}},
                    {"transactionHash": tx_hash.upper().replace("0X", "0x"), "args": {"requestId": bytes.fromhex("33" * 32)}},
                ]
                return tx_hash

        bridge = LiquidityBridgeContract(LoggingClient("bsc"), BRIDGE_ADDRESS)

        _, request_id, _ = await bridge.request_liquidity(TOKEN_ADDRESS, 30102, Decimal(1))

        assert request_id == "0x" + "33" * 32

    @pytest.mark.asyncio
    async def test_find_settlement_matches_request_id(self):
        client = FakeChainClient("bsc", signer=False)
        client.logged_events["LiquidityBridged"] = [
            {"transactionHash": "0x" + "01" * 32, "args": {"requestId": bytes.fromhex("44" * 32)}},
            {"transactionHash": "0x" + "02" * 32, "args": {"requestId": bytes.fromhex("33" * 32)}},
        ]
        bridge = LiquidityBridgeContract(client, BRIDGE_ADDRESS)

        assert await bridge.find_settlement("0x" + "33" * 32, from_block=100) == "0x" + "02" * 32
        assert await bridge.find_settlement("0x" + "55" * 32) is None

    @pytest.mark.asyncio
    async def test_request_returns_mined_block(self):
        client = FakeChainClient("bsc")
        client.receipt_events["LiquidityRequested"] = [{"args": {"requestId": bytes.fromhex("22" * 32)}}]

        _, _, block_number = await LiquidityBridgeContract(client, BRIDGE_ADDRESS).request_liquidity(
            TOKEN_ADDRESS, 30102, Decimal(1)
        )

        assert block_number == 100

    @pytest.mark.asyncio
    async def test_bridge_liquidity_sends_value(self):
        client = FakeChainClient("ethereum")
        bridge = LiquidityBridgeContract(client, BRIDGE_ADDRESS)

        await bridge.bridge_liquidity("0x" + "22" * 32, Decimal("0.5"))

        tx = client.submitted[0]
        assert tx["function"] == "bridgeLiquidity"
        assert tx["value_wei"] == 5 * 10**17
        assert tx["args"] == (bytes.fromhex("22" * 32), 5 * 10**17, b"")

    @pytest.mark.asyncio
    async def test_reserve_views(self):
        client = FakeChainClient("ethereum", signer=False)
        client.call_results["hasSufficientReserves"] = True
        client.call_results["chainReserves"] = 4 * 10**18
        bridge = LiquidityBridgeContract(client, BRIDGE_ADDRESS)

        assert await bridge.has_sufficient_reserves(TOKEN_ADDRESS, 30110, Decimal(1)) is True
        assert await bridge.chain_reserves(TOKEN_ADDRESS, 30110) == Decimal(4)


class TestPoolCreators:
    """Test suite for the DEX pool creators."""

    def test_build_pool_creator_per_chain(self):
        assert isinstance(build_pool_creator("ethereum", FakeChainClient("ethereum")), UniswapV3PoolCreator)
        assert isinstance(build_pool_creator("bsc", FakeChainClient("bsc")), UniswapV2PoolCreator)
        assert build_pool_creator("base", FakeChainClient("base")).dex_name == "baseswap"
        assert build_pool_creator("polygon", FakeChainClient("polygon")) is None

    @pytest.mark.asyncio
    async def test_v2_pair_creation(self):
        client = FakeChainClient("bsc")
        client.receipt_events["PairCreated"] = [{"args": {"pair": POOL_ADDRESS}}]
        creator = build_pool_creator("bsc", client)

        result = await creator.create_pool(TOKEN_ADDRESS, Decimal(1), Decimal(1000))

        assert result.success is True
        assert result.pool_address == POOL_ADDRESS
        assert result.dex_name == "pancakeswap"
        tx = client.submitted[0]
        assert tx["function"] == "createPair"
        assert tx["address"] == DEX_CONFIGS["bsc"].factory_address
        assert tx["args"] == (
            Web3.to_checksum_address(TOKEN_ADDRESS),
            Web3.to_checksum_address(DEX_CONFIGS["bsc"].wrapped_native),
        )

    @pytest.mark.asyncio
    async def test_v3_pool_creation_uses_fee_tier(self):
        client = FakeChainClient("ethereum")
        client.receipt_events["PoolCreated"] = [{"args": {"pool": POOL_ADDRESS}}]

        result = await build_pool_creator("ethereum", client).create_pool(TOKEN_ADDRESS, Decimal(1), Decimal(1))

        assert result.success is True
        assert client.submitted[0]["function"] == "createPool"
        assert client.submitted[0]["args"][2] == 3000

    @pytest.mark.asyncio
    async def test_missing_event_is_failure(self):
        client = FakeChainClient("bsc")

        result = await build_pool_creator("bsc", client).create_pool(TOKEN_ADDRESS, Decimal(1), Decimal(1))

        assert result.success is False
        assert result.tx_hash == client.submitted[0]["tx_hash"]
        assert "PairCreated" in result.error

    @pytest.mark.asyncio
    async def test_submit_error_is_failure(self):
        client = FakeChainClient("bsc")
        client.submit_error = ChainClientError("insufficient funds for gas")

        result = await build_pool_creator("bsc", client).create_pool(TOKEN_ADDRESS, Decimal(1), Decimal(1))

        assert result.success is False
        assert result.error == "insufficient funds for gas"

    @pytest.mark.asyncio
    async def test_no_signer(self):
        client = FakeChainClient("bsc", signer=False)

        result = await build_pool_creator("bsc", client).create_pool(TOKEN_ADDRESS, Decimal(1), Decimal(1))

        assert result.success is False
        assert client.submitted == []

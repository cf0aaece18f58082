"""
DEX pool creation for graduating tokens.

Uniswap V3 on Ethereum, PancakeSwap V2 on BSC and BaseSwap on Base. Each
creator pairs the token with the chain's wrapped native currency through the
DEX factory and reads the new pool address from the factory event.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from web3 import Web3

from ..chains.protocols import ChainClient, DexPoolCreator, PoolCreationResult
from ..core.exceptions import SyncEngineError

logger = logging.getLogger(__name__)

UNISWAP_V3_DEFAULT_FEE = 3000  # 0.3%


@dataclass(frozen=True)
class DexConfig:
    """Factory and wrapped-native addresses for one chain's DEX."""
    dex_name: str
    factory_address: str
    wrapped_native: str
    version: str  # "v2" or "v3"


DEX_CONFIGS: Dict[str, DexConfig] = {
    "ethereum": DexConfig(
        dex_name="uniswap-v3",
        factory_address="0x1F98431c8aD98523631AE4a59f267346ea31F984",
        wrapped_native="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        version="v3",
    ),
    "sepolia": DexConfig(
        dex_name="uniswap-v3",
        factory_address="0x0227628f3F023bb0B980b67D528571c95c6DaC1c",
        wrapped_native="0xfFf9976782d46CC05630D1f6eBAb18b2324d6B14",
        version="v3",
    ),
    "bsc": DexConfig(
        dex_name="pancakeswap",
        factory_address="0xcA143Ce32Fe78f1f7019d7d551a6402fC5350c73",
        wrapped_native="0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",
        version="v2",
    ),
    "bsc-testnet": DexConfig(
        dex_name="pancakeswap",
        factory_address="0x6725F303b657a9451d8BA641348b6761A6CC7a17",
        wrapped_native="0xae13d989daC2f0dEbFf460aC112a837C89BAa7cd",
        version="v2",
    ),
    "base": DexConfig(
        dex_name="baseswap",
        factory_address="0xFDa619b6d20975be80A10332c39b9ef4B4f480Ba",
        wrapped_native="0x4200000000000000000000000000000000000006",
        version="v2",
    ),
    "base-sepolia": DexConfig(
        dex_name="baseswap",
        factory_address="0x7E0987E5b3a30e3f2828572Bb659A548460a3003",
        wrapped_native="0x4200000000000000000000000000000000000006",
        version="v2",
    ),
}

V2_FACTORY_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "createPair",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "tokenA", "type": "address"},
            {"name": "tokenB", "type": "address"},
        ],
        "outputs": [{"name": "pair", "type": "address"}],
    },
    {
        "type": "event",
        "name": "PairCreated",
        "anonymous": False,
        "inputs": [
            {"name": "token0", "type": "address", "indexed": True},
            {"name": "token1", "type": "address", "indexed": True},
            {"name": "pair", "type": "address", "indexed": False},
            {"name": "", "type": "uint256", "indexed": False},
        ],
    },
]

V3_FACTORY_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "createPool",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "tokenA", "type": "address"},
            {"name": "tokenB", "type": "address"},
            {"name": "fee", "type": "uint24"},
        ],
        "outputs": [{"name": "pool", "type": "address"}],
    },
    {
        "type": "event",
        "name": "PoolCreated",
        "anonymous": False,
        "inputs": [
            {"name": "token0", "type": "address", "indexed": True},
            {"name": "token1", "type": "address", "indexed": True},
            {"name": "fee", "type": "uint24", "indexed": True},
            {"name": "tickSpacing", "type": "int24", "indexed": False},
            {"name": "pool", "type": "address", "indexed": False},
        ],
    },
]


class _FactoryPoolCreator(DexPoolCreator):
    """Shared submit/receipt/event flow for factory-based pool creation."""

    abi: List[Dict[str, Any]]
    function_name: str
    event_name: str
    pool_field: str

    def __init__(self, client: ChainClient, config: DexConfig) -> None:
        self.client = client
        self.config = config
        self.dex_name = config.dex_name

    def _function_args(self, token_address: str) -> tuple:
        return (
            Web3.to_checksum_address(token_address),
            Web3.to_checksum_address(self.config.wrapped_native),
        )

    async def create_pool(
        self,
        token_address: str,
        reserve_amount: Decimal,
        token_amount: Decimal,
    ) -> PoolCreationResult:
        if not self.client.has_signer:
            return PoolCreationResult(
                success=False,
                dex_name=self.dex_name,
                error=f"No signer configured for {self.client.chain}",
            )

        try:
            tx_hash = await self.client.submit(
                self.config.factory_address,
                self.abi,
                self.function_name,
                self._function_args(token_address),
            )
            receipt = await self.client.wait_for_receipt(tx_hash)
            events = await self.client.decode_events(
                self.config.factory_address, self.abi, self.event_name, receipt
            )
        except (SyncEngineError, ValueError) as e:
            logger.error(
                f"{self.dex_name} pool creation failed: {e}",
                extra={"chain": self.client.chain},
            )
            return PoolCreationResult(success=False, dex_name=self.dex_name, error=str(e))

        pool_address = _first_arg(events, self.pool_field)
        if pool_address is None:
            return PoolCreationResult(
                success=False,
                tx_hash=tx_hash,
                dex_name=self.dex_name,
                error=f"{self.event_name} event not found in receipt",
            )

        logger.info(
            f"Created {self.dex_name} pool {pool_address}",
            extra={
                "chain": self.client.chain,
                "tx_hash": tx_hash,
                "extra_data": {
                    "token_address": token_address,
                    "reserve_amount": str(reserve_amount),
                    "token_amount": str(token_amount),
                },
            },
        )
        return PoolCreationResult(
            success=True,
            pool_address=pool_address,
            tx_hash=tx_hash,
            dex_name=self.dex_name,
        )


class UniswapV2PoolCreator(_FactoryPoolCreator):
    """PancakeSwap / BaseSwap style factory: createPair(tokenA, tokenB)."""

    abi = V2_FACTORY_ABI
    function_name = "createPair"
    event_name = "PairCreated"
    pool_field = "pair"


class UniswapV3PoolCreator(_FactoryPoolCreator):
    """Uniswap V3 factory: createPool(tokenA, tokenB, fee)."""

    abi = V3_FACTORY_ABI
    function_name = "createPool"
    event_name = "PoolCreated"
    pool_field = "pool"

    def __init__(self, client: ChainClient, config: DexConfig, fee: int = UNISWAP_V3_DEFAULT_FEE) -> None:
        super().__init__(client, config)
        self.fee = fee

    def _function_args(self, token_address: str) -> tuple:
        return super()._function_args(token_address) + (self.fee,)


def build_pool_creator(chain: str, client: ChainClient) -> Optional[DexPoolCreator]:
    """
    Pool creator for a chain, or None when no DEX is configured for it.

    Args:
        chain: Chain identifier
        client: Client for the same chain
    """
    config = DEX_CONFIGS.get(chain)
    if config is None:
        return None
    if config.version == "v3":
        return UniswapV3PoolCreator(client, config)
    return UniswapV2PoolCreator(client, config)


def _first_arg(events: List[Dict[str, Any]], field: str) -> Optional[str]:
    for event in events:
        value = event.get("args", {}).get(field)
        if value:
            return str(value)
    return None


__all__ = [
    "DEX_CONFIGS",
    "DexConfig",
    "UniswapV2PoolCreator",
    "UniswapV3PoolCreator",
    "build_pool_creator",
]

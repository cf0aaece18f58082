"""
Liquidity bridge contract wrapper.

Thin typed layer over the on-chain LiquidityBridge contract: encodes
arguments, converts between whole units and wei, resolves the request id
of a liquidity request from its transaction and finds its settlement event
on the destination chain.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from web3 import Web3

from .protocols import ChainClient

logger = logging.getLogger(__name__)


LIQUIDITY_BRIDGE_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "requestLiquidity",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "token", "type": "address"},
            {"name": "targetChainEID", "type": "uint32"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "type": "function",
        "name": "bridgeLiquidity",
        "stateMutability": "payable",
        "inputs": [
            {"name": "requestId", "type": "bytes32"},
            {"name": "nativeAmount", "type": "uint256"},
            {"name": "message", "type": "bytes"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "updateReserve",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "token", "type": "address"},
            {"name": "chainEID", "type": "uint32"},
            {"name": "newReserve", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "hasSufficientReserves",
        "stateMutability": "view",
        "inputs": [
            {"name": "token", "type": "address"},
            {"name": "chainEID", "type": "uint32"},
            {"name": "requiredAmount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "chainReserves",
        "stateMutability": "view",
        "inputs": [
            {"name": "token", "type": "address"},
            {"name": "chainEID", "type": "uint32"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "LiquidityRequested",
        "anonymous": False,
        "inputs": [
            {"name": "token", "type": "address", "indexed": True},
            {"name": "targetChainEID", "type": "uint32", "indexed": False},
            {"name": "sourceChainEID", "type": "uint32", "indexed": False},
            {"name": "amount", "type": "uint256", "indexed": False},
            {"name": "requestId", "type": "bytes32", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "LiquidityBridged",
        "anonymous": False,
        "inputs": [
            {"name": "token", "type": "address", "indexed": True},
            {"name": "sourceChainEID", "type": "uint32", "indexed": False},
            {"name": "targetChainEID", "type": "uint32", "indexed": False},
            {"name": "amount", "type": "uint256", "indexed": False},
            {"name": "requestId", "type": "bytes32", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "ReserveUpdated",
        "anonymous": False,
        "inputs": [
            {"name": "token", "type": "address", "indexed": True},
            {"name": "chainEID", "type": "uint32", "indexed": False},
            {"name": "newReserve", "type": "uint256", "indexed": False},
        ],
    },
]


def to_wei(amount: Decimal) -> int:
    """Whole native units to wei, truncating sub-wei dust."""
    return int(Web3.to_wei(amount, "ether"))


def from_wei(amount_wei: int) -> Decimal:
    return Decimal(amount_wei) / Decimal(10**18)


def request_id_to_bytes(request_id: str) -> bytes:
    """Decode a 0x-prefixed bytes32 request id."""
    raw = bytes.fromhex(request_id[2:] if request_id.startswith("0x") else request_id)
    if len(raw) != 32:
        raise ValueError(f"Request id is not bytes32: {request_id}")
    return raw


def _as_hex(value: Any) -> str:
    if isinstance(value, str):
        return value if value.startswith("0x") else f"0x{value}"
    return Web3.to_hex(value)


class LiquidityBridgeContract:
    """LiquidityBridge contract deployed at `address` on the client's chain."""

    def __init__(self, client: ChainClient, address: str) -> None:
        self.client = client
        self.address = address

    @property
    def chain(self) -> str:
        return self.client.chain

    async def request_liquidity(
        self,
        token_address: str,
        target_eid: int,
        amount: Decimal,
    ) -> Tuple[str, str, Optional[int]]:
        """
        Submit requestLiquidity and wait for it to be mined.

        Returns:
            Tuple of (tx_hash, request_id, block_number). The request id is
            taken from the LiquidityRequested event in the receipt, then from
            an event-log query over the mined block, then falls back to the
            tx hash.
        """
        tx_hash = await self.client.submit(
            self.address,
            LIQUIDITY_BRIDGE_ABI,
            "requestLiquidity",
            (Web3.to_checksum_address(token_address), target_eid, to_wei(amount)),
        )
        receipt = await self.client.wait_for_receipt(tx_hash)

        request_id = await self._request_id_from_receipt(receipt)
        if request_id is None:
            request_id = await self._request_id_from_logs(tx_hash, receipt)
        if request_id is None:
            logger.warning(
                "LiquidityRequested event not found, using tx hash as request id",
                extra={"chain": self.chain, "tx_hash": tx_hash},
            )
            request_id = tx_hash

        return tx_hash, request_id, receipt.get("blockNumber")

    async def _request_id_from_receipt(self, receipt: Dict[str, Any]) -> Optional[str]:
        events = await self.client.decode_events(
            self.address, LIQUIDITY_BRIDGE_ABI, "LiquidityRequested", receipt
        )
        for event in events:
            request_id = event["args"].get("requestId")
            if request_id:
                return _as_hex(request_id)
        return None

    async def _request_id_from_logs(self, tx_hash: str, receipt: Dict[str, Any]) -> Optional[str]:
        block_number = receipt.get("blockNumber")
        if block_number is None:
            return None

        events = await self.client.query_events(
            self.address,
            LIQUIDITY_BRIDGE_ABI,
            "LiquidityRequested",
            from_block=block_number,
            to_block=block_number,
        )
        for event in events:
            if str(event.get("transactionHash", "")).lower() == tx_hash.lower():
                request_id = event["args"].get("requestId")
                if request_id:
                    return _as_hex(request_id)
        return None

    async def bridge_liquidity(
        self,
        request_id: str,
        amount: Decimal,
        message: bytes = b"",
    ) -> str:
        """Send `amount` of native currency through the bridge; returns the mined tx hash."""
        amount_wei = to_wei(amount)
        tx_hash = await self.client.submit(
            self.address,
            LIQUIDITY_BRIDGE_ABI,
            "bridgeLiquidity",
            (request_id_to_bytes(request_id), amount_wei, message),
            value_wei=amount_wei,
        )
        await self.client.wait_for_receipt(tx_hash)
        return tx_hash

    async def find_settlement(self, request_id: str, from_block: int = 0) -> Optional[str]:
        """
        Look for the LiquidityBridged event that settles `request_id` on this chain.

        Returns:
            Hash of the settling transaction (empty when the log omits it),
            or None when no event matches
        """
        events = await self.client.query_events(
            self.address,
            LIQUIDITY_BRIDGE_ABI,
            "LiquidityBridged",
            from_block=from_block,
        )
        for event in events:
            settled_id = event["args"].get("requestId")
            if settled_id and _as_hex(settled_id).lower() == request_id.lower():
                return str(event.get("transactionHash", ""))
        return None

    async def update_reserve(self, token_address: str, eid: int, new_reserve: Decimal) -> str:
        tx_hash = await self.client.submit(
            self.address,
            LIQUIDITY_BRIDGE_ABI,
            "updateReserve",
            (Web3.to_checksum_address(token_address), eid, to_wei(new_reserve)),
        )
        await self.client.wait_for_receipt(tx_hash)
        return tx_hash

    async def has_sufficient_reserves(self, token_address: str, eid: int, required: Decimal) -> bool:
        return bool(
            await self.client.call(
                self.address,
                LIQUIDITY_BRIDGE_ABI,
                "hasSufficientReserves",
                Web3.to_checksum_address(token_address),
                eid,
                to_wei(required),
            )
        )

    async def chain_reserves(self, token_address: str, eid: int) -> Decimal:
        reserve_wei = await self.client.call(
            self.address,
            LIQUIDITY_BRIDGE_ABI,
            "chainReserves",
            Web3.to_checksum_address(token_address),
            eid,
        )
        return from_wei(int(reserve_wei))


__all__ = [
    "LIQUIDITY_BRIDGE_ABI",
    "LiquidityBridgeContract",
    "from_wei",
    "request_id_to_bytes",
    "to_wei",
]

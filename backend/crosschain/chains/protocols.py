"""
Protocol interfaces for chain and DEX collaborators.

Services depend on these abstractions only, so tests and alternative chain
families can plug in without touching the engine.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field


class PoolCreationResult(BaseModel):
    """Outcome of a DEX pool creation attempt."""

    success: bool = Field(..., description="Pool was created on-chain")
    pool_address: Optional[str] = Field(None, description="Created pool/pair address")
    tx_hash: Optional[str] = Field(None, description="Creation transaction hash")
    dex_name: Optional[str] = Field(None, description="DEX the pool lives on")
    error: Optional[str] = Field(None, description="Failure reason")


class ChainClient(ABC):
    """Per-chain capability client used by the bridge and graduation services."""

    chain: str

    @property
    @abstractmethod
    def has_signer(self) -> bool:
        """True when the client can sign and submit transactions."""

    @abstractmethod
    async def read_balance(self, address: str) -> Decimal:
        """
        Native balance of an address in whole units.

        Raises:
            ChainClientError: When the RPC read fails or times out
        """

    @abstractmethod
    async def get_code(self, address: str) -> bytes:
        """Deployed bytecode at an address (empty for EOAs)."""

    @abstractmethod
    async def call(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        function: str,
        *args: Any,
    ) -> Any:
        """
        Execute a read-only contract call.

        Raises:
            ChainClientError: When the call reverts, fails or times out
        """

    @abstractmethod
    async def submit(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        function: str,
        args: Sequence[Any] = (),
        value_wei: int = 0,
    ) -> str:
        """
        Estimate gas, sign and broadcast a contract transaction.

        Returns:
            Transaction hash as 0x-prefixed hex

        Raises:
            ChainClientError: When estimation, signing or broadcast fails
        """

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """
        Wait for a transaction to be mined.

        Raises:
            ChainClientError: On timeout or when the transaction reverted
        """

    @abstractmethod
    async def decode_events(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        event_name: str,
        receipt: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """Decode the named event from a receipt's logs."""

    @abstractmethod
    async def query_events(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        event_name: str,
        from_block: int,
        to_block: Any = "latest",
    ) -> List[Dict[str, Any]]:
        """
        Query decoded event logs filtered by contract address and event topic.

        Each entry carries `args`, `transactionHash` and `blockNumber`.
        """


class DexPoolCreator(ABC):
    """Creates a liquidity pool for a graduating token."""

    dex_name: str

    @abstractmethod
    async def create_pool(
        self,
        token_address: str,
        reserve_amount: Decimal,
        token_amount: Decimal,
    ) -> PoolCreationResult:
        """
        Create a token/wrapped-native pool.

        Never raises for chain failures; returns success=False with the error.
        """


__all__ = ["ChainClient", "DexPoolCreator", "PoolCreationResult"]

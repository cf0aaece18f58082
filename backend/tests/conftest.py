"""
Shared fixtures for the synchronization engine tests.

Every test gets its own in-memory SQLite database. Chain access goes through
FakeChainClient, an in-process stand-in that records submitted transactions
and returns canned call results and events.
"""
from __future__ import annotations

import itertools
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pytest

from crosschain.chains.protocols import ChainClient, DexPoolCreator
from crosschain.chains.registry import CHAIN_IDS, LAYERZERO_EIDS, ChainProfile, ChainRegistry
from crosschain.storage.database import DatabaseManager
from crosschain.storage.models import DeploymentStatus
from crosschain.storage.repositories import DeploymentRepository, TokenRepository

BRIDGE_ADDRESS = "0x" + "b1" * 20
TOKEN_ADDRESS = "0x" + "a1" * 20
CURVE_ADDRESS = "0x" + "c1" * 20


class FakeChainClient(ChainClient):
    """In-memory chain client."""

    _counter = itertools.count(1)

    def __init__(self, chain: str, signer: bool = True) -> None:
        self.chain = chain
        self._signer = signer
        self.submitted: List[Dict[str, Any]] = []
        self.call_results: Dict[str, Any] = {}
        self.receipt_events: Dict[str, List[Dict[str, Any]]] = {}
        self.logged_events: Dict[str, List[Dict[str, Any]]] = {}
        self.submit_error: Optional[Exception] = None
        self.calls: List[str] = []

    @property
    def has_signer(self) -> bool:
        return self._signer

    async def read_balance(self, address: str) -> Decimal:
        return Decimal(0)

    async def get_code(self, address: str) -> bytes:
        return b""

    async def call(self, address: str, abi: Sequence[Dict[str, Any]], function: str, *args: Any) -> Any:
        self.calls.append(function)
        result = self.call_results[function]
        if isinstance(result, Exception):
            raise result
        return result

    async def submit(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        function: str,
        args: Sequence[Any] = (),
        value_wei: int = 0,
    ) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        tx_hash = "0x" + f"{next(self._counter):064x}"
        self.submitted.append(
            {
                "address": address,
                "function": function,
                "args": tuple(args),
                "value_wei": value_wei,
                "tx_hash": tx_hash,
            }
        )
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        return {"transactionHash": tx_hash, "blockNumber": 100, "status": 1}

    async def decode_events(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        event_name: str,
        receipt: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        return list(self.receipt_events.get(event_name, []))

    async def query_events(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        event_name: str,
        from_block: int,
        to_block: Any = "latest",
    ) -> List[Dict[str, Any]]:
        return list(self.logged_events.get(event_name, []))

    def submitted_functions(self) -> List[str]:
        return [tx["function"] for tx in self.submitted]


def make_registry(
    clients: Dict[str, ChainClient],
    bridge_chains: Iterable[str] = (),
    pool_creators: Optional[Dict[str, DexPoolCreator]] = None,
) -> ChainRegistry:
    """Registry over fake clients; chains in `bridge_chains` get a bridge contract."""
    bridge_chains = set(bridge_chains)
    profiles = {
        chain: ChainProfile(
            chain=chain,
            chain_id=CHAIN_IDS.get(chain),
            eid=LAYERZERO_EIDS.get(chain),
            rpc_url="http://localhost:8545",
            bridge_address=BRIDGE_ADDRESS if chain in bridge_chains else None,
            has_signer=client.has_signer,
        )
        for chain, client in clients.items()
    }
    return ChainRegistry(profiles, clients, pool_creators or {})


async def seed_token(
    db: DatabaseManager,
    token_id: str = "token-1",
    base_price: str = "0.0001",
    slope: str = "0.00001",
    graduation_threshold: str = "0",
    cross_chain_enabled: bool = True,
    deployments: Optional[Dict[str, Dict[str, Any]]] = None,
) -> None:
    """
    Insert a token and its deployments.

    `deployments` maps chain to column overrides (local_supply,
    local_reserve, status, token_address, ...).
    """
    async with db.get_session() as session:
        await TokenRepository(session).create_token(
            token_id=token_id,
            base_price=base_price,
            slope=slope,
            graduation_threshold=graduation_threshold,
            cross_chain_enabled=cross_chain_enabled,
            name="Test Token",
            symbol="TEST",
        )
        repo = DeploymentRepository(session)
        for chain, values in (deployments or {}).items():
            await repo.create_deployment(
                token_id=token_id,
                chain=chain,
                token_address=values.get("token_address", TOKEN_ADDRESS),
                curve_address=values.get("curve_address", CURVE_ADDRESS),
                status=values.get("status", DeploymentStatus.DEPLOYED),
                local_supply=values.get("local_supply", "0"),
                local_reserve=values.get("local_reserve", "0"),
            )


async def get_deployment(db: DatabaseManager, token_id: str, chain: str):
    async with db.get_session() as session:
        return await DeploymentRepository(session).get(token_id, chain)


@pytest.fixture
async def db():
    """Fresh in-memory database per test."""
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:", echo=False)
    await manager.initialize(create_tables=True)
    yield manager
    await manager.close()

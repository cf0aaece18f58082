"""
Chain registry.

Maps chain identifiers to the clients, bridge contracts and DEX pool
creators the engine uses. Built once at startup from settings; services only
ever ask the registry, never construct clients themselves.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..core.settings import KNOWN_CHAINS, Settings
from ..dex.pool_factory import build_pool_creator
from .bridge import LiquidityBridgeContract
from .evm_client import EvmChainClient
from .protocols import ChainClient, DexPoolCreator

logger = logging.getLogger(__name__)


CHAIN_IDS: Dict[str, int] = {
    "ethereum": 1,
    "sepolia": 11155111,
    "bsc": 56,
    "bsc-testnet": 97,
    "base": 8453,
    "base-sepolia": 84532,
}

# LayerZero V2 endpoint ids
LAYERZERO_EIDS: Dict[str, int] = {
    "ethereum": 30110,
    "sepolia": 40161,
    "bsc": 30102,
    "bsc-testnet": 40102,
    "base": 30145,
    "base-sepolia": 40245,
}


@dataclass(frozen=True)
class ChainProfile:
    """Static facts about one configured chain."""
    chain: str
    chain_id: Optional[int]
    eid: Optional[int]
    rpc_url: Optional[str]
    bridge_address: Optional[str]
    has_signer: bool

    @property
    def bridge_enabled(self) -> bool:
        """Bridge contract and signer both present."""
        return bool(self.bridge_address) and self.has_signer


class ChainRegistry:
    """Capability lookup per chain identifier."""

    def __init__(
        self,
        profiles: Optional[Dict[str, ChainProfile]] = None,
        clients: Optional[Dict[str, ChainClient]] = None,
        pool_creators: Optional[Dict[str, DexPoolCreator]] = None,
    ) -> None:
        self._profiles: Dict[str, ChainProfile] = dict(profiles or {})
        self._clients: Dict[str, ChainClient] = dict(clients or {})
        self._pool_creators: Dict[str, DexPoolCreator] = dict(pool_creators or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChainRegistry":
        """
        Build clients for every known chain that has an RPC URL.

        Args:
            settings: Engine settings

        Returns:
            Populated registry
        """
        profiles: Dict[str, ChainProfile] = {}
        clients: Dict[str, ChainClient] = {}
        pool_creators: Dict[str, DexPoolCreator] = {}

        for chain in KNOWN_CHAINS:
            rpc_url = settings.get_rpc_url(chain)
            private_key = settings.get_private_key(chain)
            profiles[chain] = ChainProfile(
                chain=chain,
                chain_id=CHAIN_IDS.get(chain),
                eid=LAYERZERO_EIDS.get(chain),
                rpc_url=rpc_url,
                bridge_address=settings.get_bridge_address(chain),
                has_signer=bool(private_key),
            )
            if not rpc_url:
                continue

            client = EvmChainClient(
                chain=chain,
                rpc_url=rpc_url,
                chain_id=CHAIN_IDS.get(chain),
                private_key=private_key,
            )
            clients[chain] = client
            creator = build_pool_creator(chain, client)
            if creator is not None:
                pool_creators[chain] = creator

        registry = cls(profiles, clients, pool_creators)
        logger.info(
            "Chain registry built",
            extra={
                "extra_data": {
                    "chains": sorted(clients),
                    "bridge_enabled": registry.bridge_enabled_chains(),
                }
            },
        )
        return registry

    def profile(self, chain: str) -> Optional[ChainProfile]:
        return self._profiles.get(chain)

    def client_for(self, chain: str) -> Optional[ChainClient]:
        return self._clients.get(chain)

    def eid_for(self, chain: str) -> Optional[int]:
        profile = self._profiles.get(chain)
        if profile is not None and profile.eid is not None:
            return profile.eid
        return LAYERZERO_EIDS.get(chain)

    def bridge_for(self, chain: str, require_signer: bool = True) -> Optional[LiquidityBridgeContract]:
        """
        Bridge contract wrapper for a chain.

        Args:
            chain: Chain identifier
            require_signer: Only return a wrapper that can submit transactions

        Returns:
            Wrapper, or None when the chain cannot use the on-chain bridge
        """
        profile = self._profiles.get(chain)
        client = self._clients.get(chain)
        if profile is None or client is None or not profile.bridge_address:
            return None
        if require_signer and not client.has_signer:
            return None
        return LiquidityBridgeContract(client, profile.bridge_address)

    def pool_creator_for(self, chain: str) -> Optional[DexPoolCreator]:
        return self._pool_creators.get(chain)

    def bridge_enabled_chains(self) -> List[str]:
        return sorted(
            chain for chain, profile in self._profiles.items()
            if profile.bridge_enabled and chain in self._clients
        )

    async def close(self) -> None:
        """Close every client that holds a network session."""
        for client in self._clients.values():
            close = getattr(client, "close", None)
            if close is not None:
                await close()


__all__ = ["CHAIN_IDS", "LAYERZERO_EIDS", "ChainProfile", "ChainRegistry"]

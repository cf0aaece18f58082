"""
Reserve monitoring.

Compares each chain's collateral against its supply-proportional share of the
token's total collateral:

    ideal    = total_reserve * local_supply / total_supply   (equal split at 0 supply)
    minimum  = min_reserve_ratio * ideal
    critical : reserve <  critical_reserve_ratio * minimum
    low      : reserve <  minimum
"""
from __future__ import annotations

import logging
from decimal import Decimal, localcontext
from typing import List, Optional, Sequence

from ..chains.registry import ChainRegistry
from ..core.amounts import AMOUNT_PRECISION, AmountLike, ZERO, parse_amount, sum_amounts
from ..core.exceptions import DeploymentNotFoundError, SyncEngineError
from ..core.settings import Settings, get_settings
from ..models import ChainReserveStatus, ReserveCheck, ReserveSnapshot, ReserveStatus
from ..storage.database import DatabaseManager
from ..storage.models import TokenDeployment
from ..storage.repositories import DeploymentRepository

logger = logging.getLogger(__name__)


def compute_snapshots(
    deployments: Sequence[TokenDeployment],
    min_reserve_ratio: Decimal,
    critical_reserve_ratio: Decimal,
) -> List[ReserveSnapshot]:
    """Reserve snapshots for a set of deployments of one token."""
    if not deployments:
        return []

    reserves = [parse_amount(d.local_reserve, field="local_reserve") for d in deployments]
    supplies = [parse_amount(d.local_supply, field="local_supply") for d in deployments]
    total_reserve = sum_amounts(reserves)
    total_supply = sum_amounts(supplies)

    snapshots = []
    with localcontext() as ctx:
        ctx.prec = AMOUNT_PRECISION
        for deployment, reserve, supply in zip(deployments, reserves, supplies):
            if total_supply == 0:
                ideal = total_reserve / len(deployments)
            else:
                ideal = total_reserve * supply / total_supply
            minimum = min_reserve_ratio * ideal

            snapshots.append(
                ReserveSnapshot(
                    chain=deployment.chain,
                    reserve=reserve,
                    local_supply=supply,
                    ideal_reserve=ideal,
                    min_reserve=minimum,
                    status=classify_reserve(reserve, minimum, critical_reserve_ratio),
                )
            )
    return snapshots


def classify_reserve(reserve: Decimal, min_reserve: Decimal, critical_reserve_ratio: Decimal) -> ReserveStatus:
    if reserve < critical_reserve_ratio * min_reserve:
        return ReserveStatus.CRITICAL
    if reserve < min_reserve:
        return ReserveStatus.LOW
    return ReserveStatus.SUFFICIENT


class ReserveMonitorService:
    """Per-chain reserve health for a token."""

    def __init__(
        self,
        db: DatabaseManager,
        registry: Optional[ChainRegistry] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.db = db
        self.registry = registry
        self.min_reserve_ratio = Decimal(str(settings.min_reserve_ratio))
        self.critical_reserve_ratio = Decimal(str(settings.critical_reserve_ratio))

    async def monitor_reserves(self, token_id: str) -> List[ReserveSnapshot]:
        """
        Reserve snapshot of every deployed chain of the token.

        Pure computation over the current rows; nothing is written.
        """
        async with self.db.get_session() as session:
            deployments = await DeploymentRepository(session).list_for_token(
                token_id, deployed_only=True
            )
        return compute_snapshots(deployments, self.min_reserve_ratio, self.critical_reserve_ratio)

    async def check_reserves(
        self,
        token_id: str,
        chain: str,
        required_amount: AmountLike,
    ) -> ReserveCheck:
        """
        Can `chain` pay out `required_amount` for this token.

        Asks the chain's bridge contract when one is configured, the stored
        reserve otherwise or when the contract read fails.
        """
        required = parse_amount(required_amount, field="required_amount")

        async with self.db.get_session() as session:
            deployment = await DeploymentRepository(session).get(token_id, chain)

        if deployment is None:
            return ReserveCheck(
                sufficient=False,
                current_reserve=ZERO,
                required_amount=required,
                source="store",
            )

        on_chain = await self._check_on_chain(deployment, required)
        if on_chain is not None:
            return on_chain

        current = parse_amount(deployment.local_reserve, field="local_reserve")
        return ReserveCheck(
            sufficient=current >= required,
            current_reserve=current,
            required_amount=required,
            source="store",
        )

    async def _check_on_chain(self, deployment: TokenDeployment, required: Decimal) -> Optional[ReserveCheck]:
        if self.registry is None or not deployment.token_address:
            return None
        bridge = self.registry.bridge_for(deployment.chain, require_signer=False)
        eid = self.registry.eid_for(deployment.chain)
        if bridge is None or eid is None:
            return None

        try:
            sufficient = await bridge.has_sufficient_reserves(deployment.token_address, eid, required)
            current = await bridge.chain_reserves(deployment.token_address, eid)
        except (SyncEngineError, ValueError) as e:
            logger.warning(
                f"Bridge reserve read failed, falling back to stored reserve: {e}",
                extra={"token_id": deployment.token_id, "chain": deployment.chain},
            )
            return None

        return ReserveCheck(
            sufficient=sufficient,
            current_reserve=current,
            required_amount=required,
            source="bridge",
        )

    async def get_chain_reserve_status(self, token_id: str, chain: str) -> ChainReserveStatus:
        """
        Snapshot of one chain plus whether it can honor sells.

        Raises:
            DeploymentNotFoundError: Chain has no deployed row for the token
        """
        snapshots = await self.monitor_reserves(token_id)
        for snapshot in snapshots:
            if snapshot.chain == chain:
                return ChainReserveStatus(
                    snapshot=snapshot,
                    can_sell=snapshot.reserve >= self.critical_reserve_ratio * snapshot.min_reserve,
                )
        raise DeploymentNotFoundError(token_id, chain)


__all__ = ["ReserveMonitorService", "compute_snapshots", "classify_reserve"]

"""
Global supply aggregation.

The global supply of a token is the sum of the sold supply on every chain it
is deployed on. It is recomputed from the deployment rows on every read and
never persisted, so it cannot drift from the per-chain figures.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict

from ..core.amounts import AmountLike, format_amount, parse_amount, sum_amounts
from ..core.exceptions import DeploymentNotFoundError
from ..storage.database import DatabaseManager
from ..storage.repositories import DeploymentRepository

logger = logging.getLogger(__name__)


class GlobalSupplyService:
    """Aggregates per-chain sold supply into one figure per token."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def get_global_supply(self, token_id: str) -> Decimal:
        """Sum of local_supply over every deployment of the token (0 when none)."""
        supply_by_chain = await self.get_supply_by_chain(token_id)
        return sum_amounts(supply_by_chain.values())

    async def get_supply_by_chain(self, token_id: str) -> Dict[str, Decimal]:
        """Map of chain to local supply for every deployment of the token."""
        async with self.db.get_session() as session:
            deployments = await DeploymentRepository(session).list_for_token(token_id)

        return {
            deployment.chain: parse_amount(deployment.local_supply, field="local_supply")
            for deployment in deployments
        }

    async def update_local_supply(
        self,
        token_id: str,
        chain: str,
        new_supply: AmountLike,
    ) -> Decimal:
        """
        Overwrite a chain's local supply and return the new global supply.

        Args:
            token_id: Token identifier
            chain: Chain the supply changed on
            new_supply: New sold supply as a decimal string

        Returns:
            Recomputed global supply

        Raises:
            InvalidAmountError: Value is not a non-negative number; nothing is written
            DeploymentNotFoundError: No deployment row for (token, chain)
        """
        supply = parse_amount(new_supply, field="local_supply")

        async with self.db.get_session() as session:
            updated = await DeploymentRepository(session).set_local_supply(
                token_id, chain, format_amount(supply)
            )
            if updated == 0:
                raise DeploymentNotFoundError(token_id, chain)

        global_supply = await self.get_global_supply(token_id)
        logger.info(
            f"Local supply updated to {format_amount(supply)}, global supply {format_amount(global_supply)}",
            extra={"token_id": token_id, "chain": chain},
        )
        return global_supply


__all__ = ["GlobalSupplyService"]

"""
Price synchronization across chains.

Every chain quotes the same price because the price is a function of global,
not local, supply:

    price = base_price + slope * global_supply

Per-chain market caps differ only by each chain's own share of the supply.
"""
from __future__ import annotations

import logging
from collections import defaultdict, deque
from datetime import datetime, timezone
from decimal import Decimal, localcontext
from typing import Deque, Dict, List, Optional

from ..chains.bridge import from_wei
from ..chains.registry import ChainRegistry
from ..core.amounts import AMOUNT_PRECISION, ZERO, format_amount, parse_amount, sum_amounts
from ..core.exceptions import SyncEngineError, TokenNotFoundError
from ..core.settings import Settings, get_settings
from ..models import PriceConsistencyReport, PriceDeviation, PriceSyncResult
from ..storage.database import DatabaseManager
from ..storage.repositories import DeploymentRepository, TokenRepository

logger = logging.getLogger(__name__)

MAX_ALERTS_PER_TOKEN = 50

BONDING_CURVE_ABI = [
    {
        "type": "function",
        "name": "getCurrentPrice",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


def calculate_price(base_price: Decimal, slope: Decimal, global_supply: Decimal) -> Decimal:
    """Linear bonding-curve price at the given global supply."""
    with localcontext() as ctx:
        ctx.prec = AMOUNT_PRECISION
        return base_price + slope * global_supply


def calculate_market_cap(price: Decimal, local_supply: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = AMOUNT_PRECISION
        return price * local_supply


class PriceSyncService:
    """
    Applies the bonding-curve formula to the global supply and publishes
    per-chain market caps.
    """

    def __init__(
        self,
        db: DatabaseManager,
        registry: Optional[ChainRegistry] = None,
        max_price_variance: Optional[float] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.db = db
        self.registry = registry
        self.max_price_variance = Decimal(str(
            settings.max_price_variance if max_price_variance is None else max_price_variance
        ))
        self._alerts: Dict[str, Deque[PriceConsistencyReport]] = defaultdict(
            lambda: deque(maxlen=MAX_ALERTS_PER_TOKEN)
        )

    async def sync_price(self, token_id: str) -> PriceSyncResult:
        """
        Recompute the synchronized price and persist every chain's market cap.

        Args:
            token_id: Token identifier

        Returns:
            Price, global supply and the market cap written per chain

        Raises:
            TokenNotFoundError: Unknown token
        """
        async with self.db.get_session() as session:
            token = await TokenRepository(session).get(token_id)
            if token is None:
                raise TokenNotFoundError(token_id)

            deployments_repo = DeploymentRepository(session)
            deployments = await deployments_repo.list_for_token(token_id)

            supplies = {
                d.chain: parse_amount(d.local_supply, field="local_supply") for d in deployments
            }
            global_supply = sum_amounts(supplies.values())
            price = calculate_price(
                parse_amount(token.base_price, field="base_price"),
                parse_amount(token.slope, field="slope"),
                global_supply,
            )
            market_caps = {
                chain: calculate_market_cap(price, supply) for chain, supply in supplies.items()
            }
            await deployments_repo.set_market_caps(
                token_id, {chain: format_amount(cap) for chain, cap in market_caps.items()}
            )

        logger.debug(
            f"Price synced at {format_amount(price)}",
            extra={
                "token_id": token_id,
                "extra_data": {
                    "global_supply": format_amount(global_supply),
                    "chains": len(market_caps),
                },
            },
        )
        return PriceSyncResult(
            token_id=token_id,
            price=price,
            global_supply=global_supply,
            market_caps=market_caps,
        )

    async def check_price_consistency(self, token_id: str) -> PriceConsistencyReport:
        """
        Sample each deployed chain's quoted price and flag divergence.

        Uses the curve's on-chain quote where a client and curve address are
        available, the synchronized formula price otherwise. Read-only.
        """
        async with self.db.get_session() as session:
            token = await TokenRepository(session).get(token_id)
            if token is None:
                raise TokenNotFoundError(token_id)
            deployments = await DeploymentRepository(session).list_for_token(
                token_id, deployed_only=True
            )

        global_supply = sum_amounts(
            parse_amount(d.local_supply, field="local_supply") for d in deployments
        )
        formula_price = calculate_price(
            parse_amount(token.base_price, field="base_price"),
            parse_amount(token.slope, field="slope"),
            global_supply,
        )

        samples: List[tuple] = []
        for deployment in deployments:
            quoted = await self._quote_curve_price(deployment.chain, deployment.curve_address)
            if quoted is None:
                samples.append((deployment.chain, formula_price, "formula"))
            else:
                samples.append((deployment.chain, quoted, "curve"))

        report = _consistency_report(token_id, samples, self.max_price_variance)
        if report.out_of_sync:
            self._alerts[token_id].append(report)
            logger.warning(
                f"Price deviation detected: coefficient of variation "
                f"{format_amount(report.coefficient_of_variation)}",
                extra={
                    "token_id": token_id,
                    "extra_data": {
                        "prices": {d.chain: format_amount(d.price) for d in report.deviations},
                    },
                },
            )
        return report

    async def _quote_curve_price(self, chain: str, curve_address: Optional[str]) -> Optional[Decimal]:
        if self.registry is None or not curve_address:
            return None
        client = self.registry.client_for(chain)
        if client is None:
            return None
        try:
            price_wei = await client.call(curve_address, BONDING_CURVE_ABI, "getCurrentPrice")
        except SyncEngineError as e:
            logger.warning(
                f"Curve price read failed, using formula price: {e}",
                extra={"chain": chain},
            )
            return None
        return from_wei(int(price_wei))

    def get_price_alerts(self, token_id: str) -> List[PriceConsistencyReport]:
        """Out-of-sync reports retained for a token, oldest first."""
        return list(self._alerts.get(token_id, ()))


def _consistency_report(
    token_id: str,
    samples: List[tuple],
    max_variance: Decimal,
) -> PriceConsistencyReport:
    """Coefficient of variation (population std / mean) over sampled prices."""
    now = datetime.now(timezone.utc)
    if not samples:
        return PriceConsistencyReport(
            token_id=token_id,
            mean_price=ZERO,
            coefficient_of_variation=ZERO,
            out_of_sync=False,
            checked_at=now,
        )

    with localcontext() as ctx:
        ctx.prec = AMOUNT_PRECISION
        prices = [price for _, price, _ in samples]
        mean = sum(prices, ZERO) / len(prices)
        if mean == 0:
            cv = ZERO
        else:
            variance = sum(((p - mean) ** 2 for p in prices), ZERO) / len(prices)
            cv = variance.sqrt() / mean

        deviations = [
            PriceDeviation(
                chain=chain,
                price=price,
                deviation_percent=(abs(price - mean) / mean * 100) if mean != 0 else ZERO,
                source=source,
            )
            for chain, price, source in samples
        ]

    return PriceConsistencyReport(
        token_id=token_id,
        mean_price=mean,
        coefficient_of_variation=cv,
        out_of_sync=cv > max_variance,
        deviations=deviations,
        checked_at=now,
    )


__all__ = ["PriceSyncService", "calculate_price", "calculate_market_cap", "BONDING_CURVE_ABI"]

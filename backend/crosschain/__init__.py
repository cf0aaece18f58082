"""
Cross-chain virtual-liquidity synchronization engine.

Aggregates per-chain bonding-curve supply into one price, keeps each chain's
collateral near its supply-proportional share, and graduates tokens into DEX
pools once their market cap crosses the configured threshold.
"""

__version__ = "1.0.0"

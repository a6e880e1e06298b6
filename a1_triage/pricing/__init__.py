"""
Pricing for exploit valuation
Combines oracle feeds and DEX reserves with per-chain fallbacks
"""

from .aggregator import PriceAggregator, classify_liquidity, estimate_price_impact
from .tokens import TokenRegistry, TokenInfo
from .cache import PriceCache

__all__ = [
    "PriceAggregator",
    "classify_liquidity",
    "estimate_price_impact",
    "TokenRegistry",
    "TokenInfo",
    "PriceCache",
]

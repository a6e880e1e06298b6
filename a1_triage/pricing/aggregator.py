"""
Price aggregator combining oracle feeds and exchange reserves

Data sources:
1. Chainlink feeds - only for allow-listed tokens of the chain
2. DEX reserves - token/wrapped-native pair on the chain's V2 exchange

Each source fails on its own; if both fail the quote is all zeros with
confidence 0.
"""

import asyncio
from typing import Any, Dict, Optional, Tuple
import logging

from .cache import PriceCache
from .tokens import TokenRegistry
from ..interfaces import DexQuoteProvider, PriceFeedProvider
from ..models import LiquidityClass, PriceQuote


ORACLE_SOURCE = "Chainlink"
DEX_SOURCE = "DEX"

UNIT = 10 ** 18
TRADE_SIZE_FRACTION = 0.01
MAX_PRICE_IMPACT = 0.10

HIGH_LIQUIDITY_USD = 1_000_000
MEDIUM_LIQUIDITY_USD = 100_000
LOW_LIQUIDITY_USD = 10_000

ORACLE_CONFIDENCE = 40
DEX_CONFIDENCE = 30
CONVERSION_CONFIDENCE = 20
DEEP_LIQUIDITY_CONFIDENCE = 10
MULTI_SOURCE_CONFIDENCE = 10


def classify_liquidity(liquidity_usd: float) -> LiquidityClass:
    """Bucket USD liquidity; every threshold is exclusive"""
    if liquidity_usd > HIGH_LIQUIDITY_USD:
        return LiquidityClass.HIGH
    if liquidity_usd > MEDIUM_LIQUIDITY_USD:
        return LiquidityClass.MEDIUM
    if liquidity_usd > LOW_LIQUIDITY_USD:
        return LiquidityClass.LOW
    return LiquidityClass.VERY_LOW


def estimate_price_impact(liquidity_usd: float) -> float:
    """Impact of a trade sized at 1% of pool liquidity, capped at 10%"""
    if liquidity_usd <= 0:
        return 0.0
    trade_size = liquidity_usd * TRADE_SIZE_FRACTION
    return min(trade_size / liquidity_usd, MAX_PRICE_IMPACT)


class PriceAggregator:
    """
    Resolves a token's USD and native price from independent evidence sources
    """

    def __init__(
        self,
        feed_provider: PriceFeedProvider,
        dex_provider: DexQuoteProvider,
        cache: Optional[PriceCache] = None
    ):
        self.feed_provider = feed_provider
        self.dex_provider = dex_provider
        self.cache = cache if cache is not None else PriceCache()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def native_price_usd(self, chain_id: int, block_number: Optional[int] = None) -> float:
        """
        USD price of the chain's native asset

        Reads the chain's native feed; on any failure returns the configured
        approximate price for the chain.
        """
        symbol = TokenRegistry.get_base_currency(chain_id)
        cached = self.cache.get_price(chain_id, symbol, block_number)
        if cached:
            return cached.price_usd

        chain = TokenRegistry.get_chain(chain_id)
        fallback = TokenRegistry.get_fallback_native_price(chain_id)

        if chain is None or not chain.native_feed:
            self.logger.warning(f"No native price feed for chain {chain_id}, using fallback ${fallback}")
            self.cache.set_price(chain_id, symbol, fallback, "fallback", block_number)
            return fallback

        try:
            price = await self.feed_provider.latest_price(chain.native_feed, chain_id, block_number)
            source = "chainlink"
        except Exception as e:
            self.logger.warning(f"⚠️ Native price feed failed for chain {chain_id}: {e}; using fallback ${fallback}")
            price = fallback
            source = "fallback"

        self.cache.set_price(chain_id, symbol, price, source, block_number)
        return price

    async def price_of(
        self,
        token_address: str,
        chain_id: int,
        block_number: Optional[int] = None
    ) -> PriceQuote:
        """
        Price a token at a block

        Returns:
            PriceQuote with price_usd, price_eth, liquidity_usd, price_impact,
            sources and an additive 0-100 confidence
        """
        oracle_price, dex_result = await asyncio.gather(
            self._oracle_price(token_address, chain_id, block_number),
            self._dex_price(token_address, chain_id, block_number),
        )

        quote = PriceQuote()
        confidence = 0
        prices = []

        if oracle_price is not None and oracle_price > 0:
            prices.append(oracle_price)
            quote.sources.append(ORACLE_SOURCE)
            confidence += ORACLE_CONFIDENCE

        if dex_result is not None and dex_result[0] > 0:
            dex_price, liquidity_usd, price_impact = dex_result
            prices.append(dex_price)
            quote.liquidity_usd = liquidity_usd
            quote.price_impact = price_impact
            quote.sources.append(DEX_SOURCE)
            confidence += DEX_CONFIDENCE

        if prices:
            quote.price_usd = sum(prices) / len(prices)
            native_price = await self.native_price_usd(chain_id, block_number)
            if native_price > 0:
                quote.price_eth = quote.price_usd / native_price
                confidence += CONVERSION_CONFIDENCE

        if quote.liquidity_usd > HIGH_LIQUIDITY_USD:
            confidence += DEEP_LIQUIDITY_CONFIDENCE
        if len(quote.sources) > 1:
            confidence += MULTI_SOURCE_CONFIDENCE

        quote.confidence = min(confidence, 100)

        if not prices:
            self.logger.warning(f"No price source available for {token_address} on chain {chain_id}")
        else:
            self.logger.debug(
                f"💰 {token_address}: ${quote.price_usd:.6f} from {'+'.join(quote.sources)} "
                f"(liquidity ${quote.liquidity_usd:,.0f}, confidence {quote.confidence})"
            )
        return quote

    async def _oracle_price(self, token_address: str, chain_id: int,
                            block_number: Optional[int]) -> Optional[float]:
        chain = TokenRegistry.get_chain(chain_id)
        feed = chain.feed_for(token_address) if chain else None
        if not feed:
            return None

        try:
            return await self.feed_provider.latest_price(feed, chain_id, block_number)
        except Exception as e:
            self.logger.debug(f"Chainlink price not available for {token_address}: {e}")
            return None

    async def _dex_price(self, token_address: str, chain_id: int,
                         block_number: Optional[int]) -> Optional[Tuple[float, float, float]]:
        """Returns (price_usd, liquidity_usd, price_impact) or None"""
        chain = TokenRegistry.get_chain(chain_id)
        if chain is None:
            return None
        wrapped_native = chain.wrapped_native

        try:
            _, native_reserve = await self.dex_provider.pair_reserves(
                token_address, wrapped_native, chain_id, block_number
            )
            amount_out = await self.dex_provider.quote(
                token_address, wrapped_native, UNIT, chain_id, block_number
            )
            native_price = await self.native_price_usd(chain_id, block_number)
        except Exception as e:
            self.logger.debug(f"DEX price not available for {token_address}: {e}")
            return None

        price_in_native = amount_out / UNIT
        price_usd = price_in_native * native_price
        liquidity_usd = (native_reserve / UNIT) * native_price * 2
        return price_usd, liquidity_usd, estimate_price_impact(liquidity_usd)

    async def get_status(self) -> Dict[str, Any]:
        return {
            "status": "operational",
            "supported_chains": TokenRegistry.supported_chains(),
            "cache": self.cache.get_cache_stats(),
        }

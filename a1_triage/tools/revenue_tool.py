"""
Revenue Normalizer - Values extracted tokens, nets out gas and scores risk

Each token is normalized in isolation: a failed metadata or price lookup
zeroes that token and attaches the error, the rest of the batch continues.
"""

import asyncio
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .base import BaseTool
from ..errors import ItemIsolationFailure
from ..interfaces import TokenMetadataProvider
from ..models import (
    ExtractedToken,
    GasCost,
    LiquidityClass,
    MarketContext,
    NormalizedToken,
    RevenueReport,
    RevenueSummary,
    RiskLevel,
)
from ..pricing.aggregator import PriceAggregator, classify_liquidity


GWEI = Decimal(10) ** -9

HIGH_IMPACT = 0.05
SMALL_PROFIT_USD = 1000
TINY_PROFIT_USD = 100

RISK_THRESHOLDS = (
    (8, RiskLevel.VERY_HIGH),
    (5, RiskLevel.HIGH),
    (2, RiskLevel.MEDIUM),
)

THIN_LIQUIDITY = (LiquidityClass.LOW, LiquidityClass.VERY_LOW)


def to_decimal_amount(raw_amount: str, decimals: int) -> Decimal:
    """Scale an integer token amount by its decimals"""
    return Decimal(int(raw_amount)) / (Decimal(10) ** decimals)


def risk_score(tokens: List[NormalizedToken], net_profit_usd: float) -> int:
    """
    2 per thin-liquidity token, 3 per high-impact token, 4 per errored
    token, plus 2 below $1000 net and another 3 below $100 net
    """
    score = 2 * sum(1 for t in tokens if t.liquidity in THIN_LIQUIDITY)
    score += 3 * sum(1 for t in tokens if t.price_impact > HIGH_IMPACT)
    score += 4 * sum(1 for t in tokens if t.error)
    if net_profit_usd < SMALL_PROFIT_USD:
        score += 2
    if net_profit_usd < TINY_PROFIT_USD:
        score += 3
    return score


def risk_level(score: int) -> RiskLevel:
    for threshold, level in RISK_THRESHOLDS:
        if score >= threshold:
            return level
    return RiskLevel.LOW


def market_context(tokens: List[NormalizedToken]) -> MarketContext:
    priced = [t for t in tokens if not t.error]
    return MarketContext(
        total_liquidity_usd=sum(t.liquidity_usd for t in priced),
        average_price_impact=(sum(t.price_impact for t in priced) / len(priced)) if priced else 0.0,
        high_liquidity_tokens=sum(1 for t in priced if t.liquidity == LiquidityClass.HIGH),
        risk_tokens=sum(
            1 for t in priced
            if t.liquidity == LiquidityClass.VERY_LOW or t.price_impact > HIGH_IMPACT
        ),
    )


class RevenueNormalizer(BaseTool):
    """
    Converts extracted token amounts into USD and native value

    Features:
    - Metadata resolution for tokens reported without symbol/decimals
    - Multi-source pricing through PriceAggregator
    - Gas cost netting (gas price given in gwei)
    - Composite risk level
    """

    def __init__(
        self,
        aggregator: PriceAggregator,
        metadata_provider: TokenMetadataProvider,
        config=None,
        concurrency: Optional[int] = None
    ):
        super().__init__(config)
        self.aggregator = aggregator
        self.metadata_provider = metadata_provider
        if concurrency is None:
            concurrency = getattr(config, "normalization_concurrency", 1)
        self.concurrency = max(1, concurrency)

    def get_name(self) -> str:
        return "revenue_normalizer"

    def get_description(self) -> str:
        return "Normalizes exploit proceeds to USD/native value net of gas with a risk level"

    async def normalize(
        self,
        chain_id: int,
        extracted_tokens: List[ExtractedToken],
        block_number: Optional[int] = None,
        gas_used: Optional[int] = None,
        gas_price_gwei: Optional[float] = None
    ) -> RevenueReport:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(token: ExtractedToken) -> NormalizedToken:
            async with semaphore:
                return await self._normalize_token(token, chain_id, block_number)

        tokens = list(await asyncio.gather(*(bounded(t) for t in extracted_tokens)))

        native_price = await self.aggregator.native_price_usd(chain_id, block_number)
        gas = self._gas_cost(gas_used, gas_price_gwei, native_price)

        total_value_usd = sum(t.value_usd for t in tokens)
        total_value_eth = sum(t.value_eth for t in tokens)
        net_profit_usd = total_value_usd - gas.cost_usd
        net_profit_eth = total_value_eth - gas.cost_eth
        profitability_ratio = net_profit_usd / total_value_usd if total_value_usd > 0 else 0.0

        score = risk_score(tokens, net_profit_usd)
        level = risk_level(score)

        summary = RevenueSummary(
            total_tokens=len(tokens),
            successful_normalizations=sum(1 for t in tokens if not t.error),
            high_liquidity_tokens=sum(1 for t in tokens if t.liquidity == LiquidityClass.HIGH),
            risk_level=level,
            risk_score=score,
        )

        self.logger.info(
            f"💵 Normalized {summary.successful_normalizations}/{summary.total_tokens} tokens: "
            f"${total_value_usd:,.2f} gross, ${net_profit_usd:,.2f} net, risk {level.value}"
        )

        return RevenueReport(
            chain_id=chain_id,
            block_number=block_number,
            tokens=tokens,
            total_value_usd=total_value_usd,
            total_value_eth=total_value_eth,
            gas=gas,
            net_profit_usd=net_profit_usd,
            net_profit_eth=net_profit_eth,
            is_profitable=net_profit_usd > 0,
            profitability_ratio=profitability_ratio,
            native_price_usd=native_price,
            market=market_context(tokens),
            summary=summary,
        )

    async def _normalize_token(self, token: ExtractedToken, chain_id: int,
                               block_number: Optional[int]) -> NormalizedToken:
        try:
            return await self._price_token(token, chain_id, block_number)
        except Exception as e:
            failure = ItemIsolationFailure(token.address, str(e) or type(e).__name__)
            self.logger.warning(f"⚠️ Token normalization failed for {failure}")
            return NormalizedToken(
                address=token.address,
                symbol=token.symbol or "UNKNOWN",
                decimals=token.decimals if token.decimals is not None else 18,
                raw_amount=token.raw_amount,
                liquidity=LiquidityClass.UNKNOWN,
                error=str(failure),
            )

    async def _price_token(self, token: ExtractedToken, chain_id: int,
                           block_number: Optional[int]) -> NormalizedToken:
        symbol, decimals = token.symbol, token.decimals
        if symbol is None or decimals is None:
            metadata = await self.metadata_provider.token_metadata(token.address, chain_id)
            symbol = symbol if symbol is not None else metadata.symbol
            decimals = decimals if decimals is not None else metadata.decimals

        amount = float(to_decimal_amount(token.raw_amount, decimals))
        quote = await self.aggregator.price_of(token.address, chain_id, block_number)

        return NormalizedToken(
            address=token.address,
            symbol=symbol,
            decimals=decimals,
            raw_amount=token.raw_amount,
            amount_decimal=amount,
            price_usd=quote.price_usd,
            price_eth=quote.price_eth,
            value_usd=amount * quote.price_usd,
            value_eth=amount * quote.price_eth,
            liquidity=classify_liquidity(quote.liquidity_usd),
            liquidity_usd=quote.liquidity_usd,
            price_impact=quote.price_impact,
            sources=list(quote.sources),
            confidence=quote.confidence,
        )

    @staticmethod
    def _gas_cost(gas_used: Optional[int], gas_price_gwei: Optional[float],
                  native_price_usd: float) -> GasCost:
        if gas_used is None or gas_price_gwei is None:
            return GasCost(gas_used=gas_used, gas_price_gwei=gas_price_gwei, estimated=True)

        cost_eth = float(Decimal(gas_used) * Decimal(str(gas_price_gwei)) * GWEI)
        return GasCost(
            gas_used=gas_used,
            gas_price_gwei=gas_price_gwei,
            cost_eth=cost_eth,
            cost_usd=cost_eth * native_price_usd,
        )

    async def get_status(self) -> Dict[str, Any]:
        return self._status("operational", concurrency=self.concurrency)

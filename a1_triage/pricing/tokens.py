"""
Per-chain token and price-source registry

Loaded once at import into read-only mappings. Oracle feeds are only
consulted for tokens listed here.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional


NATIVE_PLACEHOLDERS = (
    "0x0000000000000000000000000000000000000000",
    "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee",
)

# Approximate native prices used when the native feed cannot be read
DEFAULT_NATIVE_PRICE = 3000.0
FALLBACK_NATIVE_PRICES = MappingProxyType({
    1: 3000.0,
    56: 300.0,
    137: 0.8,
    42161: 3000.0,
    10: 3000.0,
})


@dataclass(frozen=True)
class TokenInfo:
    """Token metadata and configuration"""
    address: str
    symbol: str
    decimals: int
    name: str
    is_stablecoin: bool = False
    is_wrapped_native: bool = False
    chainlink_feed: Optional[str] = None


@dataclass(frozen=True)
class ChainPricing:
    chain_id: int
    name: str
    native_symbol: str
    wrapped_native: str
    native_feed: Optional[str]
    router: str
    factory: str
    flash_pair: str
    tokens: Mapping[str, TokenInfo] = field(default_factory=lambda: MappingProxyType({}))

    def token(self, address: str) -> Optional[TokenInfo]:
        return self.tokens.get(address.lower())

    def feed_for(self, address: str) -> Optional[str]:
        token = self.token(address)
        return token.chainlink_feed if token else None

    @property
    def fallback_native_price(self) -> float:
        return FALLBACK_NATIVE_PRICES.get(self.chain_id, DEFAULT_NATIVE_PRICE)


def _chain(chain_id: int, name: str, native_symbol: str, native_feed: Optional[str],
           router: str, factory: str, flash_pair: str, tokens: List[TokenInfo]) -> ChainPricing:
    wrapped = next(t for t in tokens if t.is_wrapped_native)
    return ChainPricing(
        chain_id=chain_id,
        name=name,
        native_symbol=native_symbol,
        wrapped_native=wrapped.address,
        native_feed=native_feed,
        router=router,
        factory=factory,
        flash_pair=flash_pair,
        tokens=MappingProxyType({t.address.lower(): t for t in tokens}),
    )


CHAINS: Mapping[int, ChainPricing] = MappingProxyType({
    1: _chain(
        1, "Ethereum", "ETH",
        native_feed="0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419",  # ETH/USD
        router="0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D",  # Uniswap V2
        factory="0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f",
        flash_pair="0xB4e16d0168e52d35CaCD2c6185b44281Ec28C9Dc",  # USDC/WETH
        tokens=[
            TokenInfo("0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", "WETH", 18, "Wrapped Ether",
                      is_wrapped_native=True, chainlink_feed="0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419"),
            TokenInfo("0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", "USDC", 6, "USD Coin",
                      is_stablecoin=True, chainlink_feed="0x8fFfFfd4AfB6115b954Bd326cbe7B4BA576818f6"),
            TokenInfo("0xdAC17F958D2ee523a2206206994597C13D831ec7", "USDT", 6, "Tether USD",
                      is_stablecoin=True, chainlink_feed="0x3E7d1eAB13ad0104d2750B8863b489D65364e32D"),
            TokenInfo("0x6B175474E89094C44Da98b954EedeAC495271d0F", "DAI", 18, "Dai Stablecoin",
                      is_stablecoin=True, chainlink_feed="0xAed0c38402a5d19df6E4c03F4E2DceD6e29c1ee9"),
            TokenInfo("0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599", "WBTC", 8, "Wrapped Bitcoin",
                      chainlink_feed="0xF4030086522a5bEEa4988F8cA5B36dbC97BeE88c"),
        ],
    ),
    56: _chain(
        56, "Binance Smart Chain", "BNB",
        native_feed="0x0567F2323251f0Aab15c8dFb1967E4e8A7D42aeE",  # BNB/USD
        router="0x10ED43C718714eb63d5aA57B78B54704E256024E",  # PancakeSwap V2
        factory="0xcA143Ce32Fe78f1f7019d7d551a6402fC5350c73",
        flash_pair="0x58F876857a02D6762E0101bb5C46A8c1ED44Dc16",  # WBNB/BUSD
        tokens=[
            TokenInfo("0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c", "WBNB", 18, "Wrapped BNB",
                      is_wrapped_native=True, chainlink_feed="0x0567F2323251f0Aab15c8dFb1967E4e8A7D42aeE"),
            TokenInfo("0x55d398326f99059fF775485246999027B3197955", "USDT", 18, "Tether USD",
                      is_stablecoin=True, chainlink_feed="0xB97Ad0E74fa7d920791E90258A6E2085088b4320"),
            TokenInfo("0xe9e7CEA3DedcA5984780Bafc599bD69ADd087D56", "BUSD", 18, "Binance USD",
                      is_stablecoin=True, chainlink_feed="0xcBb98864Ef56E9042e7d2efef76141f15731B82f"),
            TokenInfo("0x2170Ed0880ac9A755fd29B2688956BD959F933F8", "ETH", 18, "Binance-Peg Ethereum",
                      chainlink_feed="0x9ef1B8c0E4F7dc8bF5719Ea496883DC6401d5b2e"),
        ],
    ),
    137: _chain(
        137, "Polygon", "MATIC",
        native_feed="0xAB594600376Ec9fD91F8e885dADF0CE036862dE0",  # MATIC/USD
        router="0xa5E0829CaCEd8fFDD4De3c43696c57F7D7A678ff",  # QuickSwap
        factory="0x5757371414417b8C6CAad45bAeF941aBc7d3Ab32",
        flash_pair="0x6e7a5FAFcec6BB1e78bAE2A1F0B612012BF14827",  # WMATIC/USDC
        tokens=[
            TokenInfo("0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270", "WMATIC", 18, "Wrapped Matic",
                      is_wrapped_native=True, chainlink_feed="0xAB594600376Ec9fD91F8e885dADF0CE036862dE0"),
            TokenInfo("0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174", "USDC", 6, "USD Coin (PoS)",
                      is_stablecoin=True, chainlink_feed="0xfE4A8cc5b5B2366C1B58Bea3858e81843581b2F7"),
            TokenInfo("0xc2132D05D31c914a87C6611C10748AEb04B58e8F", "USDT", 6, "Tether USD (PoS)",
                      is_stablecoin=True, chainlink_feed="0x0A6513e40db6EB1b165753AD52E80663aeA50545"),
            TokenInfo("0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619", "WETH", 18, "Wrapped Ether",
                      chainlink_feed="0xF9680D99D6C9589e2a93a78A04A279e509205945"),
        ],
    ),
})


class TokenRegistry:
    """
    Lookup helpers over the read-only chain registry
    """

    @classmethod
    def get_chain(cls, chain_id: int) -> Optional[ChainPricing]:
        return CHAINS.get(chain_id)

    @classmethod
    def get_token_by_address(cls, chain_id: int, address: str) -> Optional[TokenInfo]:
        """Get token info by address"""
        chain = CHAINS.get(chain_id)
        return chain.token(address) if chain else None

    @classmethod
    def get_stablecoins(cls, chain_id: int) -> List[TokenInfo]:
        """Get all stablecoins for a chain"""
        chain = CHAINS.get(chain_id)
        if not chain:
            return []
        return [token for token in chain.tokens.values() if token.is_stablecoin]

    @classmethod
    def get_wrapped_native(cls, chain_id: int) -> Optional[TokenInfo]:
        chain = CHAINS.get(chain_id)
        return chain.token(chain.wrapped_native) if chain else None

    @classmethod
    def get_flash_pair(cls, chain_id: int) -> Optional[str]:
        """Wrapped-native/stablecoin pair used as the flash-swap source"""
        chain = CHAINS.get(chain_id)
        return chain.flash_pair if chain else None

    @classmethod
    def get_base_currency(cls, chain_id: int) -> str:
        """Get base currency symbol for chain"""
        chain = CHAINS.get(chain_id)
        return chain.native_symbol if chain else "ETH"

    @classmethod
    def get_fallback_native_price(cls, chain_id: int) -> float:
        return FALLBACK_NATIVE_PRICES.get(chain_id, DEFAULT_NATIVE_PRICE)

    @classmethod
    def is_native_token(cls, address: str) -> bool:
        """Check if address represents native token"""
        return address.lower() in NATIVE_PLACEHOLDERS

    @classmethod
    def supported_chains(cls) -> Dict[int, str]:
        return {chain_id: chain.name for chain_id, chain in CHAINS.items()}

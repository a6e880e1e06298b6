"""
In-memory price cache keyed by chain, asset and block
"""

import time
from dataclasses import dataclass
from typing import Dict, Optional
import logging


@dataclass
class PriceCacheEntry:
    """Cached price entry with metadata"""
    price_usd: float
    block_number: Optional[int]
    chain_id: int
    token_symbol: str
    source: str  # "chainlink", "dex", "fallback"
    cached_at: float  # Unix timestamp when cached


class PriceCache:
    """
    TTL cache for price lookups shared by the sessions of one process

    Entries pinned to a block never go stale; "latest" entries expire after
    max_age_seconds.
    """

    def __init__(self, max_age_seconds: int = 300):
        self.max_age_seconds = max_age_seconds
        self.logger = logging.getLogger(__name__)
        self.memory_cache: Dict[str, PriceCacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def _get_cache_key(self, chain_id: int, token_symbol: str, block_number: Optional[int] = None) -> str:
        """Generate cache key for price lookup"""
        if block_number is not None:
            return f"{chain_id}_{token_symbol}_{block_number}"
        return f"{chain_id}_{token_symbol}_latest"

    def get_price(self, chain_id: int, token_symbol: str, block_number: Optional[int] = None) -> Optional[PriceCacheEntry]:
        """Get cached price entry if present and fresh"""
        cache_key = self._get_cache_key(chain_id, token_symbol, block_number)
        entry = self.memory_cache.get(cache_key)

        if entry is None:
            self.misses += 1
            return None

        if block_number is None and time.time() - entry.cached_at >= self.max_age_seconds:
            del self.memory_cache[cache_key]
            self.misses += 1
            return None

        self.hits += 1
        return entry

    def set_price(self, chain_id: int, token_symbol: str, price_usd: float,
                  source: str, block_number: Optional[int] = None) -> PriceCacheEntry:
        """Cache a price entry"""
        entry = PriceCacheEntry(
            price_usd=price_usd,
            block_number=block_number,
            chain_id=chain_id,
            token_symbol=token_symbol,
            source=source,
            cached_at=time.time()
        )
        self.memory_cache[self._get_cache_key(chain_id, token_symbol, block_number)] = entry
        return entry

    def get_cache_stats(self) -> Dict[str, int]:
        """Get cache statistics"""
        return {
            "memory_entries": len(self.memory_cache),
            "hits": self.hits,
            "misses": self.misses,
        }

    def clear_cache(self, chain_id: Optional[int] = None):
        """Clear cache entries"""
        if chain_id is None:
            self.memory_cache.clear()
            return
        keys_to_remove = [k for k in self.memory_cache if k.startswith(f"{chain_id}_")]
        for key in keys_to_remove:
            del self.memory_cache[key]

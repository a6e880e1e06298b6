"""
On-chain clients for pricing data
"""

from .chainlink_client import ChainlinkClient
from .dex_client import DEXClient

__all__ = [
    "ChainlinkClient",
    "DEXClient",
]

"""
Chainlink price feed client for on-chain historical pricing
"""

from typing import Dict, Optional, Tuple
import logging

from ...errors import ExternalServiceFailure
from ...interfaces import PriceFeedProvider


LATEST_ROUND_DATA_FN = {
    "name": "latestRoundData",
    "type": "function",
    "stateMutability": "view",
    "inputs": [],
    "outputs": [
        {"type": "uint80"},  # roundId
        {"type": "int256"},  # answer
        {"type": "uint256"}, # startedAt
        {"type": "uint256"}, # updatedAt
        {"type": "uint80"}   # answeredInRound
    ]
}

DECIMALS_FN = {
    "name": "decimals",
    "type": "function",
    "stateMutability": "view",
    "inputs": [],
    "outputs": [{"type": "uint8"}]
}

DEFAULT_FEED_DECIMALS = 8


class ChainlinkClient(PriceFeedProvider):
    """
    Reads USD prices from Chainlink aggregators at a given block
    """

    def __init__(self, web3_client):
        self.web3_client = web3_client
        self.logger = logging.getLogger(__name__)

        # Feed decimals never change, cache per (chain, feed)
        self.feed_decimals: Dict[Tuple[int, str], int] = {}

    async def _get_feed_decimals(self, feed_address: str, chain_id: int) -> int:
        """Get decimals for a Chainlink price feed"""
        key = (chain_id, feed_address.lower())
        if key in self.feed_decimals:
            return self.feed_decimals[key]

        try:
            decimals = await self.web3_client.call_contract_function(
                chain_id=chain_id,
                contract_address=feed_address,
                function_abi=DECIMALS_FN,
            )
        except ExternalServiceFailure as e:
            self.logger.debug(f"Failed to get feed decimals for {feed_address}: {e}")
            return DEFAULT_FEED_DECIMALS  # most USD feeds use 8

        self.feed_decimals[key] = int(decimals)
        return self.feed_decimals[key]

    async def latest_price(
        self,
        feed_address: str,
        chain_id: int,
        block_number: Optional[int] = None
    ) -> float:
        """
        Get the feed answer as of block_number

        Raises:
            ExternalServiceFailure: feed unreachable or answer not positive
        """
        result = await self.web3_client.call_contract_function(
            chain_id=chain_id,
            contract_address=feed_address,
            function_abi=LATEST_ROUND_DATA_FN,
            block_number=block_number
        )

        if not result or len(result) < 5:
            raise ExternalServiceFailure(f"Malformed round data from feed {feed_address}")

        _, answer, _, updated_at, _ = result
        if answer <= 0:
            raise ExternalServiceFailure(f"Feed {feed_address} returned non-positive answer {answer}")

        decimals = await self._get_feed_decimals(feed_address, chain_id)
        price_usd = answer / (10 ** decimals)
        self.logger.debug(f"Chainlink {feed_address} @ {block_number or 'latest'}: ${price_usd:.6f} (updated {updated_at})")
        return price_usd

"""
DEX client for on-chain historical pricing
Uniswap V2 style factory/pair/router reads at a specific block
"""

from typing import Optional, Tuple
import logging

from ...errors import ExternalServiceFailure
from ...interfaces import DexQuoteProvider
from ..tokens import TokenRegistry


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

GET_PAIR_FN = {
    "name": "getPair",
    "type": "function",
    "stateMutability": "view",
    "inputs": [{"type": "address"}, {"type": "address"}],
    "outputs": [{"type": "address"}]
}

GET_RESERVES_FN = {
    "name": "getReserves",
    "type": "function",
    "stateMutability": "view",
    "inputs": [],
    "outputs": [
        {"type": "uint112"},  # reserve0
        {"type": "uint112"},  # reserve1
        {"type": "uint32"}    # blockTimestampLast
    ]
}

TOKEN0_FN = {
    "name": "token0",
    "type": "function",
    "stateMutability": "view",
    "inputs": [],
    "outputs": [{"type": "address"}]
}

GET_AMOUNTS_OUT_FN = {
    "name": "getAmountsOut",
    "type": "function",
    "stateMutability": "view",
    "inputs": [
        {"type": "uint256"},
        {"type": "address[]"}
    ],
    "outputs": [{"type": "uint256[]"}]
}


class DEXClient(DexQuoteProvider):
    """
    DEX client for on-chain token pricing

    Uses the chain's registered Uniswap V2 style router and factory
    (Uniswap V2, PancakeSwap V2, QuickSwap).
    """

    def __init__(self, web3_client):
        self.web3_client = web3_client
        self.logger = logging.getLogger(__name__)

    def _chain(self, chain_id: int):
        chain = TokenRegistry.get_chain(chain_id)
        if chain is None:
            raise ExternalServiceFailure(f"No DEX registered for chain {chain_id}")
        return chain

    async def get_pair_address(self, token_a: str, token_b: str, chain_id: int,
                               block_number: Optional[int] = None) -> Optional[str]:
        chain = self._chain(chain_id)
        pair = await self.web3_client.call_contract_function(
            chain_id=chain_id,
            contract_address=chain.factory,
            function_abi=GET_PAIR_FN,
            inputs=[token_a, token_b],
            block_number=block_number
        )
        if not pair or pair.lower() == ZERO_ADDRESS:
            return None
        return pair

    async def pair_reserves(
        self,
        token_a: str,
        token_b: str,
        chain_id: int,
        block_number: Optional[int] = None
    ) -> Tuple[int, int]:
        """
        Reserves of the token_a/token_b pair, ordered (token_a, token_b)

        Raises:
            ExternalServiceFailure: no pair exists or the reads fail
        """
        pair_address = await self.get_pair_address(token_a, token_b, chain_id, block_number)
        if pair_address is None:
            raise ExternalServiceFailure(f"No pair for {token_a}/{token_b} on chain {chain_id}")

        reserves = await self.web3_client.call_contract_function(
            chain_id=chain_id,
            contract_address=pair_address,
            function_abi=GET_RESERVES_FN,
            block_number=block_number
        )
        token0 = await self.web3_client.call_contract_function(
            chain_id=chain_id,
            contract_address=pair_address,
            function_abi=TOKEN0_FN,
            block_number=block_number
        )

        if not reserves or len(reserves) < 2:
            raise ExternalServiceFailure(f"Malformed reserves from pair {pair_address}")

        reserve0, reserve1 = int(reserves[0]), int(reserves[1])
        if token0.lower() == token_a.lower():
            return reserve0, reserve1
        return reserve1, reserve0

    async def quote(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        chain_id: int,
        block_number: Optional[int] = None
    ) -> int:
        """Router getAmountsOut for a direct token_in -> token_out path"""
        chain = self._chain(chain_id)
        amounts = await self.web3_client.call_contract_function(
            chain_id=chain_id,
            contract_address=chain.router,
            function_abi=GET_AMOUNTS_OUT_FN,
            inputs=[amount_in, [token_in, token_out]],
            block_number=block_number
        )
        if not amounts or len(amounts) < 2:
            raise ExternalServiceFailure(f"Router returned no quote for {token_in} -> {token_out}")
        return int(amounts[-1])

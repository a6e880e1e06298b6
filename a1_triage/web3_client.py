"""
Web3 Client - Blockchain read access for pricing and token metadata
"""

import asyncio
import logging
from typing import Dict, Any, Optional, List
from web3 import Web3

# Handle different web3.py versions for middleware import
try:
    from web3.middleware import ExtraDataToPOAMiddleware as poa_middleware
except ImportError:
    from web3.middleware import geth_poa_middleware as poa_middleware

from eth_utils import to_checksum_address, is_address
from .config import Config
from .errors import ExternalServiceFailure
from .interfaces import TokenMetadataProvider
from .models import TokenMetadata


ERC20_METADATA_FUNCTIONS = {
    "symbol": {"name": "symbol", "type": "function", "stateMutability": "view",
               "inputs": [], "outputs": [{"type": "string"}]},
    "decimals": {"name": "decimals", "type": "function", "stateMutability": "view",
                 "inputs": [], "outputs": [{"type": "uint8"}]},
    "name": {"name": "name", "type": "function", "stateMutability": "view",
             "inputs": [], "outputs": [{"type": "string"}]},
}

POA_CHAINS = (56, 137)

PROXY_SLOTS = {
    "EIP-1967": "0x360894a13ba1a3210667c828492db98dca3e2076cc3735a920a3ca505d382bbc",
    "EIP-1822": "0xc5f16f0fcc639fa48a6947836d9850f504798523bf8c9a3a87d5876cf622bcf7",
}


class Web3Client(TokenMetadataProvider):
    """
    Web3 wrapper for blockchain interactions

    Features:
    - Multi-chain support (Ethereum, BSC, Polygon)
    - View calls pinned to a historical block
    - ERC-20 metadata lookups
    """

    def __init__(self, config: Config):
        self.config = config
        self.logger = logging.getLogger(__name__)

        # Web3 connections for different chains
        self.connections: Dict[int, Web3] = {}

    def get_web3(self, chain_id: int) -> Optional[Web3]:
        """Get Web3 connection for chain"""

        if chain_id in self.connections:
            return self.connections[chain_id]

        chain_config = self.config.get_chain_config(chain_id)
        if not chain_config or not chain_config.get("rpc_url"):
            self.logger.error(f"No RPC URL configured for chain {chain_id}")
            return None

        rpc_url = chain_config["rpc_url"]
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))

        # PoA chains carry oversized extraData
        if chain_id in POA_CHAINS:
            w3.middleware_onion.inject(poa_middleware, layer=0)

        self.connections[chain_id] = w3
        self.logger.info(f"Connected to chain {chain_id} via {chain_config.get('name', rpc_url)}")
        return w3

    async def call_contract_function(
        self,
        chain_id: int,
        contract_address: str,
        function_abi: Dict[str, Any],
        inputs: Optional[List[Any]] = None,
        block_number: Optional[int] = None
    ) -> Any:
        """Call a contract view function, raising ExternalServiceFailure on any error"""

        w3 = self.get_web3(chain_id)
        if not w3:
            raise ExternalServiceFailure(f"No Web3 connection for chain {chain_id}")

        if not is_address(contract_address):
            raise ExternalServiceFailure(f"Invalid contract address: {contract_address}")

        contract = w3.eth.contract(address=to_checksum_address(contract_address), abi=[function_abi])
        function = contract.get_function_by_name(function_abi["name"])
        block_id = block_number if block_number is not None else "latest"

        try:
            return await asyncio.to_thread(function(*(inputs or [])).call, block_identifier=block_id)
        except Exception as e:
            raise ExternalServiceFailure(
                f"{function_abi.get('name', 'unknown')}() on {contract_address} failed: {e}"
            ) from e

    async def get_storage_at(self, chain_id: int, address: str, slot: str,
                             block_number: Optional[int] = None) -> str:
        w3 = self.get_web3(chain_id)
        if not w3:
            raise ExternalServiceFailure(f"No Web3 connection for chain {chain_id}")
        block_id = block_number if block_number is not None else "latest"
        try:
            storage = await asyncio.to_thread(
                w3.eth.get_storage_at, to_checksum_address(address), int(slot, 16), block_id
            )
        except Exception as e:
            raise ExternalServiceFailure(f"Storage read at {address}[{slot}] failed: {e}") from e
        return "0x" + bytes(storage).hex().rjust(64, "0")

    async def resolve_proxy(self, chain_id: int, proxy_address: str,
                            block_number: Optional[int] = None) -> Optional[str]:
        """
        Resolve a proxy to its implementation address (EIP-1967, then EIP-1822)

        Returns None for non-proxies.
        """
        if not is_address(proxy_address):
            return None

        for standard, slot in PROXY_SLOTS.items():
            storage = await self.get_storage_at(chain_id, proxy_address, slot, block_number)
            impl_address = "0x" + storage[-40:]
            if int(impl_address, 16) != 0:
                self.logger.info(f"{standard} proxy detected: {proxy_address} -> {impl_address}")
                return to_checksum_address(impl_address)
        return None

    async def token_metadata(self, token_address: str, chain_id: int) -> TokenMetadata:
        """
        Read ERC-20 symbol, decimals and name

        Missing optional fields fall back to UNKNOWN / 18; an unreachable chain raises.
        """
        if not self.get_web3(chain_id):
            raise ExternalServiceFailure(f"No Web3 connection for chain {chain_id}")

        values = {}
        for field_name, abi in ERC20_METADATA_FUNCTIONS.items():
            try:
                values[field_name] = await self.call_contract_function(chain_id, token_address, abi)
            except ExternalServiceFailure as e:
                self.logger.debug(f"Token {token_address} has no readable {field_name}: {e}")

        return TokenMetadata(
            symbol=values.get("symbol") or "UNKNOWN",
            decimals=int(values["decimals"]) if values.get("decimals") is not None else 18,
            name=values.get("name") or "Unknown Token",
        )

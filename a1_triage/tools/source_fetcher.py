"""
Source Code Fetcher - Resolves proxy contracts and fetches verified source code
"""

import asyncio
import json
import logging
from typing import Dict, Any, Optional

import aiohttp

from .code_sanitizer import sanitize_solidity, sanitization_stats
from ..errors import ExternalServiceFailure
from ..interfaces import SourceBundle, SourceProvider


class EtherscanSourceProvider(SourceProvider):
    """
    SourceProvider backed by Etherscan-family explorers

    Features:
    - Fetches verified source code from Etherscan/BSCScan/PolygonScan
    - Resolves proxy contracts (EIP-1967, EIP-1822) when a Web3Client is given
    - Flattens multi-file standard-JSON submissions
    - Returns sanitized source ready for scanning
    """

    def __init__(self, config, web3_client=None):
        self.config = config
        self.web3_client = web3_client
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def get_sanitized_source(
        self,
        contract_address: str,
        chain_id: int,
        block_number: Optional[int] = None
    ) -> SourceBundle:
        chain_config = self.config.get_chain_config(chain_id)
        if not chain_config:
            raise ExternalServiceFailure(f"Unsupported chain ID: {chain_id}")

        self.logger.info(f"🔍 Fetching source for {contract_address} on {chain_config['name']}")

        implementation_address = await self._resolve_proxy(contract_address, chain_id, block_number)
        fetch_address = implementation_address or contract_address
        if implementation_address:
            self.logger.info(f"🎯 Proxy detected: {contract_address} -> {implementation_address}")

        source_data = await self._fetch_source_code(fetch_address, chain_config, chain_id)
        sanitized = sanitize_solidity(source_data["source_code"])

        stats = sanitization_stats(source_data["source_code"], sanitized)
        self.logger.info(
            f"✅ Source for {source_data['contract_name']} sanitized: "
            f"{stats['original_lines']} → {stats['sanitized_lines']} lines "
            f"({stats['reduction_percent']:.1f}% reduction)"
        )

        return SourceBundle(
            source_text=sanitized,
            contract_name=source_data["contract_name"],
            implementation_address=implementation_address,
        )

    async def _resolve_proxy(self, proxy_address: str, chain_id: int,
                             block_number: Optional[int]) -> Optional[str]:
        if self.web3_client is None:
            return None
        try:
            return await self.web3_client.resolve_proxy(chain_id, proxy_address, block_number)
        except ExternalServiceFailure as e:
            # Unresolvable proxies are scanned as plain contracts
            self.logger.warning(f"⚠️ Proxy resolution failed for {proxy_address}: {e}")
            return None

    async def _fetch_source_code(self, contract_address: str, chain_config: Dict[str, Any],
                                 chain_id: int) -> Dict[str, Any]:
        """
        Fetch source code from the explorer API
        Supports both the legacy API (Ethereum) and the V2 unified API
        """
        scanner_url = chain_config["scanner_url"]
        params = {
            "module": "contract",
            "action": "getsourcecode",
            "address": contract_address,
            "apikey": chain_config["scanner_api_key"],
        }
        if "v2/api" in scanner_url:
            params["chainid"] = chain_id

        timeout = aiohttp.ClientTimeout(total=getattr(self.config, "scanner_timeout", 30))
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(scanner_url, params=params) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ExternalServiceFailure(f"Explorer API error {response.status}: {error_text[:200]}")
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExternalServiceFailure(f"Explorer request failed: {e}") from e

        if not isinstance(data, dict) or data.get("status") != "1":
            message = data.get("message", "Unknown error") if isinstance(data, dict) else "Malformed response"
            raise ExternalServiceFailure(f"Explorer API returned error: {message}")

        result = data.get("result")
        if not result or not isinstance(result, list):
            raise ExternalServiceFailure("No source code data returned")

        contract_data = result[0]
        source_code = contract_data.get("SourceCode", "")
        if not source_code:
            raise ExternalServiceFailure(f"Contract source code not verified: {contract_address}")

        return {
            "source_code": parse_source_code(source_code),
            "contract_name": contract_data.get("ContractName") or "Unknown",
            "compiler_version": contract_data.get("CompilerVersion", "Unknown"),
        }


def parse_source_code(raw_source: str) -> str:
    """
    Flatten the explorer's source formats (single file, multi-file JSON,
    double-braced standard JSON) into one text
    """
    raw_source = raw_source.strip()

    if raw_source.startswith("{{") and raw_source.endswith("}}"):
        raw_source = raw_source[1:-1]

    if not (raw_source.startswith("{") and raw_source.endswith("}")):
        return raw_source

    try:
        source_json = json.loads(raw_source)
    except json.JSONDecodeError:
        return raw_source

    files = source_json.get("sources", source_json) if isinstance(source_json, dict) else {}
    sources = []
    for file_path, content in files.items():
        if isinstance(content, dict):
            content = content.get("content")
        if isinstance(content, str):
            sources.append(f"// File: {file_path}\n{content}")
    return "\n\n".join(sources) if sources else raw_source

"""
Configuration management for the A1 triage pipeline
"""

import os
from dataclasses import dataclass
from typing import Optional, Dict, Any
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


@dataclass
class Config:
    """Configuration for the triage pipeline"""

    # Blockchain Configuration - archive nodes are needed for historical forks
    ethereum_rpc_url: str = os.getenv("ETHEREUM_RPC_URL", "https://ethereum-rpc.publicnode.com")
    bsc_rpc_url: str = os.getenv("BSC_RPC_URL", "https://bsc-dataseed.binance.org")
    polygon_rpc_url: str = os.getenv("POLYGON_RPC_URL", "https://polygon-rpc.com")
    etherscan_api_key: str = os.getenv("ETHERSCAN_API_KEY", "YourApiKeyToken")
    scanner_timeout: int = 30

    # Foundry Configuration
    foundry_path: str = os.getenv("FOUNDRY_PATH", "forge")
    fork_execution_enabled: bool = _env_bool("FORK_EXECUTION_ENABLED", True)
    test_timeout: int = _env_int("TEST_TIMEOUT", 300)  # 5 minutes

    # Pipeline
    stage_timeout: Optional[int] = _env_int("STAGE_TIMEOUT", 1800)  # 30 minutes
    simulator_seed: Optional[int] = _env_int("SIMULATOR_SEED", None)
    normalization_concurrency: int = _env_int("NORMALIZATION_CONCURRENCY", 4)
    native_price_ttl: int = 300

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "a1_triage.log")

    def validate(self) -> bool:
        """Validate configuration"""
        if not self.ethereum_rpc_url:
            raise ValueError("Missing required configuration field: ETHEREUM_RPC_URL")
        if self.normalization_concurrency < 1:
            raise ValueError("NORMALIZATION_CONCURRENCY must be at least 1")
        if self.stage_timeout is not None and self.stage_timeout <= 0:
            raise ValueError("STAGE_TIMEOUT must be positive")
        return True

    def get_chain_config(self, chain_id: int) -> Dict[str, Any]:
        """Get chain-specific configuration"""
        chain_configs = {
            1: {  # Ethereum
                "name": "Ethereum",
                "rpc_url": self.ethereum_rpc_url,
                "scanner_api_key": self.etherscan_api_key,
                "scanner_url": "https://api.etherscan.io/api",
                "base_currency": "ETH",
            },
            56: {  # BSC
                "name": "Binance Smart Chain",
                "rpc_url": self.bsc_rpc_url,
                "scanner_api_key": self.etherscan_api_key,
                "scanner_url": "https://api.etherscan.io/v2/api",
                "base_currency": "BNB",
            },
            137: {  # Polygon
                "name": "Polygon",
                "rpc_url": self.polygon_rpc_url,
                "scanner_api_key": self.etherscan_api_key,
                "scanner_url": "https://api.etherscan.io/v2/api",
                "base_currency": "MATIC",
            },
        }

        return chain_configs.get(chain_id, {})

    @classmethod
    def from_env(cls) -> 'Config':
        """Create config from environment variables"""
        return cls()

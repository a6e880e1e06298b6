"""
A1 Triage Tools Package
"""

from .base import BaseTool
from .vulnerability_scanner import VulnerabilityScanner, ScanReport
from .strategy_factory import StrategyFactory
from .strategy_selector import StrategySelector
from .execution_tool import (
    ExecutionHarness,
    ForkExecutionHarness,
    SimulatedExecutionHarness,
    create_execution_harness,
)
from .forge_runtime import ForgeSandboxRuntime
from .revenue_tool import RevenueNormalizer
from .source_fetcher import EtherscanSourceProvider
from .code_sanitizer import sanitize_solidity

__all__ = [
    "BaseTool",
    "VulnerabilityScanner",
    "ScanReport",
    "StrategyFactory",
    "StrategySelector",
    "ExecutionHarness",
    "ForkExecutionHarness",
    "SimulatedExecutionHarness",
    "create_execution_harness",
    "ForgeSandboxRuntime",
    "RevenueNormalizer",
    "EtherscanSourceProvider",
    "sanitize_solidity",
]

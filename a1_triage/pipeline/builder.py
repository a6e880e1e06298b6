"""
Wires the production components into a PipelineOrchestrator
"""

import logging
import random
from typing import Optional

from .orchestrator import PipelineOrchestrator
from ..config import Config
from ..notifications import NotificationBus
from ..pricing.aggregator import PriceAggregator
from ..pricing.cache import PriceCache
from ..pricing.clients import ChainlinkClient, DEXClient
from ..storage import InMemorySessionStore
from ..tools.execution_tool import SimulatedExecutionHarness, create_execution_harness
from ..tools.revenue_tool import RevenueNormalizer
from ..tools.source_fetcher import EtherscanSourceProvider
from ..tools.strategy_factory import StrategyFactory
from ..tools.strategy_selector import StrategySelector
from ..tools.vulnerability_scanner import VulnerabilityScanner
from ..web3_client import Web3Client


logger = logging.getLogger(__name__)


async def build_orchestrator(
    config: Config,
    simulate: bool = False,
    rng: Optional[random.Random] = None,
    notifier: Optional[NotificationBus] = None
) -> PipelineOrchestrator:
    """
    Build an orchestrator backed by Web3, Etherscan and Foundry

    With simulate=True the fork harness is never attempted.
    """
    web3_client = Web3Client(config)

    aggregator = PriceAggregator(
        ChainlinkClient(web3_client),
        DEXClient(web3_client),
        PriceCache(max_age_seconds=config.native_price_ttl),
    )

    if simulate:
        harness = SimulatedExecutionHarness(rng or random.Random(config.simulator_seed), config)
    else:
        harness = await create_execution_harness(config, rng=rng)
    logger.info(f"Execution harness: {harness.get_name()}")

    return PipelineOrchestrator(
        store=InMemorySessionStore(),
        source_provider=EtherscanSourceProvider(config, web3_client),
        scanner=VulnerabilityScanner(config),
        factory=StrategyFactory(config),
        selector=StrategySelector(config),
        harness=harness,
        normalizer=RevenueNormalizer(aggregator, web3_client, config),
        notifier=notifier or NotificationBus(),
        config=config,
    )

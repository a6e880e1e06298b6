"""
Shared test fixtures for the A1 triage test suite.

Provides in-process fakes for every external collaborator (source
provider, sandbox runtime, price feeds, DEX, token metadata, notifier)
plus sample Solidity sources.
"""

import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from a1_triage.config import Config
from a1_triage.errors import ExternalServiceFailure
from a1_triage.interfaces import (
    DexQuoteProvider,
    ForkHandle,
    Invocation,
    Notifier,
    PriceFeedProvider,
    SandboxRuntime,
    SourceBundle,
    SourceProvider,
    TokenMetadataProvider,
)
from a1_triage.models import ExecutionResult, PriceQuote, TokenMetadata
from a1_triage.tools.execution_tool import ExecutionHarness


TARGET = "0x1234567890abcdef1234567890abcdef12345678"

# ── Sample Solidity sources ─────────────────────────────

# Only the delegatecall signature, no protective signatures
DELEGATECALL_SOURCE = """\
contract Forwarder {
    address public implementation;
    function forward(address impl, bytes memory data) external {
        impl.delegatecall(data);
    }
}
"""

CLEAN_SOURCE = """\
contract Registry {
    mapping(address => bool) public listed;
    function list(address account) external {
        listed[account] = true;
    }
}
"""


# ── Fakes ─────────────────────────────

class FakeSourceProvider(SourceProvider):
    def __init__(self, source_text: str = DELEGATECALL_SOURCE, error: Optional[Exception] = None):
        self.source_text = source_text
        self.error = error
        self.calls = 0

    async def get_sanitized_source(self, contract_address, chain_id, block_number=None):
        self.calls += 1
        if self.error:
            raise self.error
        return SourceBundle(source_text=self.source_text, contract_name="Target")


class FakeSandboxRuntime(SandboxRuntime):
    """Records the fork lifecycle; each step can fail or hang on demand"""

    def __init__(self, balance_delta: int = 0, gas_used: int = 150_000,
                 token_deltas: Optional[Dict[str, int]] = None, available: bool = True,
                 fail_on: Optional[str] = None, error: Optional[Exception] = None,
                 hang_on: Optional[str] = None):
        self.balance_delta = balance_delta
        self.gas_used = gas_used
        self.token_deltas = token_deltas or {}
        self.available = available
        self.fail_on = fail_on
        self.error = error
        self.hang_on = hang_on
        self.created: List[str] = []
        self.torn_down: List[str] = []
        self.entered = asyncio.Event()

    async def _step(self, name: str):
        if self.hang_on == name:
            self.entered.set()
            await asyncio.Event().wait()
        if self.fail_on == name:
            raise self.error

    async def is_available(self):
        return self.available

    async def create_fork(self, chain_id, block_number=None, target_address=None):
        await self._step("create_fork")
        handle = ForkHandle(id=f"fork-{len(self.created)}", chain_id=chain_id,
                            block_number=block_number, target_address=target_address)
        self.created.append(handle.id)
        return handle

    async def deploy(self, handle, source_template):
        await self._step("deploy")
        return "0x5615dEB798BB3E4dFa0139dFa1b3D433Cc23b72f"

    async def invoke(self, handle, deployed_address, entrypoint):
        await self._step("invoke")
        return Invocation(
            balance_delta=self.balance_delta,
            gas_used=self.gas_used,
            trace=["├─ [0] ExploitTest::testExploit()"],
            token_deltas=dict(self.token_deltas),
        )

    async def teardown(self, handle):
        self.torn_down.append(handle.id)

    @property
    def live(self) -> int:
        return len(self.created) - len(self.torn_down)


class FakeFeedProvider(PriceFeedProvider):
    def __init__(self, prices: Optional[Dict[str, float]] = None):
        self.prices = {k.lower(): v for k, v in (prices or {}).items()}
        self.calls = 0

    async def latest_price(self, feed_address, chain_id, block_number=None):
        self.calls += 1
        price = self.prices.get(feed_address.lower())
        if price is None:
            raise ExternalServiceFailure(f"feed {feed_address} unreachable")
        return price


class FakeDexProvider(DexQuoteProvider):
    """pairs: token -> (token_reserve, native_reserve, amount_out_per_unit)"""

    def __init__(self, pairs: Optional[Dict[str, tuple]] = None):
        self.pairs = {k.lower(): v for k, v in (pairs or {}).items()}

    def _pair(self, token):
        pair = self.pairs.get(token.lower())
        if pair is None:
            raise ExternalServiceFailure(f"no pair for {token}")
        return pair

    async def pair_reserves(self, token_a, token_b, chain_id, block_number=None):
        token_reserve, native_reserve, _ = self._pair(token_a)
        return token_reserve, native_reserve

    async def quote(self, token_in, token_out, amount_in, chain_id, block_number=None):
        return self._pair(token_in)[2]


class FakeMetadataProvider(TokenMetadataProvider):
    def __init__(self, metadata: Optional[Dict[str, TokenMetadata]] = None, failing=()):
        self.metadata = {k.lower(): v for k, v in (metadata or {}).items()}
        self.failing = {a.lower() for a in failing}
        self.calls: List[str] = []

    async def token_metadata(self, token_address, chain_id):
        self.calls.append(token_address)
        if token_address.lower() in self.failing:
            raise ExternalServiceFailure(f"metadata lookup for {token_address} failed")
        return self.metadata.get(token_address.lower(), TokenMetadata())


class FakeAggregator:
    """Stands in for PriceAggregator with fixed quotes per token"""

    def __init__(self, quotes: Optional[Dict[str, PriceQuote]] = None, native_price: float = 3000.0,
                 delays: Optional[Dict[str, float]] = None, failing=()):
        self.quotes = {k.lower(): v for k, v in (quotes or {}).items()}
        self.native_price = native_price
        self.delays = {k.lower(): v for k, v in (delays or {}).items()}
        self.failing = {a.lower() for a in failing}

    async def native_price_usd(self, chain_id, block_number=None):
        return self.native_price

    async def price_of(self, token_address, chain_id, block_number=None):
        await asyncio.sleep(self.delays.get(token_address.lower(), 0))
        if token_address.lower() in self.failing:
            raise ExternalServiceFailure(f"no price for {token_address}")
        return self.quotes.get(token_address.lower(), PriceQuote())


class FakeHarness(ExecutionHarness):
    def __init__(self, result: Optional[ExecutionResult] = None, hang: bool = False):
        super().__init__()
        self.result = result or ExecutionResult(success=False, error_message="no profit")
        self.hang = hang
        self.calls = 0
        self.entered = asyncio.Event()

    def get_name(self):
        return "fake_harness"

    def get_description(self):
        return "Returns a canned execution result"

    async def execute(self, strategy, contract_address, chain_id, block_number=None):
        self.calls += 1
        self.entered.set()
        if self.hang:
            await asyncio.Event().wait()
        return self.result


class RecordingNotifier(Notifier):
    def __init__(self, fail: bool = False):
        self.events: List[tuple] = []
        self.fail = fail

    def publish(self, event_type, payload):
        self.events.append((event_type, payload))
        if self.fail:
            raise RuntimeError("subscriber offline")

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.events]


# ── Fixtures ─────────────────────────────

@pytest.fixture
def config():
    return Config(
        fork_execution_enabled=False,
        stage_timeout=30,
        simulator_seed=7,
        normalization_concurrency=2,
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()

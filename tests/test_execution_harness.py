"""
Tests for fork-backed and simulated strategy execution.
"""

import asyncio
import random

import pytest

from a1_triage.config import Config
from a1_triage.errors import ExternalServiceFailure, SandboxFailure
from a1_triage.models import Finding, FindingKind, Severity
from a1_triage.pricing.tokens import TokenRegistry
from a1_triage.tools.execution_tool import (
    SIMULATED_FAILURE_MESSAGE,
    ForkExecutionHarness,
    SimulatedExecutionHarness,
    create_execution_harness,
)
from a1_triage.tools.strategy_factory import StrategyFactory

from conftest import DELEGATECALL_SOURCE, TARGET, FakeSandboxRuntime


USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
DAI = "0x6B175474E89094C44Da98b954EedeAC495271d0F"


def strategy_for(kind: FindingKind, confidence: int = 64):
    finding = Finding(kind=kind, severity=Severity.HIGH, description=kind.value,
                      match_count=1, confidence=confidence)
    return StrategyFactory().create(finding, TARGET, DELEGATECALL_SOURCE)


# ── Simulator ─────────────────────────────

@pytest.mark.asyncio
async def test_no_fork_sandbox_always_simulates(config):
    harness = await create_execution_harness(config)
    assert isinstance(harness, SimulatedExecutionHarness)

    for kind in FindingKind:
        for confidence in (5, 64, 95):
            result = await harness.execute(strategy_for(kind, confidence), TARGET, 1)
            assert result.simulated is True


@pytest.mark.asyncio
async def test_unavailable_runtime_falls_back_to_simulator():
    config = Config(fork_execution_enabled=True)
    runtime = FakeSandboxRuntime(available=False)

    harness = await create_execution_harness(config, runtime=runtime)

    assert isinstance(harness, SimulatedExecutionHarness)
    assert runtime.created == []


@pytest.mark.asyncio
async def test_available_runtime_selects_fork_harness():
    harness = await create_execution_harness(Config(fork_execution_enabled=True), runtime=FakeSandboxRuntime())
    assert isinstance(harness, ForkExecutionHarness)
    assert harness.simulated is False


@pytest.mark.asyncio
async def test_simulated_success_splits_proceeds_over_stablecoins():
    harness = SimulatedExecutionHarness(random.Random(3))
    stablecoins = {t.address: t for t in TokenRegistry.get_stablecoins(1)}

    for _ in range(20):
        result = await harness.execute(strategy_for(FindingKind.DELEGATECALL, 95), TARGET, 1)

        assert result.success is True
        assert result.error_message is None
        assert 100_000 <= result.profit_raw < 1_100_000
        assert 100_000 <= result.gas_used < 300_000
        assert 1 <= len(result.extracted_tokens) <= 2

        shares = [100] if len(result.extracted_tokens) == 1 else [60, 40]
        for token, share in zip(result.extracted_tokens, shares):
            info = stablecoins[token.address]
            assert token.decimals == info.decimals
            assert int(token.raw_amount) == result.profit_raw * share * 10 ** info.decimals // 100


@pytest.mark.asyncio
async def test_simulated_low_confidence_always_fails():
    harness = SimulatedExecutionHarness(random.Random(11))

    for _ in range(20):
        result = await harness.execute(strategy_for(FindingKind.REENTRANCY, 5), TARGET, 1)
        assert result.success is False
        assert result.error_message == SIMULATED_FAILURE_MESSAGE
        assert result.extracted_tokens == []


@pytest.mark.asyncio
async def test_simulator_is_reproducible_with_seed():
    strategy = strategy_for(FindingKind.DELEGATECALL, 70)
    first = SimulatedExecutionHarness(random.Random(42))
    second = SimulatedExecutionHarness(random.Random(42))

    for _ in range(5):
        a = await first.execute(strategy, TARGET, 1)
        b = await second.execute(strategy, TARGET, 1)
        assert (a.success, a.gas_used, a.profit_raw) == (b.success, b.gas_used, b.profit_raw)
        assert a.extracted_tokens == b.extracted_tokens


@pytest.mark.asyncio
async def test_simulator_uses_ethereum_stablecoins_for_unknown_chain():
    harness = SimulatedExecutionHarness(random.Random(1))
    result = await harness.execute(strategy_for(FindingKind.DELEGATECALL, 95), TARGET, 999)

    eth_stables = {t.address for t in TokenRegistry.get_stablecoins(1)}
    assert {t.address for t in result.extracted_tokens} <= eth_stables


# ── Fork harness ─────────────────────────────

@pytest.mark.asyncio
async def test_profitable_fork_run():
    runtime = FakeSandboxRuntime(balance_delta=5 * 10 ** 18, token_deltas={USDC: 2_000_000, DAI: -5})
    harness = ForkExecutionHarness(runtime)

    result = await harness.execute(strategy_for(FindingKind.DELEGATECALL), TARGET, 1, 18_000_000)

    assert result.success is True
    assert result.simulated is False
    assert result.profit_raw == 5 * 10 ** 18
    assert result.gas_used == 150_000
    assert [(t.symbol, t.raw_amount) for t in result.extracted_tokens] == [
        ("WETH", str(5 * 10 ** 18)),
        ("USDC", "2000000"),
    ]
    assert runtime.torn_down == runtime.created == ["fork-0"]


@pytest.mark.asyncio
async def test_zero_delta_is_unsuccessful():
    runtime = FakeSandboxRuntime(balance_delta=0)
    result = await ForkExecutionHarness(runtime).execute(strategy_for(FindingKind.DELEGATECALL), TARGET, 1)

    assert result.success is False
    assert result.simulated is False
    assert result.error_message
    assert result.extracted_tokens == []
    assert runtime.live == 0


@pytest.mark.asyncio
async def test_sandbox_failure_becomes_unsuccessful_result():
    runtime = FakeSandboxRuntime(fail_on="deploy", error=SandboxFailure("Compilation failed: boom"))
    result = await ForkExecutionHarness(runtime).execute(strategy_for(FindingKind.DELEGATECALL), TARGET, 1)

    assert result.success is False
    assert "Compilation failed" in result.error_message
    assert runtime.torn_down == ["fork-0"]


@pytest.mark.asyncio
async def test_unexpected_error_is_absorbed_and_torn_down():
    runtime = FakeSandboxRuntime(fail_on="invoke", error=ValueError("bad trace"))
    result = await ForkExecutionHarness(runtime).execute(strategy_for(FindingKind.DELEGATECALL), TARGET, 1)

    assert result.success is False
    assert "bad trace" in result.error_message
    assert runtime.live == 0


@pytest.mark.asyncio
async def test_unreachable_fork_provider_propagates():
    runtime = FakeSandboxRuntime(fail_on="create_fork", error=ExternalServiceFailure("rpc down"))

    with pytest.raises(ExternalServiceFailure):
        await ForkExecutionHarness(runtime).execute(strategy_for(FindingKind.DELEGATECALL), TARGET, 1)
    assert runtime.created == []
    assert runtime.torn_down == []


@pytest.mark.asyncio
async def test_external_failure_mid_run_still_tears_down():
    runtime = FakeSandboxRuntime(fail_on="invoke", error=ExternalServiceFailure("rpc down"))

    with pytest.raises(ExternalServiceFailure):
        await ForkExecutionHarness(runtime).execute(strategy_for(FindingKind.DELEGATECALL), TARGET, 1)
    assert runtime.torn_down == ["fork-0"]


@pytest.mark.asyncio
async def test_cancellation_tears_down_fork():
    runtime = FakeSandboxRuntime(hang_on="invoke")
    harness = ForkExecutionHarness(runtime)

    task = asyncio.create_task(harness.execute(strategy_for(FindingKind.DELEGATECALL), TARGET, 1))
    await asyncio.wait_for(runtime.entered.wait(), timeout=5)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert runtime.torn_down == ["fork-0"]
    assert runtime.live == 0

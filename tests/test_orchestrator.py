"""
Tests for the session state machine and stage sequencing.
"""

import asyncio

import pytest

from a1_triage.config import Config
from a1_triage.errors import ExternalServiceFailure, InvalidTransition, ValidationFailure
from a1_triage.models import ExecutionResult, ExtractedToken, FindingKind, PriceQuote, SessionStatus, StageStatus
from a1_triage.pipeline import PipelineOrchestrator
from a1_triage.storage import InMemorySessionStore
from a1_triage.tools.execution_tool import ForkExecutionHarness
from a1_triage.tools.revenue_tool import RevenueNormalizer
from a1_triage.tools.strategy_factory import StrategyFactory
from a1_triage.tools.strategy_selector import StrategySelector
from a1_triage.tools.vulnerability_scanner import VulnerabilityScanner

from conftest import (
    CLEAN_SOURCE,
    TARGET,
    FakeAggregator,
    FakeHarness,
    FakeMetadataProvider,
    FakeSandboxRuntime,
    FakeSourceProvider,
    RecordingNotifier,
)


USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"

PROFITABLE = ExecutionResult(
    success=True,
    gas_used=200_000,
    profit_raw=1_000_000,
    extracted_tokens=[ExtractedToken(address=USDC, raw_amount="1000000000000", symbol="USDC", decimals=6)],
    simulated=True,
)


def build(source=None, harness=None, notifier=None, config=None, factory=None):
    store = InMemorySessionStore()
    source = source or FakeSourceProvider()
    harness = harness or FakeHarness()
    normalizer = RevenueNormalizer(
        FakeAggregator({USDC: PriceQuote(price_usd=1.0, price_eth=1 / 3000, liquidity_usd=5_000_000,
                                         price_impact=0.01, sources=["Chainlink", "DEX"], confidence=100)}),
        FakeMetadataProvider(),
    )
    orchestrator = PipelineOrchestrator(
        store=store,
        source_provider=source,
        scanner=VulnerabilityScanner(),
        factory=factory or StrategyFactory(),
        selector=StrategySelector(),
        harness=harness,
        normalizer=normalizer,
        notifier=notifier if notifier is not None else RecordingNotifier(),
        config=config or Config(stage_timeout=30),
    )
    return orchestrator, store


async def stage_summary(store, session_id):
    return [(r.stage_name, r.status) for r in await store.get_stage_records(session_id)]


@pytest.mark.asyncio
async def test_empty_finding_set_completes_without_execution():
    harness = FakeHarness()
    orchestrator, store = build(source=FakeSourceProvider(CLEAN_SOURCE), harness=harness)

    outcome = await orchestrator.analyze(TARGET, 1, 18_000_000)

    assert outcome.session.status == SessionStatus.COMPLETED
    assert outcome.findings == []
    assert outcome.strategy is None
    assert outcome.execution is None
    assert harness.calls == 0
    assert await store.get_exploit_discoveries() == []
    assert await store.get_status_history(outcome.session.id) == [
        SessionStatus.PENDING, SessionStatus.RUNNING, SessionStatus.COMPLETED
    ]
    assert await stage_summary(store, outcome.session.id) == [
        ("scan", StageStatus.COMPLETED),
        ("select", StageStatus.COMPLETED),
    ]


@pytest.mark.asyncio
async def test_successful_execution_records_discovery():
    notifier = RecordingNotifier()
    orchestrator, store = build(harness=FakeHarness(PROFITABLE), notifier=notifier)

    outcome = await orchestrator.analyze(TARGET, 1, 18_000_000, {"gas_price_gwei": 20})

    assert outcome.session.status == SessionStatus.COMPLETED
    assert outcome.strategy.kind == FindingKind.DELEGATECALL
    assert outcome.revenue.total_value_usd == pytest.approx(1_000_000)
    assert outcome.revenue.gas.cost_usd == pytest.approx(12.0)

    discoveries = await store.get_exploit_discoveries(outcome.session.id)
    assert len(discoveries) == 1
    discovery = discoveries[0]
    assert discovery is outcome.discovery
    assert discovery.exploit_type == FindingKind.DELEGATECALL
    assert discovery.confidence == outcome.strategy.confidence
    assert discovery.value_at_risk == pytest.approx(outcome.revenue.total_value_usd)
    assert discovery.proof_of_concept == outcome.strategy.proof_of_concept
    assert discovery.validated is False

    assert [stage for stage, _ in await stage_summary(store, outcome.session.id)] == [
        "scan", "select", "execute", "normalize"
    ]
    assert notifier.names[-2:] == ["exploit_discovered", "session_completed"]
    assert notifier.names.count("stage_started") == 4
    assert notifier.names.count("stage_completed") == 4


@pytest.mark.asyncio
async def test_unsuccessful_execution_completes_without_discovery():
    orchestrator, store = build(harness=FakeHarness(ExecutionResult(success=False, error_message="reverted")))

    outcome = await orchestrator.analyze(TARGET, 1)

    assert outcome.session.status == SessionStatus.COMPLETED
    assert outcome.execution.success is False
    assert outcome.revenue is None
    assert outcome.discovery is None
    assert await store.get_exploit_discoveries() == []
    assert len(await store.get_stage_records(outcome.session.id)) == 3


@pytest.mark.asyncio
async def test_unreachable_source_fails_session():
    notifier = RecordingNotifier()
    source = FakeSourceProvider(error=ExternalServiceFailure("explorer down"))
    orchestrator, store = build(source=source, notifier=notifier)

    outcome = await orchestrator.analyze(TARGET, 1)

    assert outcome.session.status == SessionStatus.FAILED
    assert "explorer down" in outcome.error
    records = await store.get_stage_records(outcome.session.id)
    assert [(r.stage_name, r.status) for r in records] == [("scan", StageStatus.FAILED)]
    assert "explorer down" in records[0].error
    assert await store.get_status_history(outcome.session.id) == [
        SessionStatus.PENDING, SessionStatus.RUNNING, SessionStatus.FAILED
    ]
    assert notifier.names[-1] == "session_failed"


@pytest.mark.asyncio
@pytest.mark.parametrize("address,chain_id,block", [
    ("0x1234", 1, None),
    ("1234567890abcdef1234567890abcdef1234567890", 1, None),
    ("0xZZ34567890abcdef1234567890abcdef12345678", 1, None),
    (TARGET, 0, None),
    (TARGET, -1, None),
    (TARGET, True, None),
    (TARGET, "1", None),
    (TARGET, 1, -5),
    (TARGET + "\n", 1, None),
])
async def test_malformed_input_never_creates_session(address, chain_id, block):
    orchestrator, store = build()

    with pytest.raises(ValidationFailure):
        await orchestrator.create_session(address, chain_id, block)
    assert await store.list_sessions() == []


@pytest.mark.asyncio
async def test_finished_session_cannot_be_rerun():
    orchestrator, store = build(source=FakeSourceProvider(CLEAN_SOURCE))
    outcome = await orchestrator.analyze(TARGET, 1)

    with pytest.raises(InvalidTransition):
        await orchestrator.run_session(outcome.session.id)
    assert await store.get_status_history(outcome.session.id) == [
        SessionStatus.PENDING, SessionStatus.RUNNING, SessionStatus.COMPLETED
    ]


@pytest.mark.asyncio
async def test_unknown_session_is_rejected():
    orchestrator, _ = build()
    with pytest.raises(ValidationFailure):
        await orchestrator.run_session("missing")


@pytest.mark.asyncio
async def test_stage_timeout_fails_session():
    runtime = FakeSandboxRuntime(hang_on="invoke")
    orchestrator, store = build(harness=ForkExecutionHarness(runtime), config=Config(stage_timeout=0.2))

    outcome = await orchestrator.analyze(TARGET, 1)

    assert outcome.session.status == SessionStatus.FAILED
    assert "exceeded" in outcome.error
    assert await stage_summary(store, outcome.session.id) == [
        ("scan", StageStatus.COMPLETED),
        ("select", StageStatus.COMPLETED),
        ("execute", StageStatus.FAILED),
    ]
    assert runtime.live == 0


@pytest.mark.asyncio
async def test_cancelled_session_is_failed_and_sandbox_released():
    runtime = FakeSandboxRuntime(hang_on="invoke")
    notifier = RecordingNotifier()
    orchestrator, store = build(harness=ForkExecutionHarness(runtime), notifier=notifier)

    session = await orchestrator.create_session(TARGET, 1)
    task = orchestrator.submit(session.id)
    await asyncio.wait_for(runtime.entered.wait(), timeout=5)

    assert await orchestrator.cancel(session.id) is True
    assert task.cancelled()

    stored = await store.get_session(session.id)
    assert stored.status == SessionStatus.FAILED
    records = await store.get_stage_records(session.id)
    assert (records[-1].stage_name, records[-1].status) == ("execute", StageStatus.FAILED)
    assert runtime.live == 0
    assert notifier.names[-1] == "session_failed"
    assert await orchestrator.cancel(session.id) is False


@pytest.mark.asyncio
async def test_concurrent_sessions_are_independent():
    orchestrator, store = build(harness=FakeHarness(PROFITABLE))

    sessions = [await orchestrator.create_session(TARGET, 1) for _ in range(3)]
    outcomes = await asyncio.gather(*(orchestrator.submit(s.id) for s in sessions))

    assert all(o.session.status == SessionStatus.COMPLETED for o in outcomes)
    assert len(await store.get_exploit_discoveries()) == 3
    for session in sessions:
        assert len(await store.get_exploit_discoveries(session.id)) == 1


@pytest.mark.asyncio
async def test_notifier_errors_do_not_fail_pipeline():
    orchestrator, _ = build(harness=FakeHarness(PROFITABLE), notifier=RecordingNotifier(fail=True))

    outcome = await orchestrator.analyze(TARGET, 1)

    assert outcome.session.status == SessionStatus.COMPLETED
    assert outcome.exploit_found


@pytest.mark.asyncio
async def test_status_reports_components():
    orchestrator, _ = build()
    status = await orchestrator.get_status()

    assert status["status"] == "operational"
    assert set(status["components"]) == {"scanner", "harness", "normalizer"}


@pytest.mark.asyncio
async def test_session_cancelled_before_it_starts_is_failed():
    harness = FakeHarness()
    notifier = RecordingNotifier()
    orchestrator, store = build(harness=harness, notifier=notifier)

    session = await orchestrator.create_session(TARGET, 1)
    task = orchestrator.submit(session.id)

    assert await orchestrator.cancel(session.id) is True
    assert task.cancelled()

    stored = await store.get_session(session.id)
    assert stored.status.is_terminal
    assert stored.status == SessionStatus.FAILED
    assert await store.get_status_history(session.id) == [SessionStatus.PENDING, SessionStatus.FAILED]
    assert await store.get_stage_records(session.id) == []
    assert harness.calls == 0
    assert notifier.names[-1] == "session_failed"


class RecordingFactory(StrategyFactory):
    def __init__(self):
        super().__init__()
        self.calls = []

    def create_all(self, findings, contract_address, source="", constructor_params=None, contract_state=None):
        self.calls.append((constructor_params, contract_state))
        return super().create_all(findings, contract_address, source, constructor_params, contract_state)


@pytest.mark.asyncio
async def test_session_context_reaches_strategy_generators():
    factory = RecordingFactory()
    orchestrator, _ = build(factory=factory)

    await orchestrator.analyze(TARGET, 56, configuration={
        "constructor_params": {"owner": TARGET},
        "contract_state": {"paused": False},
    })

    constructor_params, contract_state = factory.calls[0]
    assert constructor_params == {"owner": TARGET}
    assert contract_state == {"paused": False, "chain_id": 56}

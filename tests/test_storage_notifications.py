"""
Tests for the in-memory session store and the notification bus.
"""

import asyncio

import pytest

from a1_triage.models import (
    ExploitDiscovery,
    FindingKind,
    Session,
    SessionStatus,
    Severity,
    StageExecutionRecord,
    StageStatus,
)
from a1_triage.notifications import NotificationBus
from a1_triage.storage import InMemorySessionStore

from conftest import TARGET


# ── Session store ─────────────────────────────

@pytest.mark.asyncio
async def test_status_history_follows_updates():
    store = InMemorySessionStore()
    session = await store.create_session(Session(contract_address=TARGET, chain_id=1))

    session.status = SessionStatus.RUNNING
    running = await store.update_session(session)
    running.configuration["note"] = "same status"
    await store.update_session(running)
    running.status = SessionStatus.COMPLETED
    await store.update_session(running)

    assert await store.get_status_history(session.id) == [
        SessionStatus.PENDING, SessionStatus.RUNNING, SessionStatus.COMPLETED
    ]
    stored = await store.get_session(session.id)
    assert stored.status == SessionStatus.COMPLETED
    assert stored.updated_at >= stored.created_at


@pytest.mark.asyncio
async def test_returned_sessions_are_copies():
    store = InMemorySessionStore()
    session = await store.create_session(Session(contract_address=TARGET, chain_id=1))

    session.status = SessionStatus.FAILED

    assert (await store.get_session(session.id)).status == SessionStatus.PENDING


@pytest.mark.asyncio
async def test_duplicate_and_unknown_sessions_are_rejected():
    store = InMemorySessionStore()
    session = await store.create_session(Session(contract_address=TARGET, chain_id=1))

    with pytest.raises(KeyError):
        await store.create_session(session)
    with pytest.raises(KeyError):
        await store.update_session(Session(contract_address=TARGET, chain_id=1))
    with pytest.raises(KeyError):
        await store.append_stage_record(StageExecutionRecord(
            session_id="missing", stage_name="scan", status=StageStatus.COMPLETED, input={}, output={}
        ))
    assert await store.get_session("missing") is None


@pytest.mark.asyncio
async def test_stage_records_and_discoveries_are_per_session():
    store = InMemorySessionStore()
    first = await store.create_session(Session(contract_address=TARGET, chain_id=1))
    second = await store.create_session(Session(contract_address=TARGET, chain_id=56))

    for stage in ("scan", "select"):
        await store.append_stage_record(StageExecutionRecord(
            session_id=first.id, stage_name=stage, status=StageStatus.COMPLETED, input={}, output={}
        ))
    await store.create_exploit_discovery(ExploitDiscovery(
        session_id=second.id, contract_address=TARGET, chain_id=56,
        exploit_type=FindingKind.REENTRANCY, severity=Severity.CRITICAL, confidence=70,
        value_at_risk=1234.5, proof_of_concept="contract X {}", description="reentrancy",
    ))

    assert [r.stage_name for r in await store.get_stage_records(first.id)] == ["scan", "select"]
    assert await store.get_stage_records(second.id) == []
    assert await store.get_exploit_discoveries(first.id) == []
    assert len(await store.get_exploit_discoveries(second.id)) == 1
    assert len(await store.list_sessions()) == 2


# ── Notification bus ─────────────────────────────

@pytest.mark.asyncio
async def test_subscribers_receive_filtered_events():
    bus = NotificationBus()
    everything, failures = [], []
    bus.subscribe(lambda event, payload: everything.append(event))
    bus.subscribe(lambda event, payload: failures.append(payload), event_types=["session_failed"])

    bus.publish("stage_started", {"stage": "scan"})
    bus.publish("session_failed", {"error": "boom"})

    assert everything == ["stage_started", "session_failed"]
    assert failures == [{"error": "boom"}]


@pytest.mark.asyncio
async def test_async_subscribers_are_scheduled():
    bus = NotificationBus()
    received = []

    async def on_event(event, payload):
        await asyncio.sleep(0)
        received.append(event)

    bus.subscribe(on_event)
    bus.publish("session_completed", {})
    await bus.drain()

    assert received == ["session_completed"]


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others():
    bus = NotificationBus()
    received = []

    def broken(event, payload):
        raise RuntimeError("offline")

    async def broken_async(event, payload):
        raise RuntimeError("offline")

    bus.subscribe(broken)
    bus.subscribe(broken_async)
    bus.subscribe(lambda event, payload: received.append(event))

    bus.publish("exploit_discovered", {"summary": {}})
    await bus.drain()

    assert received == ["exploit_discovered"]


def test_unsubscribe_stops_delivery():
    bus = NotificationBus()
    received = []
    unsubscribe = bus.subscribe(lambda event, payload: received.append(event))

    bus.publish("stage_started", {})
    unsubscribe()
    unsubscribe()
    bus.publish("stage_started", {})

    assert received == ["stage_started"]


def test_async_subscriber_without_loop_is_skipped():
    bus = NotificationBus()

    async def on_event(event, payload):
        pass

    bus.subscribe(on_event)
    bus.publish("stage_started", {})

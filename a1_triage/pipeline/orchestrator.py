"""
Pipeline Orchestrator - Drives an analysis session through its stages

pending -> running -> completed | failed
pending -> failed (cancelled before the run started)

Stages run strictly in order: scan -> select -> execute -> normalize, then the
exploit discovery is recorded. Finding nothing to select or an unsuccessful
execution ends the run early and still completes the session.
"""

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from ..errors import InvalidTransition, StageTimeout, ValidationFailure
from ..interfaces import Notifier, SessionStore, SourceProvider
from ..models import (
    ExploitDiscovery,
    PipelineOutcome,
    Session,
    SessionStatus,
    StageExecutionRecord,
    StageStatus,
)
from ..tools.execution_tool import ExecutionHarness
from ..tools.revenue_tool import RevenueNormalizer
from ..tools.strategy_factory import StrategyFactory
from ..tools.strategy_selector import StrategySelector
from ..tools.vulnerability_scanner import VulnerabilityScanner


ADDRESS_PATTERN = re.compile(r"0x[a-fA-F0-9]{40}")

ALLOWED_TRANSITIONS = {
    SessionStatus.PENDING: (SessionStatus.RUNNING, SessionStatus.FAILED),
    SessionStatus.RUNNING: (SessionStatus.COMPLETED, SessionStatus.FAILED),
}

STAGES = ("scan", "select", "execute", "normalize")

StageBody = Callable[[], Awaitable[Tuple[Any, Dict[str, Any]]]]


def validate_target(contract_address: Any, chain_id: Any, block_number: Any) -> None:
    """Raise ValidationFailure for malformed session input"""
    if not isinstance(contract_address, str) or not ADDRESS_PATTERN.fullmatch(contract_address):
        raise ValidationFailure(f"Invalid contract address format: {contract_address!r}")
    if isinstance(chain_id, bool) or not isinstance(chain_id, int) or chain_id <= 0:
        raise ValidationFailure(f"Chain ID must be a positive integer, got {chain_id!r}")
    if block_number is not None and (
        isinstance(block_number, bool) or not isinstance(block_number, int) or block_number < 0
    ):
        raise ValidationFailure(f"Block number must be a non-negative integer, got {block_number!r}")


class PipelineOrchestrator:
    """
    Session state machine over the scanner, strategy, execution and
    revenue components

    Each stage writes exactly one StageExecutionRecord when it ends. Any
    unexpected stage error fails the session; nothing is retried.
    """

    def __init__(
        self,
        store: SessionStore,
        source_provider: SourceProvider,
        scanner: VulnerabilityScanner,
        factory: StrategyFactory,
        selector: StrategySelector,
        harness: ExecutionHarness,
        normalizer: RevenueNormalizer,
        notifier: Optional[Notifier] = None,
        config=None
    ):
        self.store = store
        self.source_provider = source_provider
        self.scanner = scanner
        self.factory = factory
        self.selector = selector
        self.harness = harness
        self.normalizer = normalizer
        self.notifier = notifier
        self.config = config
        self.stage_timeout = getattr(config, "stage_timeout", None)
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self._tasks: Dict[str, asyncio.Task] = {}

    async def create_session(
        self,
        contract_address: str,
        chain_id: int,
        block_number: Optional[int] = None,
        configuration: Optional[Dict[str, Any]] = None
    ) -> Session:
        """Validate the target and persist a pending session"""
        validate_target(contract_address, chain_id, block_number)

        session = await self.store.create_session(Session(
            contract_address=contract_address,
            chain_id=chain_id,
            block_number=block_number,
            configuration=dict(configuration or {}),
        ))
        self.logger.info(f"📋 Session {session.id} created for {contract_address} on chain {chain_id}")
        return session

    async def analyze(
        self,
        contract_address: str,
        chain_id: int,
        block_number: Optional[int] = None,
        configuration: Optional[Dict[str, Any]] = None
    ) -> PipelineOutcome:
        session = await self.create_session(contract_address, chain_id, block_number, configuration)
        return await self.run_session(session.id)

    def submit(self, session_id: str) -> asyncio.Task:
        """Run a session as an independent task"""
        task = asyncio.create_task(self.run_session(session_id), name=f"session-{session_id}")
        self._tasks[session_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(session_id, None))
        return task

    async def cancel(self, session_id: str) -> bool:
        """
        Cancel a submitted session and wait until it has recorded its failure

        A session cancelled before its run got going is failed here. Returns
        False when no such session is running.
        """
        task = self._tasks.get(session_id)
        if task is None or task.done():
            return False
        self.logger.warning(f"🛑 Cancelling session {session_id}")
        task.cancel()
        await asyncio.wait([task])

        session = await self.store.get_session(session_id)
        if session is not None and not session.status.is_terminal:
            await self._fail(session, "Session cancelled")
        return True

    async def run_session(self, session_id: str) -> PipelineOutcome:
        session = await self.store.get_session(session_id)
        if session is None:
            raise ValidationFailure(f"Unknown session: {session_id}")

        session = await self._transition(session, SessionStatus.RUNNING)
        outcome = PipelineOutcome(session=session)
        started = time.monotonic()

        self.logger.info(
            f"🚀 Session {session.id}: analyzing {session.contract_address} "
            f"on chain {session.chain_id} @ {session.block_number or 'latest'}"
        )

        try:
            await self._run_stages(session, outcome)
        except asyncio.CancelledError:
            outcome.error = "Session cancelled"
            outcome.session = await self._fail(session, outcome.error)
            raise
        except Exception as e:
            outcome.error = str(e) or type(e).__name__
            outcome.session = await self._fail(session, outcome.error)
            return outcome

        outcome.session = await self._transition(session, SessionStatus.COMPLETED)
        self._notify("session_completed", {
            "session_id": session.id,
            "exploit_found": outcome.exploit_found,
            "duration_ms": (time.monotonic() - started) * 1000,
        })

        result_msg = "🎉 exploit found" if outcome.exploit_found else "no exploit found"
        self.logger.info(f"✅ Session {session.id} completed: {result_msg}")
        return outcome

    async def _run_stages(self, session: Session, outcome: PipelineOutcome) -> None:
        source_text = await self._run_stage(
            session, "scan",
            {"contract_address": session.contract_address, "chain_id": session.chain_id,
             "block_number": session.block_number},
            lambda: self._scan(session, outcome),
        )

        strategy = await self._run_stage(
            session, "select",
            {"findings": len(outcome.findings)},
            lambda: self._select(session, outcome, source_text),
        )
        if strategy is None:
            self.logger.info(f"Session {session.id}: no strategy selected, stopping")
            return

        execution = await self._run_stage(
            session, "execute",
            {"strategy": strategy.kind.value, "entrypoint": strategy.entrypoint,
             "confidence": strategy.confidence},
            lambda: self._execute(session, outcome, strategy),
        )
        if not execution.success:
            self.logger.info(f"Session {session.id}: execution unsuccessful, stopping")
            return

        revenue = await self._run_stage(
            session, "normalize",
            {"tokens": len(execution.extracted_tokens), "gas_used": execution.gas_used},
            lambda: self._normalize(session, outcome, execution),
        )

        discovery = await self.store.create_exploit_discovery(ExploitDiscovery(
            session_id=session.id,
            contract_address=session.contract_address,
            chain_id=session.chain_id,
            exploit_type=strategy.kind,
            severity=strategy.severity,
            confidence=strategy.confidence,
            value_at_risk=revenue.total_value_usd,
            proof_of_concept=strategy.proof_of_concept,
            description=(
                f"{strategy.description}. Extracted ${revenue.total_value_usd:,.2f} "
                f"across {len(revenue.tokens)} token(s)"
                f"{' (simulated)' if execution.simulated else ''}"
            ),
            validated=not execution.simulated,
        ))
        outcome.discovery = discovery

        self.logger.info(
            f"🎯 Exploit discovered in {session.contract_address}: {strategy.kind.value} "
            f"(${revenue.total_value_usd:,.2f} at risk)"
        )
        self._notify("exploit_discovered", {
            "session_id": session.id,
            "summary": {
                "discovery_id": discovery.id,
                "exploit_type": strategy.kind.value,
                "severity": strategy.severity.value,
                "confidence": strategy.confidence,
                "value_at_risk": revenue.total_value_usd,
                "simulated": execution.simulated,
            },
        })

    async def _scan(self, session: Session, outcome: PipelineOutcome):
        bundle = await self.source_provider.get_sanitized_source(
            session.contract_address, session.chain_id, session.block_number
        )
        report = self.scanner.scan(bundle.source_text)
        outcome.findings = list(report.findings)
        outcome.warnings.extend(report.warnings)

        output = report.to_dict()
        output["contract_name"] = bundle.contract_name
        return bundle.source_text, output

    async def _select(self, session: Session, outcome: PipelineOutcome, source_text: str):
        contract_state = dict(session.configuration.get("contract_state") or {})
        contract_state["chain_id"] = session.chain_id
        strategies = self.factory.create_all(
            outcome.findings,
            session.contract_address,
            source_text,
            constructor_params=session.configuration.get("constructor_params"),
            contract_state=contract_state,
        )
        strategy = self.selector.select(strategies)
        outcome.strategy = strategy
        return strategy, {
            "candidates": len(strategies),
            "selected": strategy.kind.value if strategy else None,
            "confidence": strategy.confidence if strategy else None,
        }

    async def _execute(self, session: Session, outcome: PipelineOutcome, strategy):
        execution = await self.harness.execute(
            strategy, session.contract_address, session.chain_id, session.block_number
        )
        outcome.execution = execution
        return execution, {
            "success": execution.success,
            "simulated": execution.simulated,
            "gas_used": execution.gas_used,
            "profit_raw": str(execution.profit_raw),
            "extracted_tokens": len(execution.extracted_tokens),
            "error_message": execution.error_message,
        }

    async def _normalize(self, session: Session, outcome: PipelineOutcome, execution):
        revenue = await self.normalizer.normalize(
            session.chain_id,
            execution.extracted_tokens,
            block_number=session.block_number,
            gas_used=execution.gas_used,
            gas_price_gwei=session.configuration.get("gas_price_gwei"),
        )
        outcome.revenue = revenue
        return revenue, {
            "total_value_usd": revenue.total_value_usd,
            "net_profit_usd": revenue.net_profit_usd,
            "is_profitable": revenue.is_profitable,
            "risk_level": revenue.summary.risk_level.value,
            "successful_normalizations": revenue.summary.successful_normalizations,
        }

    async def _run_stage(self, session: Session, stage_name: str,
                         stage_input: Dict[str, Any], body: StageBody) -> Any:
        """
        Run one stage under the stage timeout and record how it ended

        Timeouts surface as StageTimeout; cancellation is recorded then re-raised.
        """
        self._notify("stage_started", {"session_id": session.id, "stage": stage_name})
        self.logger.info(f"▶️ Stage {stage_name} started for session {session.id}")
        started = time.monotonic()

        try:
            result, output = await asyncio.wait_for(body(), timeout=self.stage_timeout)
        except asyncio.TimeoutError as e:
            error = StageTimeout(f"Stage {stage_name} exceeded {self.stage_timeout}s")
            await self._record(session, stage_name, stage_input, StageStatus.FAILED, started, error=str(error))
            raise error from e
        except asyncio.CancelledError:
            await self._record(session, stage_name, stage_input, StageStatus.FAILED, started,
                               error="Stage cancelled")
            raise
        except Exception as e:
            await self._record(session, stage_name, stage_input, StageStatus.FAILED, started,
                               error=str(e) or type(e).__name__)
            raise

        await self._record(session, stage_name, stage_input, StageStatus.COMPLETED, started, output=output)
        return result

    async def _record(self, session: Session, stage_name: str, stage_input: Dict[str, Any],
                      status: StageStatus, started: float, output: Optional[Dict[str, Any]] = None,
                      error: Optional[str] = None) -> None:
        duration_ms = (time.monotonic() - started) * 1000
        await self.store.append_stage_record(StageExecutionRecord(
            session_id=session.id,
            stage_name=stage_name,
            status=status,
            input=stage_input,
            output=output or {},
            error=error,
            duration_ms=duration_ms,
        ))

        if status == StageStatus.COMPLETED:
            self.logger.info(f"✅ Stage {stage_name} completed in {duration_ms:.0f}ms")
        else:
            self.logger.error(f"❌ Stage {stage_name} failed after {duration_ms:.0f}ms: {error}")
        self._notify("stage_completed", {
            "session_id": session.id,
            "stage": stage_name,
            "status": status.value,
            "error": error,
        })

    async def _transition(self, session: Session, target: SessionStatus) -> Session:
        current = await self.store.get_session(session.id)
        if current is None:
            raise ValidationFailure(f"Unknown session: {session.id}")
        if target not in ALLOWED_TRANSITIONS.get(current.status, ()):
            raise InvalidTransition(
                f"Session {session.id} cannot move from {current.status.value} to {target.value}"
            )
        current.status = target
        return await self.store.update_session(current)

    async def _fail(self, session: Session, error: str) -> Session:
        failed = await self._transition(session, SessionStatus.FAILED)
        self.logger.error(f"💥 Session {session.id} failed: {error}")
        self._notify("session_failed", {"session_id": session.id, "error": error})
        return failed

    def _notify(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.publish(event_type, payload)
        except Exception as e:
            self.logger.warning(f"⚠️ Notification {event_type} not delivered: {e}")

    async def get_status(self) -> Dict[str, Any]:
        """Health of the orchestrator and its components"""
        components = {}
        for name, component in (
            ("scanner", self.scanner),
            ("harness", self.harness),
            ("normalizer", self.normalizer),
        ):
            try:
                components[name] = await component.get_status()
            except Exception as e:
                components[name] = {"status": "error", "error": str(e)}

        degraded = any(c.get("status") != "operational" for c in components.values())
        return {
            "status": "degraded" if degraded else "operational",
            "active_sessions": sorted(self._tasks),
            "stage_timeout": self.stage_timeout,
            "components": components,
        }

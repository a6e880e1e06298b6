"""
Execution Harness - Runs the selected strategy on an isolated fork, or simulates it

ForkExecutionHarness drives a SandboxRuntime (Foundry by default).
SimulatedExecutionHarness stands in when no fork-capable runtime is available;
its results are always tagged simulated=True.
"""

import random
from abc import abstractmethod
from typing import Any, Dict, List, Optional

from .base import BaseTool
from .forge_runtime import ForgeSandboxRuntime
from ..errors import ExternalServiceFailure, SandboxFailure
from ..interfaces import SandboxRuntime
from ..models import ExecutionResult, ExtractedToken, Strategy
from ..pricing.tokens import TokenRegistry, TokenInfo


SIMULATED_FAILURE_MESSAGE = "Exploit failed during execution"

SIMULATION_BASE_GAS = 100_000
SIMULATION_GAS_SPREAD = 200_000
SIMULATION_MIN_PROFIT = 100_000
SIMULATION_PROFIT_SPREAD = 1_000_000
SIMULATION_THRESHOLD_BASE = 60
SIMULATION_THRESHOLD_SPREAD = 20

# Token split of simulated proceeds, keyed by number of tokens
PROCEEDS_SPLITS = {
    1: (100,),
    2: (60, 40),
}


class ExecutionHarness(BaseTool):
    """Common interface for real and simulated strategy execution"""

    simulated = False

    @abstractmethod
    async def execute(
        self,
        strategy: Strategy,
        contract_address: str,
        chain_id: int,
        block_number: Optional[int] = None
    ) -> ExecutionResult:
        """
        Run a strategy against contract_address

        Sandbox failures are reported through ExecutionResult.error_message.
        ExternalServiceFailure (fork provider unreachable) propagates.
        """
        pass


class ForkExecutionHarness(ExecutionHarness):
    """
    Executes proof-of-concept contracts on an ephemeral fork

    create_fork -> deploy -> invoke -> teardown, with teardown on every exit
    path. success is true only for a strictly positive balance delta.
    """

    def __init__(self, runtime: SandboxRuntime, config=None):
        super().__init__(config)
        self.runtime = runtime

    def get_name(self) -> str:
        return "fork_execution_harness"

    def get_description(self) -> str:
        return "Executes exploit strategies against a forked chain at a pinned block"

    async def execute(
        self,
        strategy: Strategy,
        contract_address: str,
        chain_id: int,
        block_number: Optional[int] = None
    ) -> ExecutionResult:
        self.logger.info(
            f"Executing {strategy.kind.value} strategy against {contract_address} "
            f"on chain {chain_id} @ {block_number or 'latest'}"
        )

        try:
            handle = await self.runtime.create_fork(chain_id, block_number, contract_address)
        except ExternalServiceFailure:
            raise
        except Exception as e:
            self.logger.error(f"❌ Could not create fork: {e}")
            return ExecutionResult.failure(f"Fork creation failed: {e}")

        try:
            deployed_address = await self.runtime.deploy(handle, strategy.proof_of_concept)
            invocation = await self.runtime.invoke(handle, deployed_address, strategy.entrypoint)
        except ExternalServiceFailure:
            raise
        except SandboxFailure as e:
            self.logger.error(f"❌ Sandbox execution failed: {e}")
            return ExecutionResult.failure(str(e))
        except Exception as e:
            self.logger.error(f"❌ Unexpected sandbox error: {e}")
            return ExecutionResult.failure(f"Execution error: {e}")
        finally:
            await self._teardown(handle)

        success = invocation.balance_delta > 0
        extracted = self._extracted_tokens(chain_id, invocation.balance_delta, invocation.token_deltas)

        error_message = None
        if not success:
            error_message = handle.state.get("revert_reason") or "Exploit produced no profit"

        success_msg = "✅ Profitable exploit!" if success else "❌ Exploit failed or unprofitable"
        self.logger.info(
            f"Execution completed: {success_msg} "
            f"(Gas: {invocation.gas_used:,}, delta: {invocation.balance_delta} wei)"
        )

        return ExecutionResult(
            success=success,
            gas_used=invocation.gas_used,
            profit_raw=max(invocation.balance_delta, 0),
            extracted_tokens=extracted if success else [],
            trace=list(invocation.trace),
            error_message=error_message,
            simulated=False,
        )

    async def _teardown(self, handle) -> None:
        try:
            await self.runtime.teardown(handle)
        except Exception as e:
            self.logger.error(f"Sandbox teardown failed for fork {handle.id}: {e}")

    def _extracted_tokens(self, chain_id: int, balance_delta: int,
                          token_deltas: Dict[str, int]) -> List[ExtractedToken]:
        tokens = []
        wrapped = TokenRegistry.get_wrapped_native(chain_id)
        if balance_delta > 0 and wrapped:
            tokens.append(ExtractedToken(
                address=wrapped.address,
                raw_amount=str(balance_delta),
                symbol=wrapped.symbol,
                decimals=wrapped.decimals,
            ))

        for address, delta in token_deltas.items():
            if delta <= 0:
                continue
            info = TokenRegistry.get_token_by_address(chain_id, address)
            tokens.append(ExtractedToken(
                address=address,
                raw_amount=str(delta),
                symbol=info.symbol if info else None,
                decimals=info.decimals if info else None,
            ))
        return tokens

    async def get_status(self) -> Dict[str, Any]:
        available = await self.runtime.is_available()
        return self._status(
            "operational" if available else "degraded",
            fork_available=available,
            forge_version=getattr(self.runtime, "version", None),
        )


class SimulatedExecutionHarness(ExecutionHarness):
    """
    Statistical stand-in for environments without a fork-capable sandbox

    Succeeds when strategy confidence beats a threshold drawn from [60, 80).
    Proceeds are split over one or two stablecoins of the chain.
    """

    simulated = True

    def __init__(self, rng: Optional[random.Random] = None, config=None):
        super().__init__(config)
        self.rng = rng if rng is not None else random.Random()

    def get_name(self) -> str:
        return "simulated_execution_harness"

    def get_description(self) -> str:
        return "Synthesizes plausible exploit outcomes when no fork sandbox is available"

    async def execute(
        self,
        strategy: Strategy,
        contract_address: str,
        chain_id: int,
        block_number: Optional[int] = None
    ) -> ExecutionResult:
        try:
            return self._simulate(strategy, chain_id)
        except Exception as e:
            self.logger.error(f"❌ Simulation failed: {e}")
            return ExecutionResult.failure(f"Simulation error: {e}", simulated=True)

    def _simulate(self, strategy: Strategy, chain_id: int) -> ExecutionResult:
        threshold = SIMULATION_THRESHOLD_BASE + self.rng.random() * SIMULATION_THRESHOLD_SPREAD
        success = strategy.confidence > threshold
        gas_used = SIMULATION_BASE_GAS + self.rng.randrange(SIMULATION_GAS_SPREAD)

        if not success:
            self.logger.info(
                f"🎲 Simulated {strategy.kind.value} failed "
                f"(confidence {strategy.confidence:.1f} <= threshold {threshold:.1f})"
            )
            return ExecutionResult(
                success=False,
                gas_used=gas_used,
                trace=self._trace(strategy, success=False),
                error_message=SIMULATED_FAILURE_MESSAGE,
                simulated=True,
            )

        profit = SIMULATION_MIN_PROFIT + self.rng.randrange(SIMULATION_PROFIT_SPREAD)
        stablecoins = self._stablecoins(chain_id)
        token_count = min(self.rng.randint(1, 2), len(stablecoins))
        split = PROCEEDS_SPLITS[token_count]

        extracted = [
            ExtractedToken(
                address=token.address,
                raw_amount=str(profit * share * 10 ** token.decimals // 100),
                symbol=token.symbol,
                decimals=token.decimals,
            )
            for token, share in zip(stablecoins, split)
        ]

        self.logger.info(
            f"🎲 Simulated {strategy.kind.value} succeeded: ~${profit:,} across {token_count} token(s)"
        )
        return ExecutionResult(
            success=True,
            gas_used=gas_used,
            profit_raw=profit,
            extracted_tokens=extracted,
            trace=self._trace(strategy, success=True),
            simulated=True,
        )

    def _stablecoins(self, chain_id: int) -> List[TokenInfo]:
        stablecoins = TokenRegistry.get_stablecoins(chain_id)
        return stablecoins or TokenRegistry.get_stablecoins(1)

    @staticmethod
    def _trace(strategy: Strategy, success: bool) -> List[str]:
        entry = f"{strategy.entrypoint}{{value: 1000000000000000000}}()"
        if not success:
            return [
                "├─ [0] ExploitTest::testExploit()",
                f"│  ├─ [21000] Exploit::{entry}",
                "│  │  └─ ← revert",
                "│  └─ ← revert",
            ]
        return [
            "├─ [0] ExploitTest::testExploit()",
            f"│  ├─ [21000] Exploit::{entry}",
            "│  │  ├─ [31000] TARGET::call()",
            "│  │  │  └─ ← ()",
            "│  │  └─ ← ()",
            "│  └─ ← ()",
        ]

    async def get_status(self) -> Dict[str, Any]:
        return self._status("operational", fork_available=False, note="simulated results only")


async def create_execution_harness(
    config,
    runtime: Optional[SandboxRuntime] = None,
    rng: Optional[random.Random] = None
) -> ExecutionHarness:
    """
    Pick the fork harness when fork execution is enabled and the runtime is
    available, otherwise the simulator
    """
    if getattr(config, "fork_execution_enabled", False):
        runtime = runtime if runtime is not None else ForgeSandboxRuntime(config)
        if await runtime.is_available():
            return ForkExecutionHarness(runtime, config)

    if rng is None:
        seed = getattr(config, "simulator_seed", None)
        rng = random.Random(seed)
    return SimulatedExecutionHarness(rng, config)

"""
Collaborator interfaces consumed by the pipeline core.

Concrete adapters live next to the code they wrap (Etherscan source fetching,
Foundry sandbox, Chainlink/DEX clients, in-memory storage). Tests inject fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .models import (
    ExploitDiscovery,
    Session,
    StageExecutionRecord,
    TokenMetadata,
)


@dataclass
class SourceBundle:
    """Sanitized source handed to the scanner"""
    source_text: str
    contract_name: str = "Unknown"
    implementation_address: Optional[str] = None


@dataclass
class ForkHandle:
    """Opaque handle to one live sandbox fork"""
    id: str
    chain_id: int
    block_number: Optional[int]
    workdir: Optional[str] = None
    target_address: Optional[str] = None
    state: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Invocation:
    """Measured effect of invoking a deployed attack entrypoint"""
    balance_delta: int
    gas_used: int
    trace: List[str] = field(default_factory=list)
    token_deltas: Dict[str, int] = field(default_factory=dict)


class SourceProvider(ABC):

    @abstractmethod
    async def get_sanitized_source(
        self,
        contract_address: str,
        chain_id: int,
        block_number: Optional[int] = None
    ) -> SourceBundle:
        """Return verified, sanitized source text for a contract."""
        pass


class SandboxRuntime(ABC):
    """Isolated fork environment. teardown must be called once per create_fork."""

    @abstractmethod
    async def is_available(self) -> bool:
        pass

    @abstractmethod
    async def create_fork(
        self,
        chain_id: int,
        block_number: Optional[int],
        target_address: Optional[str] = None
    ) -> ForkHandle:
        pass

    @abstractmethod
    async def deploy(self, handle: ForkHandle, source_template: str) -> str:
        """Compile and deploy the template, returning the deployed address."""
        pass

    @abstractmethod
    async def invoke(self, handle: ForkHandle, deployed_address: str, entrypoint: str) -> Invocation:
        pass

    @abstractmethod
    async def teardown(self, handle: ForkHandle) -> None:
        pass


class PriceFeedProvider(ABC):

    @abstractmethod
    async def latest_price(
        self,
        feed_address: str,
        chain_id: int,
        block_number: Optional[int] = None
    ) -> float:
        """USD price reported by an oracle feed. Raises on failure."""
        pass


class DexQuoteProvider(ABC):

    @abstractmethod
    async def pair_reserves(
        self,
        token_a: str,
        token_b: str,
        chain_id: int,
        block_number: Optional[int] = None
    ) -> Tuple[int, int]:
        """Reserves ordered as (token_a, token_b). Raises when no pair exists."""
        pass

    @abstractmethod
    async def quote(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        chain_id: int,
        block_number: Optional[int] = None
    ) -> int:
        pass


class TokenMetadataProvider(ABC):

    @abstractmethod
    async def token_metadata(self, token_address: str, chain_id: int) -> TokenMetadata:
        pass


class SessionStore(ABC):
    """Persistence for sessions, stage records and discoveries"""

    @abstractmethod
    async def create_session(self, session: Session) -> Session:
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[Session]:
        pass

    @abstractmethod
    async def update_session(self, session: Session) -> Session:
        pass

    @abstractmethod
    async def append_stage_record(self, record: StageExecutionRecord) -> None:
        pass

    @abstractmethod
    async def get_stage_records(self, session_id: str) -> List[StageExecutionRecord]:
        pass

    @abstractmethod
    async def create_exploit_discovery(self, discovery: ExploitDiscovery) -> ExploitDiscovery:
        pass

    @abstractmethod
    async def get_exploit_discoveries(self, session_id: Optional[str] = None) -> List[ExploitDiscovery]:
        pass


class Notifier(ABC):

    @abstractmethod
    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        """Fire-and-forget. Implementations must not raise."""
        pass

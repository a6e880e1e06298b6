"""
Core data model shared by the triage pipeline stages
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional, List, Tuple


MIN_CONFIDENCE = 5
MAX_CONFIDENCE = 95


def clip_confidence(value: float) -> float:
    """Clamp a confidence score to the [5, 95] band"""
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, value))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FindingKind(str, Enum):
    REENTRANCY = "reentrancy"
    INTEGER_OVERFLOW = "integer-overflow"
    ACCESS_CONTROL = "access-control"
    DELEGATECALL = "delegatecall"
    UNCHECKED_CALL = "unchecked-call"
    PRICE_ORACLE_MANIPULATION = "price-oracle-manipulation"
    FLASH_LOAN = "flash-loan"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ProfitTier(str, Enum):
    LOW_TO_MEDIUM = "Low to Medium"
    MEDIUM = "Medium"
    HIGH = "High"
    VERY_HIGH = "Very High"


class LiquidityClass(str, Enum):
    VERY_LOW = "very-low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    UNKNOWN = "unknown"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very-high"


class SessionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class StageStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Finding:
    """A lexical vulnerability signature detected in contract source"""
    kind: FindingKind
    severity: Severity
    description: str
    match_count: int
    confidence: int


@dataclass(frozen=True)
class Strategy:
    """Exploit plan synthesized from exactly one Finding"""
    kind: FindingKind
    severity: Severity
    confidence: float
    description: str
    proof_of_concept: str
    estimated_profit: ProfitTier
    requirements: Tuple[str, ...] = ()
    steps: Tuple[str, ...] = ()
    entrypoint: str = "exploit"


@dataclass(frozen=True)
class ExtractedToken:
    """Raw token proceeds reported by an execution harness"""
    address: str
    raw_amount: str
    symbol: Optional[str] = None
    decimals: Optional[int] = None


@dataclass
class ExecutionResult:
    """Outcome of running a Strategy in a sandbox or the simulator"""
    success: bool
    gas_used: int = 0
    profit_raw: int = 0
    extracted_tokens: List[ExtractedToken] = field(default_factory=list)
    trace: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    simulated: bool = False

    @classmethod
    def failure(cls, error_message: str, simulated: bool = False) -> 'ExecutionResult':
        return cls(success=False, error_message=error_message, simulated=simulated)


@dataclass
class PriceQuote:
    price_usd: float = 0.0
    price_eth: float = 0.0
    liquidity_usd: float = 0.0
    price_impact: float = 0.0
    sources: List[str] = field(default_factory=list)
    confidence: int = 0


@dataclass(frozen=True)
class TokenMetadata:
    symbol: str = "UNKNOWN"
    decimals: int = 18
    name: str = "Unknown Token"


@dataclass
class NormalizedToken:
    address: str
    symbol: str
    decimals: int
    raw_amount: str
    amount_decimal: float = 0.0
    price_usd: float = 0.0
    price_eth: float = 0.0
    value_usd: float = 0.0
    value_eth: float = 0.0
    liquidity: LiquidityClass = LiquidityClass.UNKNOWN
    liquidity_usd: float = 0.0
    price_impact: float = 0.0
    sources: List[str] = field(default_factory=list)
    confidence: int = 0
    error: Optional[str] = None


@dataclass
class GasCost:
    gas_used: Optional[int]
    gas_price_gwei: Optional[float]
    cost_eth: float = 0.0
    cost_usd: float = 0.0
    estimated: bool = False


@dataclass
class MarketContext:
    total_liquidity_usd: float = 0.0
    average_price_impact: float = 0.0
    high_liquidity_tokens: int = 0
    risk_tokens: int = 0


@dataclass
class RevenueSummary:
    total_tokens: int
    successful_normalizations: int
    high_liquidity_tokens: int
    risk_level: RiskLevel
    risk_score: int


@dataclass
class RevenueReport:
    chain_id: int
    block_number: Optional[int]
    tokens: List[NormalizedToken]
    total_value_usd: float
    total_value_eth: float
    gas: GasCost
    net_profit_usd: float
    net_profit_eth: float
    is_profitable: bool
    profitability_ratio: float
    native_price_usd: float
    market: MarketContext
    summary: RevenueSummary

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Session:
    contract_address: str
    chain_id: int
    block_number: Optional[int] = None
    configuration: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: SessionStatus = SessionStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class StageExecutionRecord:
    session_id: str
    stage_name: str
    status: StageStatus
    input: Dict[str, Any]
    output: Dict[str, Any]
    error: Optional[str] = None
    duration_ms: float = 0.0


@dataclass(frozen=True)
class ExploitDiscovery:
    session_id: str
    contract_address: str
    chain_id: int
    exploit_type: FindingKind
    severity: Severity
    confidence: float
    value_at_risk: float
    proof_of_concept: str
    description: str
    validated: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class PipelineOutcome:
    """What a single run_session call produced"""
    session: Session
    findings: List[Finding] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    strategy: Optional[Strategy] = None
    execution: Optional[ExecutionResult] = None
    revenue: Optional[RevenueReport] = None
    discovery: Optional[ExploitDiscovery] = None
    error: Optional[str] = None

    @property
    def exploit_found(self) -> bool:
        return self.discovery is not None

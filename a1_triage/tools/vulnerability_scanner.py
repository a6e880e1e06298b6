"""
Vulnerability Scanner - Lexical danger-signature detection over sanitized source
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Pattern

from .base import BaseTool
from ..errors import ParseFailure
from ..models import Finding, FindingKind, Severity, clip_confidence


@dataclass(frozen=True)
class Signature:
    kind: FindingKind
    pattern: Pattern
    severity: Severity
    description: str
    multiplier: float


# Declaration order is the emission order of findings
SIGNATURES = (
    Signature(
        FindingKind.REENTRANCY,
        re.compile(r"(?:call|transfer|send)[\s\S]*?(?:before|after)[\s\S]*?(?:state|balance)", re.IGNORECASE),
        Severity.CRITICAL,
        "Potential reentrancy vulnerability detected",
        1.5,
    ),
    Signature(
        FindingKind.INTEGER_OVERFLOW,
        re.compile(r"(?:\+\+|--|\+=|-=|\*=|/=)(?!\s*(?:require|assert))", re.IGNORECASE),
        Severity.HIGH,
        "Potential integer overflow/underflow vulnerability",
        1.1,
    ),
    Signature(
        FindingKind.ACCESS_CONTROL,
        re.compile(r"(?:onlyOwner|onlyAdmin|modifier)[\s\S]*?(?:public|external)", re.IGNORECASE),
        Severity.HIGH,
        "Access control bypass potential",
        1.2,
    ),
    Signature(
        FindingKind.DELEGATECALL,
        re.compile(r"delegatecall", re.IGNORECASE),
        Severity.CRITICAL,
        "Dangerous delegatecall usage detected",
        1.8,
    ),
    Signature(
        FindingKind.UNCHECKED_CALL,
        re.compile(r"\.call\([^)]*\)(?!\s*(?:require|assert))", re.IGNORECASE),
        Severity.MEDIUM,
        "Unchecked external call detected",
        1.0,
    ),
    Signature(
        FindingKind.PRICE_ORACLE_MANIPULATION,
        re.compile(r"(?:price|oracle|twap)[\s\S]*?(?:manipulation|attack)", re.IGNORECASE),
        Severity.HIGH,
        "Price oracle manipulation vulnerability",
        1.4,
    ),
    Signature(
        FindingKind.FLASH_LOAN,
        re.compile(r"(?:flashloan|flash|loan)[\s\S]*?(?:arbitrage|exploit)", re.IGNORECASE),
        Severity.MEDIUM,
        "Flash loan exploit pattern detected",
        1.3,
    ),
)

PROTECTIVE_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (r"require\(", r"assert\(", r"revert\(", r"nonReentrant", r"SafeMath", r"OpenZeppelin")
)

BASE_CONFIDENCE = 30
MATCH_BONUS = 10
MATCH_BONUS_CAP = 30
PROTECTION_PENALTY = 5
PROTECTION_PENALTY_CAP = 20

# Lazy multi-line signatures scale with source length times match count
MAX_SOURCE_LENGTH = 1_000_000


@dataclass
class ScanReport:
    findings: List[Finding] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    protection_count: int = 0

    @property
    def critical_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.CRITICAL)

    @property
    def high_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.HIGH)

    def to_dict(self) -> Dict:
        return {
            "total_found": len(self.findings),
            "critical_count": self.critical_count,
            "high_count": self.high_count,
            "protection_count": self.protection_count,
            "findings": [
                {
                    "kind": f.kind.value,
                    "severity": f.severity.value,
                    "matches": f.match_count,
                    "confidence": f.confidence,
                }
                for f in self.findings
            ],
            "warnings": list(self.warnings),
        }


def count_protective_signatures(source_text: str) -> int:
    return sum(len(p.findall(source_text)) for p in PROTECTIVE_PATTERNS)


def score_confidence(multiplier: float, match_count: int, protection_count: int) -> int:
    """
    Heuristic confidence for one category

    30 x multiplier, plus 10 per match (capped at 30), minus 5 per protective
    signature (capped at 20), clipped to [5, 95].
    """
    score = BASE_CONFIDENCE * multiplier
    score += min(match_count * MATCH_BONUS, MATCH_BONUS_CAP)
    score -= min(protection_count * PROTECTION_PENALTY, PROTECTION_PENALTY_CAP)
    return int(round(clip_confidence(score)))


class VulnerabilityScanner(BaseTool):
    """
    Scans source text for a fixed set of lexical danger signatures

    Heuristic only: a finding means a signature matched, not that the
    contract is exploitable.
    """

    def get_name(self) -> str:
        return "vulnerability_scanner"

    def get_description(self) -> str:
        return "Detects reentrancy, overflow, access control, delegatecall, unchecked call, oracle and flash loan signatures"

    def scan(self, source_text: str) -> ScanReport:
        """
        Scan source text and return findings in category declaration order.

        Never raises: analysis errors degrade to an empty report with a warning.
        """
        try:
            return self._analyze(source_text)
        except ParseFailure as e:
            self.logger.warning(f"⚠️ Source analysis failed: {e}")
            return ScanReport(warnings=[f"Source analysis failed: {e}"])

    def _analyze(self, source_text: str) -> ScanReport:
        if not isinstance(source_text, str):
            raise ParseFailure(f"expected source text, got {type(source_text).__name__}")
        if len(source_text) > MAX_SOURCE_LENGTH:
            raise ParseFailure(f"source of {len(source_text):,} characters exceeds the {MAX_SOURCE_LENGTH:,} limit")

        try:
            protection_count = count_protective_signatures(source_text)
            findings = []
            for signature in SIGNATURES:
                match_count = len(signature.pattern.findall(source_text))
                if match_count == 0:
                    continue
                findings.append(Finding(
                    kind=signature.kind,
                    severity=signature.severity,
                    description=signature.description,
                    match_count=match_count,
                    confidence=score_confidence(signature.multiplier, match_count, protection_count),
                ))
        except (re.error, RecursionError, MemoryError) as e:
            raise ParseFailure(str(e)) from e

        if findings:
            summary = ", ".join(f"{f.kind.value}({f.confidence})" for f in findings)
            self.logger.info(f"🔍 {len(findings)} signature(s) found: {summary}")
        else:
            self.logger.info("✅ No vulnerability signatures found")

        return ScanReport(findings=findings, protection_count=protection_count)

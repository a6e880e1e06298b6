"""
A1 Triage - Smart contract exploit triage and valuation pipeline
For Defensive Cybersecurity and Vulnerability Research

Scans verified contract source for vulnerability signatures, synthesizes
proof-of-concept strategies, executes the best one on a fork (or simulates
it) and values the extracted assets.
"""

__version__ = "0.1.0"

from .config import Config
from .errors import (
    TriageError,
    ParseFailure,
    ExternalServiceFailure,
    ItemIsolationFailure,
    SandboxFailure,
    ValidationFailure,
    InvalidTransition,
    StageTimeout,
)
from .pipeline import PipelineOrchestrator, build_orchestrator

__all__ = [
    "Config",
    "PipelineOrchestrator",
    "build_orchestrator",
    "TriageError",
    "ParseFailure",
    "ExternalServiceFailure",
    "ItemIsolationFailure",
    "SandboxFailure",
    "ValidationFailure",
    "InvalidTransition",
    "StageTimeout",
]

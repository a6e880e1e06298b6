"""
Exception hierarchy for the triage pipeline
"""


class TriageError(Exception):
    """Base class for all pipeline errors"""


class ParseFailure(TriageError):
    """Source text could not be analysed"""


class ExternalServiceFailure(TriageError):
    """A feed, exchange, explorer or fork provider was unreachable"""


class ItemIsolationFailure(TriageError):
    """Price or metadata resolution failed for a single token"""

    def __init__(self, token_address: str, message: str):
        super().__init__(f"{token_address}: {message}")
        self.token_address = token_address


class SandboxFailure(TriageError):
    """The execution sandbox could not run a strategy"""


class ValidationFailure(TriageError):
    """Session input is malformed"""


class InvalidTransition(TriageError):
    """A session status change the state machine does not allow"""


class StageTimeout(TriageError):
    """A pipeline stage exceeded its time limit"""

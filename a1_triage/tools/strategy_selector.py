"""
Strategy Selector - Deterministic choice of the single strategy to execute
"""

from typing import Iterable, Optional

from .base import BaseTool
from ..models import FindingKind, Strategy


# First kind in this order wins a confidence tie
PRECEDENCE = (
    FindingKind.REENTRANCY,
    FindingKind.INTEGER_OVERFLOW,
    FindingKind.ACCESS_CONTROL,
    FindingKind.DELEGATECALL,
    FindingKind.UNCHECKED_CALL,
    FindingKind.PRICE_ORACLE_MANIPULATION,
    FindingKind.FLASH_LOAN,
)

_RANK = {kind: index for index, kind in enumerate(PRECEDENCE)}


def selection_key(strategy: Strategy):
    return (-strategy.confidence, _RANK.get(strategy.kind, len(PRECEDENCE)))


class StrategySelector(BaseTool):

    def get_name(self) -> str:
        return "strategy_selector"

    def get_description(self) -> str:
        return "Selects the highest-confidence strategy with a fixed category tie-break"

    def select(self, strategies: Iterable[Strategy]) -> Optional[Strategy]:
        """Pick the maximum-confidence strategy. Independent of input order."""
        candidates = list(strategies)
        if not candidates:
            return None

        selected = min(candidates, key=selection_key)
        self.logger.info(
            f"🎯 Selected {selected.kind.value} strategy "
            f"(confidence {selected.confidence:.1f}) out of {len(candidates)}"
        )
        return selected

"""Outcome resolution for locally expired trades.

The production resolver simulates the result; nothing here talks to the
gateway. Remote records, when available, win over whatever this decides.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Protocol

from deriv_signals.models.trade_models import Trade, TradeType

MAX_MOVEMENT = 0.01      # +/- 1% price movement
FLIP_THRESHOLD = 0.7


@dataclass(frozen=True)
class Outcome:
    won: bool
    movement: float      # relative, e.g. 0.004 = +0.4%


class OutcomeResolver(Protocol):
    def resolve(self, trade: Trade) -> Outcome: ...


class RandomOutcomeResolver:
    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def resolve(self, trade: Trade) -> Outcome:
        movement = (self._rng.random() - 0.5) * 2 * MAX_MOVEMENT
        if trade.type is TradeType.CALL:
            won = movement > 0
        elif trade.type is TradeType.PUT:
            won = movement < 0
        elif trade.type is TradeType.DIGITMATCH:
            won = self._rng.random() > 0.6
        else:
            won = self._rng.random() > 0.4

        # market noise
        if self._rng.random() > FLIP_THRESHOLD:
            won = not won
        return Outcome(won=won, movement=movement)


class FixedOutcomeResolver:
    def __init__(self, won: bool = True, movement: float = 0.0) -> None:
        self.outcome = Outcome(won=won, movement=movement)
        self.calls = 0

    def resolve(self, trade: Trade) -> Outcome:
        self.calls += 1
        return self.outcome

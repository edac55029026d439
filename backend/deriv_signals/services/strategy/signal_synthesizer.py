"""Weighted-vote signal synthesis with confidence floor and strength tiers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from deriv_signals.infrastructure.logging.logging import get_logger
from deriv_signals.infrastructure.utils.timeutils import now_ms as _now_ms
from deriv_signals.models.market_models import BandState, IndicatorSnapshot, MacdSign, Trend
from deriv_signals.models.signal_models import Signal, SignalType, Strength
from deriv_signals.models.trade_models import TradeType

log = get_logger("signal_synthesizer")

ACTIVATION_WEIGHT = 30
CONFIDENCE_BASE = 50
CONFIDENCE_CAP = 95
NEUTRAL_CONFIDENCE_FLOOR = 30
MIN_CONFIDENCE = 55

MOMENTUM_THRESHOLD = 0.15       # percent
VOLATILITY_THRESHOLD = 0.003

DURATION_BY_STRENGTH = {Strength.CRITICAL: 180, Strength.HIGH: 300}
DEFAULT_DURATION = 600


@dataclass(frozen=True)
class Vote:
    side: SignalType        # BUY | SELL
    weight: int
    reason: str


def collect_votes(snapshot: IndicatorSnapshot) -> List[Vote]:
    votes: List[Vote] = []

    r = snapshot.rsi
    if r < 25:
        votes.append(Vote(SignalType.BUY, 25, "Severely oversold (RSI < 25)"))
    elif r < 35:
        votes.append(Vote(SignalType.BUY, 15, "Oversold conditions"))
    elif r > 75:
        votes.append(Vote(SignalType.SELL, 25, "Severely overbought (RSI > 75)"))
    elif r > 65:
        votes.append(Vote(SignalType.SELL, 15, "Overbought conditions"))

    if snapshot.macd is MacdSign.BULLISH:
        votes.append(Vote(SignalType.BUY, 20, "Bullish MACD crossover"))
    elif snapshot.macd is MacdSign.BEARISH:
        votes.append(Vote(SignalType.SELL, 20, "Bearish MACD crossover"))

    if snapshot.bollinger is BandState.SQUEEZE:
        votes.append(Vote(SignalType.BUY, 15, "Volatility breakout expected"))

    if snapshot.trend is Trend.UP and snapshot.momentum_pct > MOMENTUM_THRESHOLD:
        votes.append(Vote(SignalType.BUY, 20, "Strong upward momentum"))
    elif snapshot.trend is Trend.DOWN and snapshot.momentum_pct < -MOMENTUM_THRESHOLD:
        votes.append(Vote(SignalType.SELL, 20, "Strong downward momentum"))

    if snapshot.volatility > VOLATILITY_THRESHOLD:
        votes.append(Vote(SignalType.BUY, 10, "High volatility opportunity"))

    return votes


def strength_for(confidence: float) -> Strength:
    if confidence >= 85:
        return Strength.CRITICAL
    if confidence >= 75:
        return Strength.HIGH
    if confidence >= 65:
        return Strength.MEDIUM
    return Strength.LOW


def duration_for(strength: Strength) -> int:
    return DURATION_BY_STRENGTH.get(strength, DEFAULT_DURATION)


def score_votes(votes: Sequence[Vote]) -> tuple[SignalType, int, str]:
    """(direction, confidence, reasoning) before the confidence floor."""
    buy = sum(v.weight for v in votes if v.side is SignalType.BUY)
    sell = sum(v.weight for v in votes if v.side is SignalType.SELL)

    if buy > sell and buy > ACTIVATION_WEIGHT:
        side, weight = SignalType.BUY, buy
    elif sell > buy and sell > ACTIVATION_WEIGHT:
        side, weight = SignalType.SELL, sell
    else:
        confidence = max(NEUTRAL_CONFIDENCE_FLOOR, CONFIDENCE_BASE - abs(buy - sell))
        return SignalType.NEUTRAL, confidence, "Mixed signals, market consolidation expected"

    reasons = [v.reason for v in votes if v.side is side][:2]
    return side, min(CONFIDENCE_BASE + weight, CONFIDENCE_CAP), " + ".join(reasons)


def synthesize(
    symbol: str,
    current_price: float,
    snapshot: IndicatorSnapshot,
    volume: Optional[float] = None,
    *,
    now_ms: Optional[int] = None,
) -> Optional[Signal]:
    """Signal for one symbol, or None when confidence is under the floor."""
    side, confidence, reasoning = score_votes(collect_votes(snapshot))
    if confidence < MIN_CONFIDENCE:
        return None

    strength = strength_for(confidence)
    signal = Signal(
        id=uuid.uuid4().hex,
        symbol=symbol,
        type=side,
        strength=strength,
        confidence=int(round(confidence)),
        reasoning=reasoning,
        created_at_ms=_now_ms() if now_ms is None else now_ms,
        duration_seconds=duration_for(strength),
        price=current_price,
        indicators=snapshot,
    )
    log.debug(
        "signal_synthesized",
        symbol=symbol,
        side=side.value,
        confidence=signal.confidence,
        strength=strength.value,
        volume=volume,
    )
    return signal


def select_best(signals: Iterable[Signal]) -> Optional[Signal]:
    """Strength first, then confidence; input order breaks ties."""
    ranked = sorted(signals, key=lambda s: (-s.strength.rank, -s.confidence))
    return ranked[0] if ranked else None


def contract_type_for(signal: Signal) -> Optional[TradeType]:
    return {
        SignalType.BUY: TradeType.CALL,
        SignalType.CALL: TradeType.CALL,
        SignalType.SELL: TradeType.PUT,
        SignalType.PUT: TradeType.PUT,
        SignalType.MATCH: TradeType.DIGITMATCH,
        SignalType.DIFFER: TradeType.DIGITDIFF,
    }.get(signal.type)


class SignalBook:
    """Live signal set; entries drop out once their duration has elapsed."""

    def __init__(self) -> None:
        self._signals: List[Signal] = []

    def add(self, signal: Signal) -> None:
        self._signals.append(signal)

    def live(self, now_ms: Optional[int] = None) -> tuple:
        now = _now_ms() if now_ms is None else now_ms
        self._signals = [s for s in self._signals if not s.is_expired(now)]
        return tuple(self._signals)

    @property
    def latest(self) -> Optional[Signal]:
        return self._signals[-1] if self._signals else None

    def __len__(self) -> int:
        return len(self._signals)

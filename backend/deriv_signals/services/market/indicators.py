"""Rolling-window indicators (RSI, MACD sign, Bollinger width, price action).

All functions are pure and total: short or malformed input returns the
neutral value instead of raising. Thresholds are fixed constants.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence

from deriv_signals.models.market_models import (
    BandState,
    IndicatorSnapshot,
    MacdSign,
    PriceAction,
    Trend,
)

RSI_PERIOD = 14
MACD_FAST = 12
MACD_SLOW = 26
MACD_THRESHOLD = 0.001          # relative to the slow mean
BOLLINGER_PERIOD = 20
SQUEEZE_WIDTH = 0.001
EXPANSION_WIDTH = 0.005
PRICE_ACTION_WINDOW = 10
TREND_THRESHOLD = 0.001         # +/- 0.1% between window means


def _clean(prices: Iterable[float]) -> Optional[List[float]]:
    """Floats, or None if any value is non-numeric / non-finite."""
    out: List[float] = []
    try:
        for p in prices:
            if isinstance(p, bool):
                return None
            v = float(p)
            if not math.isfinite(v):
                return None
            out.append(v)
    except (TypeError, ValueError, OverflowError):
        return None
    return out


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _pstdev(values: Sequence[float], mean: float) -> float:
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


def rsi(prices: Sequence[float], period: int = RSI_PERIOD) -> float:
    """Simple-average RSI over the most recent `period` deltas."""
    values = _clean(prices)
    if values is None or period <= 0 or len(values) < period + 1:
        return 50.0

    window = values[-(period + 1):]
    gains = 0.0
    losses = 0.0
    for prev, cur in zip(window, window[1:]):
        change = cur - prev
        if change > 0:
            gains += change
        else:
            losses -= change

    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0.0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def macd_sign(prices: Sequence[float]) -> MacdSign:
    """SMA(12) - SMA(26) against a small relative threshold."""
    values = _clean(prices)
    if values is None or len(values) < MACD_SLOW:
        return MacdSign.NEUTRAL

    fast = _mean(values[-MACD_FAST:])
    slow = _mean(values[-MACD_SLOW:])
    line = fast - slow
    band = abs(slow) * MACD_THRESHOLD
    if line > band:
        return MacdSign.BULLISH
    if line < -band:
        return MacdSign.BEARISH
    return MacdSign.NEUTRAL


def bollinger_width(prices: Sequence[float], period: int = BOLLINGER_PERIOD) -> Optional[float]:
    values = _clean(prices)
    if values is None or period <= 0 or len(values) < period:
        return None
    window = values[-period:]
    mean = _mean(window)
    if mean == 0.0:
        return None
    return (_pstdev(window, mean) * 2.0) / mean


def bollinger_state(prices: Sequence[float], period: int = BOLLINGER_PERIOD) -> BandState:
    width = bollinger_width(prices, period)
    if width is None:
        return BandState.NORMAL
    if width < SQUEEZE_WIDTH:
        return BandState.SQUEEZE
    if width > EXPANSION_WIDTH:
        return BandState.EXPANSION
    return BandState.NORMAL


def price_action(prices: Sequence[float]) -> PriceAction:
    """Recent 10-point mean vs the preceding 10: trend, momentum %, volatility."""
    values = _clean(prices)
    n = PRICE_ACTION_WINDOW
    if values is None or len(values) < 2 * n:
        return PriceAction()

    recent = values[-n:]
    older = values[-2 * n:-n]
    recent_avg = _mean(recent)
    older_avg = _mean(older)
    if older_avg == 0.0 or recent_avg == 0.0:
        return PriceAction()

    if recent_avg > older_avg * (1.0 + TREND_THRESHOLD):
        trend = Trend.UP
    elif recent_avg < older_avg * (1.0 - TREND_THRESHOLD):
        trend = Trend.DOWN
    else:
        trend = Trend.SIDEWAYS

    momentum = ((recent_avg - older_avg) / older_avg) * 100.0
    volatility = _pstdev(recent, recent_avg) / recent_avg
    return PriceAction(trend=trend, momentum_pct=momentum, volatility=volatility)


def compute_snapshot(prices: Sequence[float]) -> IndicatorSnapshot:
    pa = price_action(prices)
    return IndicatorSnapshot(
        rsi=rsi(prices),
        macd=macd_sign(prices),
        bollinger=bollinger_state(prices),
        trend=pa.trend,
        momentum_pct=pa.momentum_pct,
        volatility=pa.volatility,
    )

import math

import pytest

from deriv_signals.models.market_models import BandState, MacdSign, Trend
from deriv_signals.services.market.indicators import (
    bollinger_state,
    bollinger_width,
    compute_snapshot,
    macd_sign,
    price_action,
    rsi,
)


def test_rsi_needs_fifteen_prices() -> None:
    assert rsi([100.0 + i for i in range(14)]) == 50.0
    # 14 identical prices give 13 deltas, still short of a full period
    assert rsi([100.0] * 14) == 50.0
    assert rsi([]) == 50.0


def test_rsi_flat_and_monotonic_series() -> None:
    assert rsi([100.0] * 15) == 100.0
    assert rsi([100.0 + i for i in range(15)]) == 100.0
    assert rsi([100.0 - i for i in range(15)]) == 0.0


def test_rsi_balanced_gains_and_losses() -> None:
    prices = [100.0 + (i % 2) for i in range(15)]
    assert rsi(prices) == pytest.approx(50.0)


def test_rsi_uses_only_the_last_fifteen_prices() -> None:
    prices = [500.0, 1.0] + [100.0 + i for i in range(15)]
    assert rsi(prices) == 100.0


def test_macd_sign() -> None:
    assert macd_sign([100.0] * 14 + [101.0] * 12) is MacdSign.BULLISH
    assert macd_sign([101.0] * 14 + [100.0] * 12) is MacdSign.BEARISH
    assert macd_sign([100.0] * 26) is MacdSign.NEUTRAL
    assert macd_sign([100.0] * 13 + [101.0] * 12) is MacdSign.NEUTRAL  # 25 points


def test_bollinger_states() -> None:
    assert bollinger_state([100.0] * 20) is BandState.SQUEEZE
    assert bollinger_state([100.0, 110.0] * 10) is BandState.EXPANSION
    assert bollinger_state([100.0, 100.2] * 10) is BandState.NORMAL
    assert bollinger_state([100.0] * 19) is BandState.NORMAL
    assert bollinger_width([0.0] * 20) is None
    assert bollinger_width([100.0, 110.0] * 10) == pytest.approx(10.0 / 105.0)


def test_price_action_trends() -> None:
    up = price_action([100.0] * 10 + [101.0] * 10)
    assert up.trend is Trend.UP
    assert up.momentum_pct == pytest.approx(1.0)
    assert up.volatility == 0.0

    down = price_action([101.0] * 10 + [100.0] * 10)
    assert down.trend is Trend.DOWN
    assert down.momentum_pct == pytest.approx(-100.0 / 101.0)

    flat = price_action([100.0] * 10 + [100.05] * 10)
    assert flat.trend is Trend.SIDEWAYS
    assert flat.momentum_pct == pytest.approx(0.05)


def test_price_action_short_window_is_neutral() -> None:
    pa = price_action([100.0 + i for i in range(19)])
    assert (pa.trend, pa.momentum_pct, pa.volatility) == (Trend.SIDEWAYS, 0.0, 0.0)


@pytest.mark.parametrize("bad", [math.nan, math.inf, "x", None])
def test_malformed_prices_give_neutral_snapshot(bad) -> None:
    prices = [100.0 + i * 0.1 for i in range(40)]
    prices[20] = bad
    snap = compute_snapshot(prices)
    assert snap.rsi == 50.0
    assert snap.macd is MacdSign.NEUTRAL
    assert snap.bollinger is BandState.NORMAL
    assert snap.trend is Trend.SIDEWAYS

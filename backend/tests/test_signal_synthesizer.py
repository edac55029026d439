import itertools

import pytest

from deriv_signals.models.market_models import BandState, IndicatorSnapshot, MacdSign, Trend
from deriv_signals.models.signal_models import Signal, SignalType, Strength
from deriv_signals.models.trade_models import TradeType
from deriv_signals.services.strategy.signal_synthesizer import (
    SignalBook,
    collect_votes,
    contract_type_for,
    duration_for,
    score_votes,
    select_best,
    strength_for,
    synthesize,
)

NOW = 1_700_000_000_000


def make_signal(symbol: str, strength: Strength, confidence: int, *, type_=SignalType.BUY, created=NOW, duration=180) -> Signal:
    return Signal(
        id=f"{symbol}-{confidence}",
        symbol=symbol,
        type=type_,
        strength=strength,
        confidence=confidence,
        reasoning="",
        created_at_ms=created,
        duration_seconds=duration,
    )


def test_oversold_with_bullish_macd_is_critical_buy() -> None:
    snap = IndicatorSnapshot(rsi=20.0, macd=MacdSign.BULLISH)
    sig = synthesize("R_10", 1.234, snap, now_ms=NOW)
    assert sig is not None
    assert sig.type is SignalType.BUY
    assert sig.confidence == 95
    assert sig.strength is Strength.CRITICAL
    assert sig.duration_seconds == 180
    assert sig.reasoning == "Severely oversold (RSI < 25) + Bullish MACD crossover"
    assert sig.created_at_ms == NOW
    assert sig.price == 1.234


def test_reasoning_keeps_first_two_winning_reasons() -> None:
    snap = IndicatorSnapshot(rsi=30.0, bollinger=BandState.SQUEEZE, volatility=0.01)
    side, confidence, reasoning = score_votes(collect_votes(snap))
    assert (side, confidence) == (SignalType.BUY, 90)
    assert reasoning == "Oversold conditions + Volatility breakout expected"


def test_activation_threshold_is_exclusive() -> None:
    # 15 + 15 = 30 does not activate
    snap = IndicatorSnapshot(rsi=30.0, bollinger=BandState.SQUEEZE)
    assert score_votes(collect_votes(snap))[0] is SignalType.NEUTRAL
    assert synthesize("R_10", 1.0, snap, now_ms=NOW) is None


def test_tied_weights_never_produce_a_direction() -> None:
    snap = IndicatorSnapshot(
        rsi=80.0,
        macd=MacdSign.BEARISH,
        bollinger=BandState.SQUEEZE,
        trend=Trend.UP,
        momentum_pct=0.2,
        volatility=0.01,
    )
    side, confidence, _ = score_votes(collect_votes(snap))
    assert side is SignalType.NEUTRAL
    assert confidence == 50
    assert synthesize("R_10", 1.0, snap, now_ms=NOW) is None


def test_emitted_signals_always_clear_the_floor() -> None:
    grid = itertools.product(
        [10.0, 30.0, 50.0, 70.0, 90.0],
        list(MacdSign),
        list(BandState),
        [(Trend.UP, 0.5), (Trend.DOWN, -0.5), (Trend.SIDEWAYS, 0.0), (Trend.UP, 0.1)],
        [0.0, 0.01],
    )
    for r, macd, band, (trend, momentum), vol in grid:
        snap = IndicatorSnapshot(rsi=r, macd=macd, bollinger=band, trend=trend, momentum_pct=momentum, volatility=vol)
        sig = synthesize("R_10", 1.0, snap, now_ms=NOW)
        if sig is None:
            continue
        assert sig.confidence >= 55
        assert sig.type is not SignalType.NEUTRAL
        assert sig.strength is strength_for(sig.confidence)


@pytest.mark.parametrize(
    "confidence,strength",
    [(95, Strength.CRITICAL), (85, Strength.CRITICAL), (84, Strength.HIGH), (75, Strength.HIGH),
     (74, Strength.MEDIUM), (65, Strength.MEDIUM), (64, Strength.LOW), (55, Strength.LOW)],
)
def test_strength_bands(confidence: int, strength: Strength) -> None:
    assert strength_for(confidence) is strength


def test_durations() -> None:
    assert duration_for(Strength.CRITICAL) == 180
    assert duration_for(Strength.HIGH) == 300
    assert duration_for(Strength.MEDIUM) == 600
    assert duration_for(Strength.LOW) == 600


def test_select_best_prefers_strength_then_confidence_then_order() -> None:
    a = make_signal("R_10", Strength.HIGH, 84)
    b = make_signal("R_25", Strength.CRITICAL, 90)
    c = make_signal("R_50", Strength.CRITICAL, 90)
    d = make_signal("R_75", Strength.CRITICAL, 88)
    assert select_best([a, b, c, d]) is b
    assert select_best([a, c, b]) is c
    assert select_best([]) is None


def test_contract_type_mapping() -> None:
    assert contract_type_for(make_signal("R_10", Strength.LOW, 60)) is TradeType.CALL
    assert contract_type_for(make_signal("R_10", Strength.LOW, 60, type_=SignalType.SELL)) is TradeType.PUT
    assert contract_type_for(make_signal("R_10", Strength.LOW, 60, type_=SignalType.MATCH)) is TradeType.DIGITMATCH
    assert contract_type_for(make_signal("R_10", Strength.LOW, 60, type_=SignalType.DIFFER)) is TradeType.DIGITDIFF
    assert contract_type_for(make_signal("R_10", Strength.LOW, 60, type_=SignalType.NEUTRAL)) is None


def test_signal_book_evicts_at_exactly_the_duration() -> None:
    book = SignalBook()
    sig = make_signal("R_10", Strength.CRITICAL, 90, created=0, duration=180)
    book.add(sig)
    assert book.live(now_ms=179_999) == (sig,)
    assert sig.remaining_seconds(179_000) == 1
    assert book.live(now_ms=180_000) == ()
    assert len(book) == 0

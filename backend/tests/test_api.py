import asyncio

import pytest
from fastapi.testclient import TestClient

from deriv_signals.api.server import create_app
from deriv_signals.api.state import AppState, get_state, set_state
from deriv_signals.models.signal_models import Signal, SignalType, Strength
from deriv_signals.models.trade_models import Trade, TradeStatus, TradeType
from deriv_signals.services.market.stream_manager import StreamConnectionManager
from deriv_signals.services.monitoring.metrics import MetricsSnapshot
from deriv_signals.services.strategy.signal_synthesizer import SignalBook
from deriv_signals.services.trading.outcome import FixedOutcomeResolver
from deriv_signals.services.trading.trade_manager import TradeLifecycleManager
from fakes import FakeClient, FakeClock, FakeExecutor, FakeScheduler


@pytest.fixture
def api():
    clock = FakeClock()
    client = FakeClient()
    stream = StreamConnectionManager(client)

    async def feed():
        await stream.subscribe("R_10")
        for i, q in enumerate([1.234, 1.235, 1.236, 1.236]):
            await client.emit_tick("R_10", q, 100 + i)

    asyncio.run(feed())

    book = SignalBook()
    book.add(
        Signal(
            id="sig-1",
            symbol="R_10",
            type=SignalType.BUY,
            strength=Strength.CRITICAL,
            confidence=90,
            reasoning="Bullish MACD crossover + Strong upward momentum",
            created_at_ms=clock() - 30_000,
            duration_seconds=180,
            price=1.236,
        )
    )
    book.add(
        Signal(
            id="sig-old",
            symbol="R_25",
            type=SignalType.SELL,
            strength=Strength.HIGH,
            confidence=80,
            reasoning="",
            created_at_ms=clock() - 600_000,
            duration_seconds=300,
        )
    )

    trades = TradeLifecycleManager(FakeExecutor(), None, FixedOutcomeResolver(), FakeScheduler(), clock)
    trades.add_trade(
        Trade(
            id="t-won",
            symbol="R_10",
            type=TradeType.CALL,
            stake=1.0,
            payout=1.95,
            profit=0.95,
            status=TradeStatus.WON,
            entry_time_ms=clock() - 400_000,
            entry_price=1.2,
            exit_time_ms=clock() - 220_000,
            duration_seconds=180,
            account_id="CR1",
        )
    )
    trades.add_trade(
        Trade(
            id="t-open",
            symbol="R_25",
            type=TradeType.PUT,
            stake=2.0,
            payout=3.9,
            entry_time_ms=clock() - 10_000,
            entry_price=5.0,
            duration_seconds=180,
            account_id="CR2",
        )
    )

    metrics = MetricsSnapshot(connected=True, connection_state="connected", selected_symbol="R_10", ticks_received=4)
    set_state(AppState(stream=stream, book=book, trades=trades, metrics=metrics, clock=clock))
    yield TestClient(create_app())
    set_state(None)


def test_health_and_connection(api: TestClient) -> None:
    assert api.get("/health").json() == {"ok": True}
    body = api.get("/connection").json()
    assert body["state"] == "connected"
    assert body["active_symbols"] == ["R_10"]


def test_metrics_endpoint(api: TestClient) -> None:
    assert api.get("/metrics").json()["ticks_received"] == 4


def test_symbols_carry_precision(api: TestClient) -> None:
    by_name = {s["symbol"]: s for s in api.get("/symbols").json()}
    assert by_name["R_10"]["decimal_places"] == 3
    assert by_name["R_100"]["pip_size"] == 0.01
    assert by_name["R_50"]["display_name"] == "Volatility 50 Index"


def test_only_live_signals_are_listed(api: TestClient) -> None:
    body = api.get("/signals").json()
    assert [s["id"] for s in body] == ["sig-1"]
    assert body[0]["remaining_seconds"] == 150


def test_trades_newest_first_with_limit(api: TestClient) -> None:
    assert [t["id"] for t in api.get("/trades").json()] == ["t-open", "t-won"]
    assert [t["id"] for t in api.get("/trades", params={"limit": 1}).json()] == ["t-open"]
    assert api.get("/trades", params={"limit": 0}).status_code == 422


def test_stats_by_account(api: TestClient) -> None:
    cr1 = api.get("/stats", params={"account_id": "CR1"}).json()
    assert cr1["total_trades"] == 1
    assert cr1["total_profit"] == pytest.approx(0.95)
    everyone = api.get("/stats").json()
    assert everyone["active_trades"] == 1
    assert {row["type"] for row in everyone["by_type"]} == {"CALL", "PUT", "MATCH", "DIFFER"}


def test_history_and_digits(api: TestClient) -> None:
    history = api.get("/history/R_10").json()
    assert history["prices"] == [1.234, 1.235, 1.236, 1.236]
    assert history["digits"] == [4, 5, 6, 6]
    assert history["last_epoch"] == 103

    digits = api.get("/digits/R_10").json()
    assert digits["samples"] == 4
    assert digits["matches"] == 1
    assert digits["recent"] == [4, 5, 6, 6]


def test_unknown_symbol_is_404(api: TestClient) -> None:
    assert api.get("/history/R_75").status_code == 404
    assert api.get("/digits/NOPE").status_code == 404


def test_events_without_repository(api: TestClient) -> None:
    assert api.get("/events").json() == []


def test_state_must_be_initialized() -> None:
    set_state(None)
    with pytest.raises(RuntimeError):
        get_state()

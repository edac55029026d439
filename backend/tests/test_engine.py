import asyncio
import json
from pathlib import Path

from deriv_signals.app.engine import Engine
from deriv_signals.infrastructure.deriv.deriv_ws_client import ConnectionState
from deriv_signals.infrastructure.utils.config import SignalEngineConfig
from deriv_signals.models.signal_models import SignalType
from fakes import FakeClient, history_response

RISING = [round(100.0 + i * 0.1, 2) for i in range(50)]


def make_config(tmp_path: Path, **overrides) -> SignalEngineConfig:
    data = {
        "analysis": {"symbols": ["R_10"], "selected_symbol": "R_10"},
        "database": {"sqlite": {"path": str(tmp_path / "engine.db")}},
        "monitoring": {"metrics_path": str(tmp_path / "metrics.json")},
    }
    data.update(overrides)
    return SignalEngineConfig.model_validate(data)


def gateway_client() -> FakeClient:
    return FakeClient(
        {
            "ticks_history": history_response(RISING),
            "proposal": {"proposal": {"id": "p1", "ask_price": 1.0, "payout": 1.95}},
            "buy": {"buy": {"contract_id": 9001, "transaction_id": 9101, "buy_price": 1.0}},
        }
    )


def test_start_analyze_and_persist_metrics(tmp_path: Path) -> None:
    async def scenario():
        engine = Engine(make_config(tmp_path), client=gateway_client())
        await engine.start()
        history_requests = [r for r in engine.client.requests if "ticks_history" in r]
        signal = await engine.analyze_once()
        engine.refresh_metrics()
        placed = engine.trades.snapshot()
        await engine.stop()
        return engine, signal, placed, history_requests

    engine, signal, placed, history_requests = asyncio.run(scenario())
    assert len(history_requests) == 1
    assert signal is not None and signal.type is SignalType.BUY
    assert placed == ()          # auto trading is off by default
    assert engine.client.stopped
    metrics = json.loads((tmp_path / "metrics.json").read_text(encoding="utf-8"))
    assert metrics["last_signal"]["symbol"] == "R_10"
    assert metrics["live_signals"] == 1
    assert metrics["dry_run"] is True


def test_auto_trade_places_order_when_not_dry_run(tmp_path: Path) -> None:
    config = make_config(tmp_path, trading={"auto_trade": True}, development={"dry_run": False})

    async def scenario():
        engine = Engine(config, client=gateway_client())
        await engine.start()
        await engine.analyze_once()
        trades = engine.trades.snapshot()
        timers = engine.trades.pending_timers
        await engine.stop()
        return trades, timers

    trades, timers = asyncio.run(scenario())
    assert len(trades) == 1
    assert trades[0].external_contract_id == "9001"
    assert trades[0].payout == 1.95
    assert trades[0].duration_seconds == 180
    assert timers == 1


def test_dry_run_skips_orders(tmp_path: Path) -> None:
    config = make_config(tmp_path, trading={"auto_trade": True})

    async def scenario():
        engine = Engine(config, client=gateway_client())
        await engine.start()
        await engine.analyze_once()
        requests = [next(iter(r)) for r in engine.client.requests]
        await engine.stop()
        return requests

    assert "proposal" not in asyncio.run(scenario())


def test_connection_changes_are_counted_and_audited(tmp_path: Path) -> None:
    engine = Engine(make_config(tmp_path), client=FakeClient())
    for state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.ERROR):
        for listener in engine.client.listeners:
            listener(state)
    assert engine.metrics.disconnects == 2
    assert engine.metrics.connection_state == "error"
    types = [e["type"] for e in engine.repo.list_events()]
    assert types[:2] == ["ws_error", "ws_disconnected"]
    assert types.count("ws_connected") == 2
    engine.repo.close()

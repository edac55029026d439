from pathlib import Path

from deriv_signals.infrastructure.storage.sqlite_repository import SQLiteRepository
from deriv_signals.models.trade_models import Trade, TradeStatus, TradeType


def make_trade(trade_id: str, entry_ms: int, **kwargs) -> Trade:
    params = dict(
        id=trade_id,
        symbol="R_10",
        type=TradeType.DIGITMATCH,
        stake=1.0,
        payout=9.0,
        entry_time_ms=entry_ms,
        entry_price=1.234,
        duration_seconds=5,
        barrier="4",
    )
    params.update(kwargs)
    return Trade(**params)


def test_trades_round_trip_and_upsert(tmp_path: Path) -> None:
    repo = SQLiteRepository(tmp_path / "nested" / "signals.db")
    repo.upsert_trade(make_trade("a", 1000))
    repo.upsert_trade(make_trade("b", 2000, account_id="CR1"))
    repo.upsert_trade(make_trade("a", 1000, status=TradeStatus.LOST, profit=-1.0, exit_time_ms=6000))

    assert [t.id for t in repo.list_trades()] == ["b", "a"]
    assert [t.id for t in repo.list_trades(limit=1)] == ["b"]
    a = repo.get_trade("a")
    assert (a.status, a.profit, a.exit_time_ms, a.barrier, a.type) == (
        TradeStatus.LOST,
        -1.0,
        6000,
        "4",
        TradeType.DIGITMATCH,
    )

    repo.delete_trade("a")
    assert repo.get_trade("a") is None
    repo.close()

    reopened = SQLiteRepository(tmp_path / "nested" / "signals.db")
    assert reopened.get_trade("b").account_id == "CR1"
    reopened.close()


def test_events_newest_first() -> None:
    repo = SQLiteRepository(Path(":memory:"))
    repo.log_event(ts="2024-01-01T00:00:00+00:00", level="INFO", type="engine", message="Engine started")
    repo.log_event(ts="2024-01-01T00:00:01+00:00", level="WARNING", type="ws_disconnected", message="lost", data={"state": "reconnecting"})
    events = repo.list_events()
    assert [e["type"] for e in events] == ["ws_disconnected", "engine"]
    assert events[0]["data"] == {"state": "reconnecting"}
    assert events[1]["data"] == {}
    assert len(repo.list_events(limit=1)) == 1

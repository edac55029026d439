"""SQLite repository for trades and audit events."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from deriv_signals.models.trade_models import Trade, TradeStatus, TradeType

JsonDict = Dict[str, Any]

_TRADE_COLUMNS = (
    "id",
    "symbol",
    "type",
    "stake",
    "payout",
    "profit",
    "status",
    "entry_time_ms",
    "entry_price",
    "exit_time_ms",
    "exit_price",
    "duration_seconds",
    "external_contract_id",
    "transaction_id",
    "account_id",
    "longcode",
    "shortcode",
    "barrier",
)


def _row_to_trade(r: sqlite3.Row) -> Trade:
    return Trade(
        id=r["id"],
        symbol=r["symbol"],
        type=TradeType(r["type"]),
        stake=float(r["stake"]),
        payout=float(r["payout"]),
        profit=float(r["profit"]),
        status=TradeStatus(r["status"]),
        entry_time_ms=int(r["entry_time_ms"]),
        entry_price=float(r["entry_price"]),
        exit_time_ms=r["exit_time_ms"],
        exit_price=r["exit_price"],
        duration_seconds=r["duration_seconds"],
        external_contract_id=r["external_contract_id"],
        transaction_id=r["transaction_id"],
        account_id=r["account_id"],
        longcode=r["longcode"],
        shortcode=r["shortcode"],
        barrier=r["barrier"],
    )


class SQLiteRepository:
    def __init__(self, db_path: Path) -> None:
        self._path = db_path
        if db_path.as_posix() != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path.as_posix(), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              type TEXT NOT NULL,
              message TEXT NOT NULL,
              data_json TEXT
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS trades (
              id TEXT PRIMARY KEY,
              symbol TEXT NOT NULL,
              type TEXT NOT NULL,
              stake REAL NOT NULL,
              payout REAL NOT NULL,
              profit REAL NOT NULL,
              status TEXT NOT NULL,
              entry_time_ms INTEGER NOT NULL,
              entry_price REAL NOT NULL,
              exit_time_ms INTEGER,
              exit_price REAL,
              duration_seconds INTEGER,
              external_contract_id TEXT,
              transaction_id TEXT,
              account_id TEXT,
              longcode TEXT,
              shortcode TEXT,
              barrier TEXT
            );
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_trades_contract ON trades(external_contract_id)")
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def log_event(
        self,
        *,
        ts: str,
        level: str,
        type: str,
        message: str,
        data: Optional[JsonDict] = None,
    ) -> None:
        cur = self._conn.cursor()
        cur.execute(
            "INSERT INTO events(ts, level, type, message, data_json) VALUES(?,?,?,?,?)",
            (ts, level, type, message, json.dumps(data or {})),
        )
        self._conn.commit()

    def list_events(self, limit: int = 200) -> List[JsonDict]:
        cur = self._conn.cursor()
        rows = cur.execute(
            "SELECT ts, level, type, message, data_json FROM events ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [
            {
                "ts": r["ts"],
                "level": r["level"],
                "type": r["type"],
                "message": r["message"],
                "data": json.loads(r["data_json"] or "{}"),
            }
            for r in rows
        ]

    def upsert_trade(self, trade: Trade) -> None:
        d = trade.to_dict()
        cols = ", ".join(_TRADE_COLUMNS)
        marks = ",".join("?" for _ in _TRADE_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _TRADE_COLUMNS if c != "id")
        cur = self._conn.cursor()
        cur.execute(
            f"INSERT INTO trades({cols}) VALUES({marks}) ON CONFLICT(id) DO UPDATE SET {updates}",
            tuple(d[c] for c in _TRADE_COLUMNS),
        )
        self._conn.commit()

    def get_trade(self, trade_id: str) -> Optional[Trade]:
        cur = self._conn.cursor()
        row = cur.execute("SELECT * FROM trades WHERE id = ?", (trade_id,)).fetchone()
        return _row_to_trade(row) if row else None

    def list_trades(self, limit: Optional[int] = None) -> List[Trade]:
        cur = self._conn.cursor()
        if limit is None:
            rows = cur.execute("SELECT * FROM trades ORDER BY entry_time_ms DESC").fetchall()
        else:
            rows = cur.execute(
                "SELECT * FROM trades ORDER BY entry_time_ms DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_row_to_trade(r) for r in rows]

    def delete_trade(self, trade_id: str) -> None:
        cur = self._conn.cursor()
        cur.execute("DELETE FROM trades WHERE id = ?", (trade_id,))
        self._conn.commit()

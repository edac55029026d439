from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class TradeType(str, Enum):
    CALL = "CALL"
    PUT = "PUT"
    DIGITMATCH = "DIGITMATCH"
    DIGITDIFF = "DIGITDIFF"

    @property
    def label(self) -> str:
        return {"DIGITMATCH": "MATCH", "DIGITDIFF": "DIFFER"}.get(self.value, self.value)


class TradeStatus(str, Enum):
    OPEN = "open"
    WON = "won"
    LOST = "lost"

    @property
    def is_terminal(self) -> bool:
        return self is not TradeStatus.OPEN


@dataclass(frozen=True)
class Trade:
    id: str
    symbol: str
    type: TradeType
    stake: float
    payout: float
    entry_time_ms: int
    entry_price: float
    profit: float = 0.0
    status: TradeStatus = TradeStatus.OPEN

    exit_time_ms: Optional[int] = None
    exit_price: Optional[float] = None
    duration_seconds: Optional[int] = None

    external_contract_id: Optional[str] = None
    transaction_id: Optional[str] = None
    account_id: Optional[str] = None     # None -> legacy/ungrouped, visible to every account

    longcode: Optional[str] = None
    shortcode: Optional[str] = None
    barrier: Optional[str] = None

    @property
    def expires_at_ms(self) -> Optional[int]:
        if not self.duration_seconds:
            return None
        return self.entry_time_ms + int(self.duration_seconds) * 1000

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["type"] = self.type.value
        d["status"] = self.status.value
        return d


@dataclass(frozen=True)
class TypeStats:
    type: str            # display label: CALL | PUT | MATCH | DIFFER
    wins: int
    losses: int

    @property
    def total(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float:
        return (self.wins / self.total) * 100.0 if self.total else 0.0


@dataclass(frozen=True)
class TradingStats:
    total_profit: float = 0.0
    win_rate: float = 0.0
    active_trades: int = 0
    total_trades: int = 0
    winning_trades: int = 0
    daily_profit: float = 0.0
    weekly_profit: float = 0.0
    monthly_profit: float = 0.0
    by_type: tuple = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["by_type"] = [
            {"type": t.type, "wins": t.wins, "losses": t.losses, "total": t.total, "win_rate": t.win_rate}
            for t in self.by_type
        ]
        return d

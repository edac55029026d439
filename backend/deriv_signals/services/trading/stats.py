"""Trading statistics, recomputed from the trade set on every read."""

from __future__ import annotations

from typing import Iterable, List, Optional

from deriv_signals.infrastructure.utils.timeutils import start_of_day_ms
from deriv_signals.models.trade_models import Trade, TradeStatus, TradeType, TradingStats, TypeStats

DAY_MS = 24 * 60 * 60 * 1000


def visible_to(trade: Trade, account_id: Optional[str]) -> bool:
    # trades without account affinity count for every account
    return account_id is None or trade.account_id is None or trade.account_id == account_id


def by_type(trades: Iterable[Trade]) -> tuple:
    completed = [t for t in trades if t.status.is_terminal]
    out: List[TypeStats] = []
    for tt in TradeType:
        rows = [t for t in completed if t.type is tt]
        wins = sum(1 for t in rows if t.status is TradeStatus.WON)
        out.append(TypeStats(type=tt.label, wins=wins, losses=len(rows) - wins))
    return tuple(out)


def _profit_since(trades: Iterable[Trade], since_ms: int) -> float:
    return sum(t.profit for t in trades if t.exit_time_ms is not None and t.exit_time_ms >= since_ms)


def compute_stats(trades: Iterable[Trade], *, now_ms: int, account_id: Optional[str] = None) -> TradingStats:
    scoped = [t for t in trades if visible_to(t, account_id)]
    completed = [t for t in scoped if t.status.is_terminal]
    winning = sum(1 for t in completed if t.profit > 0)

    return TradingStats(
        total_profit=sum(t.profit for t in completed),
        win_rate=(winning / len(completed)) * 100.0 if completed else 0.0,
        active_trades=sum(1 for t in scoped if t.status is TradeStatus.OPEN),
        total_trades=len(scoped),
        winning_trades=winning,
        daily_profit=_profit_since(completed, start_of_day_ms(now_ms)),
        weekly_profit=_profit_since(completed, now_ms - 7 * DAY_MS),
        monthly_profit=_profit_since(completed, now_ms - 30 * DAY_MS),
        by_type=by_type(completed),
    )

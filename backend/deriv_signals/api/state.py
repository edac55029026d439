from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from deriv_signals.infrastructure.storage.sqlite_repository import SQLiteRepository
from deriv_signals.infrastructure.utils.timeutils import now_ms
from deriv_signals.services.market.stream_manager import StreamConnectionManager
from deriv_signals.services.monitoring.metrics import MetricsSnapshot
from deriv_signals.services.strategy.signal_synthesizer import SignalBook
from deriv_signals.services.trading.trade_manager import TradeLifecycleManager


@dataclass
class AppState:
    stream: StreamConnectionManager
    book: SignalBook
    trades: TradeLifecycleManager
    metrics: MetricsSnapshot
    repo: Optional[SQLiteRepository] = None
    clock: Callable[[], int] = field(default=now_ms)


_state: Optional[AppState] = None


def set_state(state: Optional[AppState]) -> None:
    global _state
    _state = state


def get_state() -> AppState:
    if _state is None:
        raise RuntimeError("API state not initialized. Start engine first (or init state).")
    return _state

"""In-memory metrics snapshot for the API + metrics file."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class MetricsSnapshot:
    connected: bool = False
    connection_state: str = "disconnected"
    selected_symbol: str = ""
    watched_symbols: List[str] = field(default_factory=list)
    last_tick_symbol: Optional[str] = None
    last_tick_price: Optional[float] = None
    last_tick_epoch: Optional[int] = None
    ticks_received: int = 0
    disconnects: int = 0
    live_signals: int = 0
    last_signal: Optional[Dict[str, Any]] = None
    active_trades: int = 0
    total_profit: float = 0.0
    dry_run: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

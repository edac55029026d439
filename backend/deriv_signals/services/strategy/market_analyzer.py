"""Multi-asset analysis: snapshot every watched symbol, keep the best candidate."""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional

from deriv_signals.infrastructure.logging.logging import get_logger
from deriv_signals.infrastructure.utils.timeutils import now_ms as _now_ms
from deriv_signals.models.signal_models import Signal
from deriv_signals.services.market.indicators import compute_snapshot
from deriv_signals.services.market.tick_buffer import PriceHistoryView
from deriv_signals.services.strategy.signal_synthesizer import SignalBook, select_best, synthesize

MIN_HISTORY = 30


class MarketAnalyzer:
    def __init__(
        self,
        history_source: Callable[[str], PriceHistoryView],
        symbols: Iterable[str],
        *,
        book: Optional[SignalBook] = None,
        min_history: int = MIN_HISTORY,
    ) -> None:
        self._log = get_logger("market_analyzer")
        self._history = history_source
        self.symbols: List[str] = list(symbols)
        self.book = book or SignalBook()
        self.min_history = min_history

    def candidates(self, now_ms: Optional[int] = None) -> List[Signal]:
        now = _now_ms() if now_ms is None else now_ms
        out: List[Signal] = []
        for symbol in self.symbols:
            view = self._history(symbol)
            if len(view.prices) < self.min_history:
                self._log.debug("analysis_warmup", symbol=symbol, prices=len(view.prices))
                continue
            snapshot = compute_snapshot(view.prices)
            signal = synthesize(symbol, view.prices[-1], snapshot, now_ms=now)
            if signal is not None:
                out.append(signal)
        return out

    def analyze(self, now_ms: Optional[int] = None) -> Optional[Signal]:
        """Best signal across watched symbols, recorded in the book."""
        candidates = self.candidates(now_ms)
        best = select_best(candidates)
        if best is None:
            self._log.info("analysis_no_signal", symbols=self.symbols)
            return None

        self.book.add(best)
        self._log.info(
            "best_signal",
            symbol=best.symbol,
            type=best.type.value,
            strength=best.strength.value,
            confidence=best.confidence,
            candidates=len(candidates),
        )
        return best

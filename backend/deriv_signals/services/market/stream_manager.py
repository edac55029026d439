"""Symbol-level stream management on top of DerivWSClient.

- One tick subscription per symbol
- Per-symbol PriceHistory fed in arrival order
- A single "selected" symbol for digit analysis; switching it unsubscribes the
  previous one first, drops its buffers and discards its in-flight history
- Watched symbols (multi-asset analysis) stay subscribed across selections
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from deriv_signals.errors import DerivSignalsError, TransportError
from deriv_signals.infrastructure.deriv.deriv_ws_client import ConnectionState, DerivWSClient
from deriv_signals.infrastructure.logging.logging import get_logger
from deriv_signals.models.market_models import SymbolConfig, Tick, resolve_symbol
from deriv_signals.services.market.deriv_history import fetch_ticks_history
from deriv_signals.services.market.digits import last_digit
from deriv_signals.services.market.tick_buffer import PriceHistory, PriceHistoryView

JsonDict = Dict[str, Any]


def _sub_name(symbol: str) -> str:
    return f"ticks_{symbol}"


class StreamConnectionManager:
    def __init__(
        self,
        client: DerivWSClient,
        *,
        symbols: Optional[Dict[str, SymbolConfig]] = None,
        price_window: int = 50,
        digit_window: int = 100,
        recent_digit_window: int = 20,
        history_count: int = 100,
    ) -> None:
        self._log = get_logger("stream_manager")
        self._client = client
        self._symbols = dict(symbols or {})
        self._price_window = price_window
        self._digit_window = digit_window
        self._recent_window = recent_digit_window
        self._history_count = history_count

        self._histories: Dict[str, PriceHistory] = {}
        self._active: Set[str] = set()
        self._watched: Set[str] = set()
        self._selected: Optional[str] = None
        self._history_task: Optional[asyncio.Task[Any]] = None
        self._tick_listeners: List[Callable[[Tick], None]] = []

    # ---- lifecycle ----
    @property
    def state(self) -> ConnectionState:
        return self._client.state

    @property
    def selected_symbol(self) -> Optional[str]:
        return self._selected

    @property
    def active_symbols(self) -> List[str]:
        return sorted(self._active)

    @property
    def watched_symbols(self) -> List[str]:
        return sorted(self._watched)

    async def connect(self, timeout: float = 30.0) -> None:
        await self._client.connect(timeout)

    async def close(self) -> None:
        if self._history_task and not self._history_task.done():
            self._history_task.cancel()
        for symbol in list(self._active):
            try:
                await self.unsubscribe(symbol)
            except DerivSignalsError as e:
                self._log.warning("unsubscribe_on_close_failed", symbol=symbol, error=str(e))
        await self._client.stop()
        self._log.info("stream_closed")

    def on_tick(self, listener: Callable[[Tick], None]) -> None:
        self._tick_listeners.append(listener)

    def on_state(self, listener: Callable[[ConnectionState], None]) -> None:
        self._client.on_state_change(listener)

    def symbol_config(self, symbol: str) -> SymbolConfig:
        return resolve_symbol(symbol, self._symbols)

    # ---- subscriptions ----
    async def subscribe(self, symbol: str) -> None:
        if symbol in self._active:
            return
        self._active.add(symbol)
        self._history_for(symbol)
        try:
            await self._client.subscribe(
                name=_sub_name(symbol),
                request={"ticks": symbol, "subscribe": 1},
                on_message=lambda msg, s=symbol: self._on_tick_message(msg, s),
            )
        except TransportError:
            # stays registered on the client; re-activated on reconnect
            self._log.warning("subscribe_deferred", symbol=symbol)

    async def unsubscribe(self, symbol: str) -> None:
        if symbol not in self._active:
            return
        self._active.discard(symbol)
        await self._client.unsubscribe(_sub_name(symbol))

    async def watch(self, symbols: Iterable[str]) -> None:
        for s in symbols:
            self._watched.add(s)
            await self.subscribe(s)

    async def select_symbol(self, symbol: str) -> None:
        previous = self._selected
        if symbol == previous:
            return

        if self._history_task and not self._history_task.done():
            self._history_task.cancel()
        self._selected = symbol

        if previous is not None and previous not in self._watched:
            # previous stream is forgotten before the next one is requested
            try:
                await self.unsubscribe(previous)
            except DerivSignalsError as e:
                self._log.warning("unsubscribe_failed", symbol=previous, error=str(e))
            self._histories.pop(previous, None)

        self._log.info("symbol_selected", symbol=symbol, previous=previous)
        await self.subscribe(symbol)
        self._history_task = asyncio.create_task(self._load_history(symbol))

    # ---- history ----
    async def request_history(self, symbol: str, count: Optional[int] = None) -> PriceHistoryView:
        ticks = await fetch_ticks_history(self._client, symbol, count or self._history_count)
        if self._selected is not None and symbol != self._selected and symbol not in self._watched:
            self._log.info("stale_history_discarded", symbol=symbol, selected=self._selected)
            detached = self._new_history(symbol)
            self._fill(detached, ticks)
            return detached.snapshot()

        history = self._history_for(symbol)
        history.clear()
        self._fill(history, ticks)
        return history.snapshot()

    async def _load_history(self, symbol: str) -> None:
        try:
            await self.request_history(symbol)
        except asyncio.CancelledError:
            raise
        except DerivSignalsError as e:
            self._log.warning("history_load_failed", symbol=symbol, error=str(e))

    async def history_loaded(self) -> None:
        """Wait for the selected symbol's history load, if one is running."""
        task = self._history_task
        if task is not None and not task.cancelled():
            await asyncio.shield(task)

    def _fill(self, history: PriceHistory, ticks: Iterable[Tick]) -> None:
        places = self.symbol_config(history.symbol).decimal_places
        for t in ticks:
            history.push(t.price, last_digit(t.price, places), t.epoch)

    # ---- read-only views ----
    def history(self, symbol: str) -> PriceHistoryView:
        h = self._histories.get(symbol)
        if h is None:
            return PriceHistoryView(symbol, (), (), (), None)
        return h.snapshot()

    def histories(self) -> Dict[str, PriceHistoryView]:
        return {s: h.snapshot() for s, h in self._histories.items()}

    # ---- tick path ----
    def _new_history(self, symbol: str) -> PriceHistory:
        return PriceHistory(
            symbol,
            price_capacity=self._price_window,
            digit_capacity=self._digit_window,
            recent_digit_capacity=self._recent_window,
        )

    def _history_for(self, symbol: str) -> PriceHistory:
        h = self._histories.get(symbol)
        if h is None:
            h = self._new_history(symbol)
            self._histories[symbol] = h
        return h

    async def _on_tick_message(self, msg: JsonDict, symbol: str) -> None:
        try:
            tick = msg.get("tick") or {}
            q = tick.get("quote")
            e = tick.get("epoch")
            if q is None or e is None:
                return
            if symbol not in self._active:
                return  # late tick after unsubscribe

            t = Tick(symbol=symbol, price=float(q), epoch=int(e))
            digit = last_digit(t.price, self.symbol_config(symbol).decimal_places)
            self._history_for(symbol).push(t.price, digit, t.epoch)
        except (TypeError, ValueError) as ex:
            self._log.warning("on_tick_error", error=str(ex), symbol=symbol)
            return

        for listener in list(self._tick_listeners):
            try:
                listener(t)
            except Exception as ex:
                self._log.warning("tick_listener_error", error=str(ex), symbol=symbol)

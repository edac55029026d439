"""Main engine loop: stream ticks, analyze periodically, track and reconcile trades."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, List, Optional

import uvicorn

from deriv_signals.api.server import create_app
from deriv_signals.api.state import AppState, set_state
from deriv_signals.errors import DerivSignalsError, GatewayError, TransportError
from deriv_signals.infrastructure.deriv.deriv_ws_client import ConnectionState, DerivWSClient
from deriv_signals.infrastructure.logging.logging import configure_logging, get_logger
from deriv_signals.infrastructure.storage.sqlite_repository import SQLiteRepository
from deriv_signals.infrastructure.utils.config import SignalEngineConfig, load_config
from deriv_signals.infrastructure.utils.timeutils import utc_now
from deriv_signals.models.market_models import Tick
from deriv_signals.models.signal_models import Signal
from deriv_signals.services.execution.order_executor import OrderExecutor
from deriv_signals.services.market.stream_manager import StreamConnectionManager
from deriv_signals.services.monitoring.metrics import MetricsSnapshot
from deriv_signals.services.monitoring.metrics_store import write_metrics
from deriv_signals.services.strategy.market_analyzer import MarketAnalyzer
from deriv_signals.services.strategy.signal_synthesizer import SignalBook, contract_type_for
from deriv_signals.services.trading.trade_manager import TradeLifecycleManager


class Engine:
    """Owns the client and every component built on it; no module-level singletons."""

    def __init__(self, config: SignalEngineConfig, *, client: Optional[DerivWSClient] = None) -> None:
        self.config = config
        self.log = get_logger("engine")
        self.repo = SQLiteRepository(Path(config.database.sqlite.path))
        self.metrics = MetricsSnapshot(
            selected_symbol=config.analysis.selected_symbol,
            watched_symbols=list(config.analysis.symbols),
            dry_run=config.development.dry_run,
        )

        sc = config.stream
        self.client = client or DerivWSClient(
            websocket_url=config.deriv.websocket_url,
            app_id=config.deriv.app_id,
            api_token=config.deriv.api_token,
            heartbeat_interval_sec=sc.heartbeat_interval_seconds,
            request_timeout_sec=sc.request_timeout_seconds,
            initial_backoff_sec=sc.initial_backoff_seconds,
            max_reconnect_backoff_sec=sc.max_backoff_seconds,
            max_reconnect_attempts=sc.max_reconnect_attempts,
            backoff_jitter=sc.backoff_jitter,
            backoff_reset_after_sec=sc.backoff_reset_after_seconds,
        )

        ac = config.analysis
        self.stream = StreamConnectionManager(
            self.client,
            symbols=config.symbol_configs(),
            price_window=ac.price_window,
            digit_window=ac.digit_window,
            recent_digit_window=ac.recent_digits,
            history_count=ac.history_count,
        )
        self.book = SignalBook()
        self.analyzer = MarketAnalyzer(self.stream.history, ac.symbols, book=self.book, min_history=ac.min_history)
        self.executor = OrderExecutor(self.client, currency=config.trading.currency)
        self.trades = TradeLifecycleManager(
            self.executor,
            self.repo,
            profit_table_limit=config.trading.profit_table_limit,
        )

        self.stream.on_state(self._on_state)
        self.stream.on_tick(self._on_tick)
        set_state(
            AppState(stream=self.stream, book=self.book, trades=self.trades, metrics=self.metrics, repo=self.repo)
        )

    # ---- callbacks ----
    def _on_state(self, state: ConnectionState) -> None:
        was_connected = self.metrics.connected
        self.metrics.connection_state = state.value
        self.metrics.connected = state is ConnectionState.CONNECTED

        if was_connected and not self.metrics.connected:
            self.metrics.disconnects += 1
            self.log.warning("ws_disconnected", state=state.value)
            self._event("WARNING", "ws_disconnected", "Connection to Deriv lost", {"state": state.value})
        elif not was_connected and self.metrics.connected:
            self.log.info("ws_connected", disconnects=self.metrics.disconnects)
            self._event("INFO", "ws_connected", "Connected to Deriv", {"disconnects": self.metrics.disconnects})

        if state is ConnectionState.ERROR:
            self._event("ERROR", "ws_error", "Reconnect attempts exhausted", {})

    def _on_tick(self, tick: Tick) -> None:
        self.metrics.ticks_received += 1
        self.metrics.last_tick_symbol = tick.symbol
        self.metrics.last_tick_price = tick.price
        self.metrics.last_tick_epoch = tick.epoch

    def _event(self, level: str, type_: str, message: str, data: Any) -> None:
        self.repo.log_event(ts=utc_now().isoformat(), level=level, type=type_, message=message, data=data)

    # ---- periodic work ----
    async def analyze_once(self) -> Optional[Signal]:
        signal = self.analyzer.analyze()
        if signal is None:
            return None
        self.metrics.last_signal = signal.to_dict()
        if self.config.trading.auto_trade:
            await self.auto_trade(signal)
        return signal

    async def auto_trade(self, signal: Signal) -> None:
        trade_type = contract_type_for(signal)
        if trade_type is None or signal.price is None:
            return
        if self.config.development.dry_run:
            self.log.info("dry_run_skip_order", symbol=signal.symbol, type=trade_type.value, confidence=signal.confidence)
            return
        try:
            await self.trades.place_order(
                symbol=signal.symbol,
                trade_type=trade_type,
                stake=self.config.trading.stake,
                duration_seconds=signal.duration_seconds,
                entry_price=signal.price,
                account_id=self.config.trading.account_id,
            )
        except GatewayError as e:
            self.log.warning("auto_trade_rejected", symbol=signal.symbol, reason=e.reason)
        except TransportError as e:
            self.log.warning("auto_trade_transport_error", symbol=signal.symbol, error=str(e))

    async def _analysis_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.analysis.interval_seconds)
            await self.analyze_once()

    async def _reconcile_loop(self) -> None:
        while True:
            try:
                await self.trades.sync()
            except (GatewayError, TransportError) as e:
                self.log.warning("reconcile_failed", error=str(e))
            await asyncio.sleep(self.config.trading.reconcile_interval_seconds)

    def refresh_metrics(self) -> None:
        stats = self.trades.stats(account_id=self.config.trading.account_id)
        self.metrics.active_trades = stats.active_trades
        self.metrics.total_profit = stats.total_profit
        self.metrics.live_signals = len(self.book.live())
        write_metrics(self.metrics.to_dict(), Path(self.config.monitoring.metrics_path))

    async def _metrics_loop(self) -> None:
        while True:
            try:
                self.refresh_metrics()
            except OSError as e:
                self.log.warning("metrics_persist_failed", error=str(e))
            await asyncio.sleep(self.config.monitoring.metrics_interval_seconds)

    # ---- lifecycle ----
    async def start(self) -> None:
        self.trades.load()
        await self.stream.connect()
        await self.stream.watch(self.config.analysis.symbols)
        await self.stream.select_symbol(self.config.analysis.selected_symbol)
        for symbol in self.config.analysis.symbols:
            if symbol == self.stream.selected_symbol:
                continue  # loading in the background since select_symbol
            try:
                await self.stream.request_history(symbol)
            except DerivSignalsError as e:
                self.log.warning("history_preload_failed", symbol=symbol, error=str(e))
        await self.stream.history_loaded()

        self.log.info(
            "engine_started",
            symbols=self.config.analysis.symbols,
            selected=self.config.analysis.selected_symbol,
            dry_run=self.config.development.dry_run,
        )
        self._event(
            "INFO",
            "engine",
            "Engine started",
            {"symbols": self.config.analysis.symbols, "dry_run": self.config.development.dry_run},
        )

    async def stop(self) -> None:
        self.trades.shutdown()
        await self.stream.close()
        self._event("INFO", "engine", "Engine stopped", {})
        self.repo.close()
        set_state(None)
        self.log.info("engine_stopped")

    async def run(self, *, serve_api: bool = False) -> None:
        await self.start()
        tasks: List[asyncio.Task[Any]] = [
            asyncio.create_task(self._analysis_loop()),
            asyncio.create_task(self._metrics_loop()),
        ]
        if self.config.deriv.has_token:
            tasks.append(asyncio.create_task(self._reconcile_loop()))
        else:
            self.log.info("reconcile_disabled", reason="no api token")

        if serve_api:
            server = uvicorn.Server(
                uvicorn.Config(
                    create_app(self.config.api.cors_origins),
                    host=self.config.api.host,
                    port=self.config.api.port,
                    log_level=self.config.log_level.lower(),
                )
            )
            tasks.append(asyncio.create_task(server.serve()))

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for t in done:
                t.result()
        finally:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.stop()


async def run_engine(config_path: Path | None = None, *, serve_api: bool = False) -> None:
    config = load_config(config_path)
    level = "DEBUG" if config.development.enable_debug_logging else config.log_level
    configure_logging(level, json_output=config.log_json)
    log = get_logger("engine")
    log.info(
        "config_loaded",
        app_id=config.deriv.app_id,
        has_token=config.deriv.has_token,
        dry_run=config.development.dry_run,
    )
    engine = Engine(config)
    await engine.run(serve_api=serve_api)

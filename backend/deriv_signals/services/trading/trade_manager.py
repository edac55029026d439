"""Trade lifecycle: placement, expiry timers, manual sell and reconciliation.

Every terminal transition goes through `_settle`, which re-reads the current
record first. A trade that is already won/lost never changes status again,
so a timer that fires late, a duplicate profit-table row and a sell racing
an expiry are all no-ops.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from deriv_signals.errors import GatewayError, ReconciliationConflict
from deriv_signals.infrastructure.logging.logging import get_logger, log_context
from deriv_signals.infrastructure.utils.timeutils import ms_to_iso, now_ms as _now_ms
from deriv_signals.models.trade_models import Trade, TradeStatus, TradeType, TradingStats
from deriv_signals.services.trading.outcome import OutcomeResolver, RandomOutcomeResolver
from deriv_signals.services.trading.stats import compute_stats

JsonDict = Dict[str, Any]

DEFAULT_REMOTE_DURATION = 300
DEFAULT_REMOTE_SYMBOL = "R_10"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Timers on the running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


def parse_contract_type(shortcode: Optional[str], longcode: Optional[str]) -> TradeType:
    short = shortcode or ""
    long_ = (longcode or "").lower()
    if "DIGITMATCH" in short or "matches" in long_:
        return TradeType.DIGITMATCH
    if "DIGITDIFF" in short or "differs" in long_:
        return TradeType.DIGITDIFF
    if "CALL" in short or "rise" in long_:
        return TradeType.CALL
    if "PUT" in short or "fall" in long_:
        return TradeType.PUT
    return TradeType.CALL


def _f(v: Any, default: float = 0.0) -> float:
    try:
        return float(v) if v is not None else default
    except (TypeError, ValueError):
        return default


def _opt_str(v: Any) -> Optional[str]:
    return str(v) if v is not None else None


class TradeLifecycleManager:
    def __init__(
        self,
        executor: Any,
        repository: Any = None,
        resolver: Optional[OutcomeResolver] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[Callable[[], int]] = None,
        *,
        profit_table_limit: int = 50,
    ) -> None:
        self._log = get_logger("trade_manager")
        self._executor = executor
        self._repo = repository
        self._resolver = resolver or RandomOutcomeResolver()
        self._scheduler = scheduler or LoopScheduler()
        self._clock = clock or _now_ms
        self._profit_table_limit = profit_table_limit

        self._trades: Dict[str, Trade] = {}
        self._by_contract: Dict[str, str] = {}
        self._timers: Dict[str, TimerHandle] = {}

    # ---- read side ----
    def get(self, trade_id: str) -> Optional[Trade]:
        return self._trades.get(trade_id)

    def find_by_contract(self, contract_id: str) -> Optional[Trade]:
        tid = self._by_contract.get(str(contract_id))
        return self._trades.get(tid) if tid else None

    def snapshot(self) -> tuple:
        """Newest first."""
        return tuple(sorted(self._trades.values(), key=lambda t: t.entry_time_ms, reverse=True))

    def stats(self, account_id: Optional[str] = None, now_ms: Optional[int] = None) -> TradingStats:
        now = self._clock() if now_ms is None else now_ms
        return compute_stats(self._trades.values(), now_ms=now, account_id=account_id)

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    # ---- placement ----
    async def place_order(
        self,
        *,
        symbol: str,
        trade_type: TradeType,
        stake: float,
        duration_seconds: int,
        entry_price: float,
        account_id: Optional[str] = None,
        barrier: Optional[str] = None,
    ) -> Trade:
        try:
            order = await self._executor.place_order(
                symbol=symbol,
                trade_type=trade_type,
                stake=stake,
                duration=duration_seconds,
                duration_unit="s",
                barrier=barrier,
            )
        except GatewayError as e:
            self._log.warning("order_rejected", symbol=symbol, type=trade_type.value, code=e.code, reason=e.reason)
            self._audit("WARNING", "order_rejected", e.reason, {"symbol": symbol, "code": e.code})
            raise

        trade = Trade(
            id=uuid.uuid4().hex,
            symbol=symbol,
            type=trade_type,
            stake=float(stake),
            payout=order.payout,
            entry_time_ms=order.start_time_ms or self._clock(),
            entry_price=float(entry_price),
            duration_seconds=int(duration_seconds),
            external_contract_id=order.contract_id,
            transaction_id=order.transaction_id,
            account_id=account_id,
            longcode=order.longcode,
            shortcode=order.shortcode,
            barrier=barrier,
        )
        self.add_trade(trade)
        return trade

    def add_trade(self, trade: Trade) -> Trade:
        if trade.id in self._trades:
            raise ValueError(f"trade {trade.id} already registered")
        self._store(trade)
        if trade.status is TradeStatus.OPEN:
            self._schedule(trade)
        self._log.info(
            "trade_added",
            trade_id=trade.id,
            symbol=trade.symbol,
            type=trade.type.value,
            stake=trade.stake,
            status=trade.status.value,
        )
        self._audit("INFO", "trade_opened" if trade.status is TradeStatus.OPEN else "trade_imported", trade.id, trade.to_dict())
        return trade

    # ---- expiry ----
    def _schedule(self, trade: Trade) -> None:
        expires = trade.expires_at_ms
        if expires is None:
            return  # only reconciliation can close it
        self._cancel_timer(trade.id)
        delay = max(0.0, (expires - self._clock()) / 1000.0)
        self._timers[trade.id] = self._scheduler.call_later(delay, lambda tid=trade.id: self._on_expiry(tid))

    def _cancel_timer(self, trade_id: str) -> None:
        handle = self._timers.pop(trade_id, None)
        if handle is not None:
            handle.cancel()

    def _on_expiry(self, trade_id: str) -> None:
        self._timers.pop(trade_id, None)
        trade = self._trades.get(trade_id)
        if trade is None or trade.status.is_terminal:
            self._log.debug("expiry_noop", trade_id=trade_id)
            return

        with log_context(trade_id=trade_id, symbol=trade.symbol):
            outcome = self._resolver.resolve(trade)
            payout = trade.payout if outcome.won else 0.0
            self._settle(
                trade_id,
                status=TradeStatus.WON if outcome.won else TradeStatus.LOST,
                payout=payout,
                profit=payout - trade.stake,
                exit_price=trade.entry_price * (1.0 + outcome.movement),
                exit_time_ms=self._clock(),
                source="expiry",
            )

    # ---- single writer for terminal transitions ----
    def _settle(
        self,
        trade_id: str,
        *,
        status: TradeStatus,
        payout: float,
        profit: float,
        exit_price: Optional[float],
        exit_time_ms: int,
        source: str,
        **extra: Any,
    ) -> Optional[Trade]:
        current = self._trades.get(trade_id)
        if current is None or current.status.is_terminal:
            self._log.debug("settle_skipped", trade_id=trade_id, source=source)
            return None

        settled = replace(
            current,
            status=status,
            payout=payout,
            profit=profit,
            exit_price=exit_price,
            exit_time_ms=exit_time_ms,
            **extra,
        )
        self._cancel_timer(trade_id)
        self._store(settled)
        self._log.info(
            "trade_settled",
            trade_id=trade_id,
            status=status.value,
            profit=round(profit, 2),
            source=source,
        )
        self._audit("INFO", "trade_settled", f"{trade_id} {status.value}", {"source": source, **settled.to_dict()})
        return settled

    # ---- manual close ----
    async def sell(self, trade_id: str) -> Trade:
        trade = self._trades.get(trade_id)
        if trade is None:
            raise KeyError(trade_id)
        if trade.status.is_terminal:
            return trade
        if not trade.external_contract_id:
            raise GatewayError("InvalidContract", "trade has no contract id", op="sell")

        try:
            sold = await self._executor.sell_contract(trade.external_contract_id)
        except GatewayError as e:
            self._log.warning("sell_failed", trade_id=trade_id, code=e.code, reason=e.reason)
            raise

        profit = sold.sold_for - trade.stake
        settled = self._settle(
            trade_id,
            status=TradeStatus.WON if profit > 0 else TradeStatus.LOST,
            payout=sold.sold_for,
            profit=profit,
            exit_price=None,
            exit_time_ms=self._clock(),
            source="sell",
        )
        if settled is None:
            # expired locally while the sell was in flight
            current = self._trades[trade_id]
            self._conflict(trade.external_contract_id, current, {"profit": profit})
            return current
        return settled

    # ---- reconciliation ----
    async def sync(self) -> JsonDict:
        transactions = await self._executor.get_profit_table(self._profit_table_limit)
        contracts = await self._executor.get_portfolio()
        closed = self.reconcile_profit_table(transactions)
        opened = self.reconcile_portfolio(contracts)
        self._log.info("trades_synced", profit_table=len(transactions), portfolio=len(contracts), closed=closed, opened=opened)
        return {"profit_table": len(transactions), "portfolio": len(contracts), "closed": closed, "open": opened}

    def reconcile_profit_table(self, transactions: Iterable[JsonDict]) -> int:
        """Merge closed remote contracts. Returns how many local records changed."""
        changed = 0
        for tx in transactions:
            contract_id = _opt_str(tx.get("contract_id"))
            tx_id = _opt_str(tx.get("transaction_id"))
            if contract_id is None and tx_id is None:
                continue

            stake = _f(tx.get("buy_price"))
            sold = _f(tx.get("sell_price"))
            profit = sold - stake
            status = TradeStatus.WON if profit > 0 else TradeStatus.LOST
            exit_ms = int(_f(tx.get("sell_time"), self._clock() / 1000.0) * 1000)
            exit_tick = tx.get("exit_tick")

            local = self.find_by_contract(contract_id) if contract_id else None
            if local is None:
                local = self._trades.get(f"deriv_{tx_id}")

            if local is None:
                entry_ms = int(_f(tx.get("purchase_time"), exit_ms / 1000.0) * 1000)
                self.add_trade(
                    Trade(
                        id=f"deriv_{tx_id or contract_id}",
                        symbol=str(tx.get("underlying") or tx.get("symbol") or DEFAULT_REMOTE_SYMBOL),
                        type=parse_contract_type(tx.get("shortcode"), tx.get("longcode")),
                        stake=stake,
                        payout=sold,
                        profit=profit,
                        status=status,
                        entry_time_ms=entry_ms,
                        entry_price=_f(tx.get("entry_tick")),
                        exit_time_ms=exit_ms,
                        exit_price=_f(exit_tick) if exit_tick is not None else None,
                        duration_seconds=int(_f(tx.get("duration"), DEFAULT_REMOTE_DURATION)),
                        external_contract_id=contract_id,
                        transaction_id=tx_id,
                        longcode=tx.get("longcode"),
                        shortcode=tx.get("shortcode"),
                    )
                )
                changed += 1
                continue

            if local.status is TradeStatus.OPEN:
                # remote closed record wins over local speculative state
                self._settle(
                    local.id,
                    status=status,
                    payout=sold,
                    profit=profit,
                    exit_price=_f(exit_tick) if exit_tick is not None else local.exit_price,
                    exit_time_ms=exit_ms,
                    source="profit_table",
                    external_contract_id=local.external_contract_id or contract_id,
                    transaction_id=local.transaction_id or tx_id,
                )
                changed += 1
                continue

            if local.status is not status or abs(local.profit - profit) > 1e-9:
                self._conflict(contract_id or tx_id or local.id, local, {"status": status.value, "profit": profit})
        return changed

    def reconcile_portfolio(self, contracts: Iterable[JsonDict]) -> int:
        """Merge open remote positions. Returns how many local records changed."""
        changed = 0
        for c in contracts:
            contract_id = _opt_str(c.get("contract_id"))
            if contract_id is None:
                continue

            purchase = c.get("purchase_time")
            expiry = c.get("date_expiry")
            remote_duration: Optional[int] = None
            if purchase is not None and expiry is not None:
                remote_duration = max(0, int(_f(expiry) - _f(purchase)))
            elif c.get("duration") is not None:
                remote_duration = int(_f(c.get("duration")))

            local = self.find_by_contract(contract_id)
            if local is None:
                self.add_trade(
                    Trade(
                        id=f"deriv_open_{contract_id}",
                        symbol=str(c.get("underlying") or c.get("symbol") or DEFAULT_REMOTE_SYMBOL),
                        type=parse_contract_type(c.get("shortcode"), c.get("longcode")),
                        stake=_f(c.get("buy_price")),
                        payout=_f(c.get("payout")),
                        profit=_f(c.get("profit")),
                        entry_time_ms=int(_f(purchase, self._clock() / 1000.0) * 1000),
                        entry_price=_f(c.get("entry_tick")),
                        duration_seconds=DEFAULT_REMOTE_DURATION if remote_duration is None else remote_duration,
                        external_contract_id=contract_id,
                        transaction_id=_opt_str(c.get("transaction_id")),
                        longcode=c.get("longcode"),
                        shortcode=c.get("shortcode"),
                        barrier=_opt_str(c.get("barrier")),
                    )
                )
                changed += 1
                continue

            if local.status.is_terminal:
                self._log.debug("portfolio_stale_open_ignored", trade_id=local.id, contract_id=contract_id)
                continue

            # the remote open view wins while the contract runs
            updated = replace(
                local,
                payout=_f(c.get("payout"), local.payout),
                stake=_f(c.get("buy_price"), local.stake),
                profit=_f(c.get("profit"), local.profit),
                entry_price=_f(c.get("entry_tick"), local.entry_price),
                duration_seconds=local.duration_seconds if remote_duration is None else remote_duration,
                longcode=c.get("longcode") or local.longcode,
                shortcode=c.get("shortcode") or local.shortcode,
                barrier=_opt_str(c.get("barrier")) or local.barrier,
            )
            if updated != local:
                self._store(updated)
                if updated.expires_at_ms != local.expires_at_ms:
                    self._schedule(updated)
                changed += 1

        return changed

    def _conflict(self, external_id: str, local: Trade, remote: JsonDict) -> None:
        err = ReconciliationConflict(external_id, remote)
        self._log.warning(
            "reconciliation_conflict",
            trade_id=local.id,
            contract_id=external_id,
            local_status=local.status.value,
            local_profit=local.profit,
            remote=remote,
            error=str(err),
        )
        self._audit("WARNING", "reconciliation_conflict", str(err), {"trade_id": local.id, "remote": remote})

    # ---- persistence ----
    def load(self) -> int:
        """Reload persisted trades; overdue open trades resolve now, the rest get timers."""
        if self._repo is None:
            return 0
        rows: List[Trade] = self._repo.list_trades()
        now = self._clock()
        overdue: List[str] = []
        for t in rows:
            self._trades[t.id] = t
            if t.external_contract_id:
                self._by_contract[t.external_contract_id] = t.id
            if t.status is not TradeStatus.OPEN:
                continue
            if t.expires_at_ms is not None and t.expires_at_ms <= now:
                overdue.append(t.id)
            else:
                self._schedule(t)

        for tid in overdue:
            self._on_expiry(tid)
        self._log.info("trades_loaded", trades=len(rows), overdue=len(overdue), timers=len(self._timers))
        return len(rows)

    def shutdown(self) -> None:
        """Drop in-memory timers; persisted open trades get new ones on load()."""
        for tid in list(self._timers):
            self._cancel_timer(tid)

    def _store(self, trade: Trade) -> None:
        self._trades[trade.id] = trade
        if trade.external_contract_id:
            self._by_contract[trade.external_contract_id] = trade.id
        if self._repo is not None:
            self._repo.upsert_trade(trade)

    def _audit(self, level: str, type_: str, message: str, data: JsonDict) -> None:
        if self._repo is None:
            return
        self._repo.log_event(ts=ms_to_iso(self._clock()), level=level, type=type_, message=message, data=data)

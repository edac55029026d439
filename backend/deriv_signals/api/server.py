"""Read-only HTTP surface over the running engine."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from deriv_signals.api.state import get_state
from deriv_signals.models.market_models import DEFAULT_SYMBOLS
from deriv_signals.services.market.digits import digit_report

JsonDict = Dict[str, Any]

DEFAULT_CORS_ORIGINS = ("http://localhost:5173", "http://localhost:3000")


def _known_symbol(symbol: str) -> bool:
    s = get_state()
    return symbol in s.stream.active_symbols or symbol in s.stream.histories()


def create_app(cors_origins: Sequence[str] = DEFAULT_CORS_ORIGINS) -> FastAPI:
    app = FastAPI(title="Deriv Signal Engine API", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> JsonDict:
        return {"ok": True}

    @app.get("/connection")
    def connection() -> JsonDict:
        s = get_state()
        return {
            "state": s.stream.state.value,
            "connected": s.metrics.connected,
            "selected_symbol": s.stream.selected_symbol,
            "active_symbols": s.stream.active_symbols,
            "watched_symbols": s.stream.watched_symbols,
            "disconnects": s.metrics.disconnects,
        }

    @app.get("/metrics")
    def metrics() -> JsonDict:
        return get_state().metrics.to_dict()

    @app.get("/symbols")
    def symbols() -> List[JsonDict]:
        s = get_state()
        names = list(DEFAULT_SYMBOLS) + [x for x in s.stream.active_symbols if x not in DEFAULT_SYMBOLS]
        out = []
        for name in names:
            cfg = s.stream.symbol_config(name)
            out.append(
                {
                    "symbol": cfg.symbol,
                    "display_name": cfg.display_name or cfg.symbol,
                    "pip_size": cfg.pip_size,
                    "decimal_places": cfg.decimal_places,
                }
            )
        return out

    @app.get("/signals")
    def signals() -> List[JsonDict]:
        s = get_state()
        now = s.clock()
        return [sig.to_dict(now_ms=now) for sig in s.book.live(now)]

    @app.get("/trades")
    def trades(limit: int = Query(default=200, ge=1, le=5000)) -> List[JsonDict]:
        s = get_state()
        return [t.to_dict() for t in s.trades.snapshot()[:limit]]

    @app.get("/stats")
    def stats(account_id: Optional[str] = None) -> JsonDict:
        s = get_state()
        return s.trades.stats(account_id=account_id).to_dict()

    @app.get("/history/{symbol}")
    def history(symbol: str) -> JsonDict:
        if not _known_symbol(symbol):
            raise HTTPException(status_code=404, detail=f"no stream for {symbol}")
        view = get_state().stream.history(symbol)
        return {
            "symbol": symbol,
            "prices": list(view.prices),
            "digits": list(view.digits),
            "last_price": view.last_price,
            "last_epoch": view.last_epoch,
        }

    @app.get("/digits/{symbol}")
    def digits(symbol: str) -> JsonDict:
        if not _known_symbol(symbol):
            raise HTTPException(status_code=404, detail=f"no stream for {symbol}")
        view = get_state().stream.history(symbol)
        report = digit_report(view.digits)
        report["symbol"] = symbol
        report["recent"] = list(view.recent_digits)
        return report

    @app.get("/events")
    def events(limit: int = Query(default=200, ge=1, le=5000)) -> List[JsonDict]:
        s = get_state()
        if s.repo is None:
            return []
        return s.repo.list_events(limit=limit)

    return app


app = create_app()

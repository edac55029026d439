"""Fetch tick history from Deriv (ticks_history, style=ticks) and parse it into Ticks."""

from __future__ import annotations

from typing import Any, Dict, List

from deriv_signals.errors import GatewayError, ProtocolError
from deriv_signals.infrastructure.logging.logging import get_logger
from deriv_signals.models.market_models import Tick

log = get_logger("deriv_history")


def history_request(symbol: str, count: int) -> Dict[str, Any]:
    return {
        "ticks_history": symbol,
        "end": "latest",
        "start": 1,
        "style": "ticks",
        "count": int(count),
    }


def parse_history(symbol: str, resp: Dict[str, Any]) -> List[Tick]:
    """
    history.prices (strings or numbers) and history.times aligned by index,
    oldest first. Unparseable entries are skipped; lengths are truncated to match.
    """
    history = resp.get("history")
    if not isinstance(history, dict):
        raise ProtocolError("ticks_history response without history")

    prices_raw = history.get("prices") or []
    times_raw = history.get("times") or []
    n = min(len(prices_raw), len(times_raw))

    ticks: List[Tick] = []
    for p, t in zip(prices_raw[:n], times_raw[:n]):
        try:
            ticks.append(Tick(symbol=symbol, price=float(p), epoch=int(t)))
        except (TypeError, ValueError):
            log.debug("history_entry_skipped", symbol=symbol, price=p, epoch=t)
    return ticks


async def fetch_ticks_history(client: Any, symbol: str, count: int = 100) -> List[Tick]:
    """client must have request(payload) -> response."""
    resp = await client.request(history_request(symbol, count))
    err = GatewayError.from_response(resp, op="ticks_history")
    if err:
        log.error("ticks_history_error", symbol=symbol, code=err.code, error=err.message)
        raise err

    ticks = parse_history(symbol, resp)
    log.info("ticks_history_loaded", symbol=symbol, ticks=len(ticks))
    return ticks

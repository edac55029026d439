"""Trade execution gateway over the Deriv websocket (proposal -> buy, sell, portfolio, profit_table)."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from deriv_signals.errors import GatewayError
from deriv_signals.infrastructure.logging.logging import get_logger
from deriv_signals.models.trade_models import TradeType

JsonDict = Dict[str, Any]

DIGIT_TYPES = (TradeType.DIGITMATCH, TradeType.DIGITDIFF)


@dataclass(frozen=True)
class Proposal:
    id: str
    ask_price: float
    payout: float
    longcode: str = ""


@dataclass(frozen=True)
class ExecutedOrder:
    contract_id: str
    transaction_id: Optional[str]
    buy_price: float
    payout: float
    start_time_ms: Optional[int] = None
    longcode: Optional[str] = None
    shortcode: Optional[str] = None


@dataclass(frozen=True)
class SoldContract:
    contract_id: str
    sold_for: float
    transaction_id: Optional[str] = None


class OrderExecutor:
    def __init__(self, client: Any, *, currency: str = "USD") -> None:
        self.client = client
        self.currency = currency
        self._log = get_logger("order_executor")

    async def _call(self, op: str, payload: JsonDict) -> JsonDict:
        resp = await self.client.request(payload)
        err = GatewayError.from_response(resp, op=op)
        if err:
            self._log.warning("gateway_error", op=op, code=err.code, error=err.message)
            raise err
        return resp

    async def authorize(self, token: str) -> JsonDict:
        resp = await self._call("authorize", {"authorize": token})
        return resp.get("authorize") or {}

    async def get_proposal(
        self,
        *,
        symbol: str,
        trade_type: TradeType,
        stake: float,
        duration: int,
        duration_unit: str = "s",
        barrier: Optional[str] = None,
    ) -> Proposal:
        req: JsonDict = {
            "proposal": 1,
            "amount": float(stake),
            "basis": "stake",
            "contract_type": trade_type.value,
            "currency": self.currency,
            "duration": int(duration),
            "duration_unit": duration_unit,
            "symbol": symbol,
        }
        if trade_type in DIGIT_TYPES:
            if barrier is None:
                raise GatewayError("InvalidContract", "digit contracts need a barrier", op="proposal")
            req["barrier"] = str(barrier)

        resp = await self._call("proposal", req)
        p = resp.get("proposal") or {}
        if not p.get("id"):
            raise GatewayError("ProposalMissingId", "proposal response without id", op="proposal")
        return Proposal(
            id=str(p["id"]),
            ask_price=float(p.get("ask_price") or stake),
            payout=float(p.get("payout") or 0.0),
            longcode=str(p.get("longcode") or ""),
        )

    async def buy_contract(self, proposal_id: str, price: float) -> ExecutedOrder:
        resp = await self._call("buy", {"buy": proposal_id, "price": float(price)})
        b = resp.get("buy") or {}
        contract_id = b.get("contract_id")
        if contract_id is None:
            raise GatewayError("BuyMissingContractId", "buy response without contract_id", op="buy")

        start = b.get("start_time") or b.get("purchase_time")
        return ExecutedOrder(
            contract_id=str(contract_id),
            transaction_id=str(b["transaction_id"]) if b.get("transaction_id") is not None else None,
            buy_price=float(b.get("buy_price") or price),
            payout=float(b.get("payout") or 0.0),
            start_time_ms=int(start) * 1000 if start else None,
            longcode=b.get("longcode"),
            shortcode=b.get("shortcode"),
        )

    async def place_order(
        self,
        *,
        symbol: str,
        trade_type: TradeType,
        stake: float,
        duration: int,
        duration_unit: str = "s",
        barrier: Optional[str] = None,
    ) -> ExecutedOrder:
        """proposal -> buy at the quoted ask price."""
        proposal = await self.get_proposal(
            symbol=symbol,
            trade_type=trade_type,
            stake=stake,
            duration=duration,
            duration_unit=duration_unit,
            barrier=barrier,
        )
        order = await self.buy_contract(proposal.id, proposal.ask_price)
        if not order.payout and proposal.payout:
            order = replace(order, payout=proposal.payout, longcode=order.longcode or proposal.longcode or None)
        self._log.info(
            "order_placed",
            symbol=symbol,
            type=trade_type.value,
            stake=stake,
            contract_id=order.contract_id,
            payout=order.payout,
        )
        return order

    async def sell_contract(self, contract_id: str, price: float = 0.0) -> SoldContract:
        """price 0 sells at market."""
        resp = await self._call("sell", {"sell": int(contract_id), "price": float(price)})
        s = resp.get("sell") or {}
        return SoldContract(
            contract_id=str(contract_id),
            sold_for=float(s.get("sold_for") or 0.0),
            transaction_id=str(s["transaction_id"]) if s.get("transaction_id") is not None else None,
        )

    async def get_portfolio(self) -> List[JsonDict]:
        resp = await self._call("portfolio", {"portfolio": 1})
        return list((resp.get("portfolio") or {}).get("contracts") or [])

    async def get_profit_table(self, limit: int = 50) -> List[JsonDict]:
        resp = await self._call("profit_table", {"profit_table": 1, "description": 1, "limit": int(limit)})
        return list((resp.get("profit_table") or {}).get("transactions") or [])

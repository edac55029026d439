"""Error taxonomy for the signal engine.

- TransportError: connection lost / request timeout -> reconnect policy, never fatal.
- ProtocolError: malformed inbound frame -> logged and dropped.
- GatewayError: order rejected by Deriv -> surfaced to the caller, no trade created.
- ReconciliationConflict: remote record diverges from a local one.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DerivSignalsError(RuntimeError):
    pass


class TransportError(DerivSignalsError):
    pass


class TransportTimeout(TransportError):
    pass


class ProtocolError(DerivSignalsError):
    pass


_REASONS = {
    "InsufficientBalance": "Insufficient balance to place this trade",
    "InvalidContract": "Invalid contract parameters",
    "InvalidContractProposal": "Invalid contract parameters",
    "ContractBuyValidationError": "Invalid contract parameters",
    "ContractCreationFailure": "Invalid contract parameters",
    "MarketIsClosed": "Market is currently closed",
    "MarketClosed": "Market is currently closed",
}


class GatewayError(DerivSignalsError):
    def __init__(self, code: str, message: str = "", *, op: str = "") -> None:
        self.code = code or "Unknown"
        self.message = message
        self.op = op
        super().__init__(f"{op}_error: {self.code}: {message}" if op else f"{self.code}: {message}")

    @property
    def reason(self) -> str:
        """Human-readable reason suitable for the presentation layer."""
        return _REASONS.get(self.code) or self.message or "Failed to execute trade"

    @classmethod
    def from_response(cls, resp: Dict[str, Any], *, op: str = "") -> Optional["GatewayError"]:
        err = resp.get("error")
        if not err:
            return None
        if not isinstance(err, dict):
            return cls("Unknown", str(err), op=op)
        return cls(str(err.get("code") or "Unknown"), str(err.get("message") or ""), op=op)


class ReconciliationConflict(DerivSignalsError):
    def __init__(self, external_id: str, fields: Dict[str, Any]) -> None:
        self.external_id = external_id
        self.fields = fields
        super().__init__(f"conflicting remote record for contract {external_id}: {sorted(fields)}")

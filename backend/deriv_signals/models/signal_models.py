from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from deriv_signals.models.market_models import IndicatorSnapshot


class SignalType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    NEUTRAL = "NEUTRAL"
    CALL = "CALL"
    PUT = "PUT"
    MATCH = "MATCH"
    DIFFER = "DIFFER"


class Strength(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _RANK[self]


_RANK = {Strength.LOW: 1, Strength.MEDIUM: 2, Strength.HIGH: 3, Strength.CRITICAL: 4}


@dataclass(frozen=True)
class Signal:
    id: str
    symbol: str
    type: SignalType
    strength: Strength
    confidence: int
    reasoning: str
    created_at_ms: int
    duration_seconds: int
    price: Optional[float] = None
    indicators: Optional[IndicatorSnapshot] = None

    def remaining_seconds(self, now_ms: int) -> int:
        left = self.created_at_ms + self.duration_seconds * 1000 - now_ms
        return max(0, left // 1000)

    def is_expired(self, now_ms: int) -> bool:
        return now_ms - self.created_at_ms >= self.duration_seconds * 1000

    def to_dict(self, now_ms: Optional[int] = None) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "symbol": self.symbol,
            "type": self.type.value,
            "strength": self.strength.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "created_at_ms": self.created_at_ms,
            "duration_seconds": self.duration_seconds,
            "price": self.price,
        }
        if self.indicators is not None:
            ind = self.indicators
            d["indicators"] = {
                "rsi": ind.rsi,
                "macd": ind.macd.value,
                "bollinger": ind.bollinger.value,
                "trend": ind.trend.value,
                "momentum_pct": ind.momentum_pct,
                "volatility": ind.volatility,
            }
        if now_ms is not None:
            d["remaining_seconds"] = self.remaining_seconds(now_ms)
        return d

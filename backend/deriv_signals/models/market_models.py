"""Market domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


@dataclass(frozen=True)
class Tick:
    symbol: str
    price: float
    epoch: int


@dataclass(frozen=True)
class SymbolConfig:
    symbol: str
    pip_size: float
    decimal_places: int
    display_name: str = ""


def decimal_places_for_pip(pip_size: float) -> int:
    if pip_size == 0.01:
        return 2
    if pip_size == 0.001:
        return 3
    if pip_size == 0.0001:
        return 4
    return 5


DEFAULT_SYMBOLS: Dict[str, SymbolConfig] = {
    s.symbol: s
    for s in (
        SymbolConfig("R_10", 0.001, 3, "Volatility 10 Index"),
        SymbolConfig("R_25", 0.001, 3, "Volatility 25 Index"),
        SymbolConfig("R_50", 0.0001, 4, "Volatility 50 Index"),
        SymbolConfig("R_75", 0.0001, 4, "Volatility 75 Index"),
        SymbolConfig("R_100", 0.01, 2, "Volatility 100 Index"),
        SymbolConfig("BOOM1000", 0.01, 2, "Boom 1000 Index"),
        SymbolConfig("CRASH1000", 0.01, 2, "Crash 1000 Index"),
        SymbolConfig("STEPINDEX", 0.01, 2, "Step Index"),
        SymbolConfig("RDBEAR", 0.0001, 4, "Bear Market Index"),
        SymbolConfig("RDBULL", 0.0001, 4, "Bull Market Index"),
    )
}


def resolve_symbol(symbol: str, overrides: Optional[Dict[str, SymbolConfig]] = None) -> SymbolConfig:
    if overrides and symbol in overrides:
        return overrides[symbol]
    cfg = DEFAULT_SYMBOLS.get(symbol)
    if cfg is not None:
        return cfg
    # Unknown instruments get the finest precision Deriv quotes
    return SymbolConfig(symbol, 0.00001, decimal_places_for_pip(0.00001), symbol)


class MacdSign(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class BandState(str, Enum):
    SQUEEZE = "squeeze"
    EXPANSION = "expansion"
    NORMAL = "normal"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    SIDEWAYS = "sideways"


@dataclass(frozen=True)
class PriceAction:
    trend: Trend = Trend.SIDEWAYS
    momentum_pct: float = 0.0
    volatility: float = 0.0


@dataclass(frozen=True)
class IndicatorSnapshot:
    rsi: float = 50.0
    macd: MacdSign = MacdSign.NEUTRAL
    bollinger: BandState = BandState.NORMAL
    trend: Trend = Trend.SIDEWAYS
    momentum_pct: float = 0.0
    volatility: float = 0.0

"""Last-digit extraction and digit-window statistics."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, List, Sequence, Tuple


def last_digit(price: Any, decimal_places: int) -> int:
    """Last quoted digit of `price` at `decimal_places` precision.

    Rounds half away from zero on the shortest decimal form of the float
    (1.2345 @ 3dp -> "1.235" -> 5). Total: bad input -> 0.
    """
    try:
        if isinstance(price, bool):
            return 0
        value = float(price)
        dp = int(decimal_places)
    except (TypeError, ValueError, OverflowError):
        return 0
    if not math.isfinite(value) or dp < 0:
        return 0

    try:
        quantum = Decimal(1).scaleb(-dp)
        formatted = str(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError):
        return 0

    last = formatted[-1:]
    return int(last) if last.isdigit() else 0


@dataclass(frozen=True)
class DigitFrequency:
    digit: int
    count: int
    percentage: float


@dataclass(frozen=True)
class DigitSplit:
    """Counts for a partition of the digit window (odd/even, over/under 5)."""

    first: int
    second: int
    equal: int
    total: int

    def pct(self, n: int) -> float:
        return (n / self.total) * 100.0 if self.total else 0.0


def digit_frequencies(digits: Sequence[int]) -> List[DigitFrequency]:
    """Per-digit counts, most frequent first (stable on digit for ties)."""
    if not digits:
        return []
    counts = [0] * 10
    for d in digits:
        if 0 <= d <= 9:
            counts[d] += 1
    total = len(digits)
    out = [DigitFrequency(d, c, (c / total) * 100.0) for d, c in enumerate(counts)]
    return sorted(out, key=lambda f: f.count, reverse=True)


def odd_even(digits: Sequence[int]) -> DigitSplit:
    odd = sum(1 for d in digits if d % 2 == 1)
    return DigitSplit(first=odd, second=len(digits) - odd, equal=0, total=len(digits))


def over_under(digits: Sequence[int], threshold: int = 5) -> DigitSplit:
    over = sum(1 for d in digits if d > threshold)
    under = sum(1 for d in digits if d < threshold)
    return DigitSplit(first=over, second=under, equal=len(digits) - over - under, total=len(digits))


def matches_differs(digits: Sequence[int], window: int = 50) -> Tuple[Tuple[int, bool], ...]:
    """(digit, matched_previous) for the last `window` consecutive pairs."""
    pairs = [(digits[i], digits[i] == digits[i - 1]) for i in range(1, len(digits))]
    return tuple(pairs[-window:])


def digit_report(digits: Sequence[int]) -> dict:
    oe = odd_even(digits)
    ou = over_under(digits)
    md = matches_differs(digits)
    matches = sum(1 for _, m in md if m)
    return {
        "samples": len(digits),
        "frequencies": [asdict(f) for f in digit_frequencies(digits)],
        "odd": oe.first,
        "even": oe.second,
        "odd_pct": oe.pct(oe.first),
        "even_pct": oe.pct(oe.second),
        "over": ou.first,
        "under": ou.second,
        "equal": ou.equal,
        "matches": matches,
        "differs": len(md) - matches,
        "match_rate": (matches / len(md)) * 100.0 if md else 0.0,
    }

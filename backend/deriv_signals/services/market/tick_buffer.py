"""Bounded per-symbol price/digit history (FIFO, O(1) push)."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._items: Deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    @property
    def last(self) -> Optional[T]:
        return self._items[-1] if self._items else None

    def push(self, value: T) -> None:
        self._items.append(value)

    def extend(self, values) -> None:
        self._items.extend(values)

    def clear(self) -> None:
        self._items.clear()

    def snapshot(self) -> Tuple[T, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)


@dataclass(frozen=True)
class PriceHistoryView:
    symbol: str
    prices: Tuple[float, ...]
    digits: Tuple[int, ...]
    recent_digits: Tuple[int, ...]
    last_epoch: Optional[int]

    @property
    def last_price(self) -> Optional[float]:
        return self.prices[-1] if self.prices else None


class PriceHistory:
    """Short analysis window + longer digit-frequency window for one symbol.

    Owned by the stream manager; everything else gets a `PriceHistoryView`.
    """

    def __init__(
        self,
        symbol: str,
        *,
        price_capacity: int = 50,
        digit_capacity: int = 100,
        recent_digit_capacity: int = 20,
    ) -> None:
        self.symbol = symbol
        self._prices: RingBuffer[float] = RingBuffer(price_capacity)
        self._digits: RingBuffer[int] = RingBuffer(digit_capacity)
        self._recent: RingBuffer[int] = RingBuffer(recent_digit_capacity)
        self._last_epoch: Optional[int] = None

    def push(self, price: float, digit: int, epoch: Optional[int] = None) -> None:
        self._prices.push(price)
        self._digits.push(digit)
        self._recent.push(digit)
        if epoch is not None:
            self._last_epoch = epoch

    def clear(self) -> None:
        self._prices.clear()
        self._digits.clear()
        self._recent.clear()
        self._last_epoch = None

    def __len__(self) -> int:
        return len(self._prices)

    def snapshot(self) -> PriceHistoryView:
        return PriceHistoryView(
            symbol=self.symbol,
            prices=self._prices.snapshot(),
            digits=self._digits.snapshot(),
            recent_digits=self._recent.snapshot(),
            last_epoch=self._last_epoch,
        )

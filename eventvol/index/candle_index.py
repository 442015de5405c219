"""In-memory candle index — per-symbol ordered store with O(log n + k) queries.

Each symbol is loaded lazily on first use through the injected
``fetch_candles`` collaborator and then cached for the process lifetime.
Timestamps are kept in a sorted list so every query finds its bounds with
``bisect`` instead of scanning the ~10^6 M1 candles of a symbol's history.

All access goes through :meth:`CandleIndex.session`, which takes the index
lock once and holds it until the ``with`` block exits::

    with index.session() as idx:
        idx.load("EURUSD")
        candles = idx.range("EURUSD", start, end)

A multi-query operation (e.g. a heatmap over N pairs × M event types) must
run inside one session so a concurrent reload of a symbol cannot interleave
with it and hand back partial data.
"""

import bisect
import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta, timezone
from typing import NamedTuple, Optional

from eventvol.errors import ValidationError
from eventvol.market.models import Candle, ensure_utc, normalize_symbol

logger = logging.getLogger("eventvol.index")


class IndexedCandle(NamedTuple):
    """The slice of a candle the analyzers need."""

    time: datetime
    high: float
    low: float
    close: float
    open: float


class _SymbolSeries:
    """Sorted timestamps plus the parallel candle records for one symbol."""

    __slots__ = ("times", "candles")

    def __init__(self, candles: Iterable[Candle]) -> None:
        records = sorted(
            (
                IndexedCandle(ensure_utc(c.time), c.high, c.low, c.close, c.open)
                for c in candles
            ),
            key=lambda r: r.time,
        )
        self.times: list[datetime] = [r.time for r in records]
        self.candles: list[IndexedCandle] = records

    def between(self, start: datetime, end: datetime) -> list[IndexedCandle]:
        """Candles with ``start <= time < end``."""
        lo = bisect.bisect_left(self.times, start)
        hi = bisect.bisect_left(self.times, end)
        return self.candles[lo:hi]


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


class CandleIndex:
    """Lazily populated, lock-protected candle store.

    Args:
        fetch_candles: Callable returning every M1 candle of a symbol,
            typically ``CandleRepo.fetch_candles``.
    """

    def __init__(self, fetch_candles: Callable[[str], Iterable[Candle]]) -> None:
        self._fetch = fetch_candles
        self._data: dict[str, _SymbolSeries] = {}
        self._lock = threading.Lock()

    @contextmanager
    def session(self) -> Iterator["IndexSession"]:
        """Hold the index lock for one whole logical operation."""
        with self._lock:
            guard = IndexSession(self)
            try:
                yield guard
            finally:
                guard._release()


class IndexSession:
    """Query handle valid only while its :meth:`CandleIndex.session` is open."""

    def __init__(self, index: CandleIndex) -> None:
        self._index: Optional[CandleIndex] = index

    def _release(self) -> None:
        self._index = None

    @property
    def _data(self) -> dict[str, _SymbolSeries]:
        if self._index is None:
            raise RuntimeError("Index session used after it was closed")
        return self._index._data

    # ── Loading ──────────────────────────────────────────────────────────

    def load(self, symbol: str) -> bool:
        """Fetch and index *symbol* unless it is already cached.

        Returns ``True`` when the symbol was loaded by this call.  An empty
        candle set is valid and cached like any other.
        """
        key = normalize_symbol(symbol)
        data = self._data
        if key in data:
            return False
        series = _SymbolSeries(self._index._fetch(key))
        data[key] = series
        logger.info("Indexed %d candles for %s", len(series.times), key)
        return True

    def invalidate(self, symbol: str) -> None:
        """Drop *symbol* so the next :meth:`load` refetches it."""
        self._data.pop(normalize_symbol(symbol), None)

    def is_loaded(self, symbol: str) -> bool:
        return normalize_symbol(symbol) in self._data

    def loaded_symbols(self) -> list[str]:
        return sorted(self._data)

    def stats(self) -> dict[str, int]:
        """Candle count per loaded symbol."""
        return {sym: len(series.times) for sym, series in self._data.items()}

    def candle_count(self, symbol: str) -> int:
        series = self._data.get(normalize_symbol(symbol))
        return len(series.times) if series is not None else 0

    # ── Queries ──────────────────────────────────────────────────────────

    def range(
        self, symbol: str, start_date: date, end_date: date,
    ) -> Optional[list[IndexedCandle]]:
        """Candles whose date lies in ``[start_date, end_date]``.

        Returns ``None`` if the symbol was never loaded.
        """
        series = self._data.get(normalize_symbol(symbol))
        if series is None:
            return None
        return series.between(
            _day_start(start_date), _day_start(end_date + timedelta(days=1)),
        )

    def window(
        self, symbol: str, start: datetime, end: datetime,
    ) -> Optional[list[IndexedCandle]]:
        """Candles with ``start <= time <= end`` (minute precision)."""
        series = self._data.get(normalize_symbol(symbol))
        if series is None:
            return None
        start = ensure_utc(start)
        end = ensure_utc(end)
        lo = bisect.bisect_left(series.times, start)
        hi = bisect.bisect_right(series.times, end)
        return series.candles[lo:hi]

    def baseline(
        self, symbol: str, event_dt: datetime, days_back: int,
    ) -> Optional[list[IndexedCandle]]:
        """Same-hour candles from the *days_back* days before *event_dt*.

        Candles on the event's own calendar day are excluded even when
        their hour matches.
        """
        series = self._data.get(normalize_symbol(symbol))
        if series is None:
            return None
        event_dt = ensure_utc(event_dt)
        event_date = event_dt.date()
        return [
            c for c in series.between(event_dt - timedelta(days=days_back), event_dt)
            if c.time.hour == event_dt.hour and c.time.date() != event_date
        ]

    def slice_all_history(
        self, symbol: str, hour: int, minute_start: int, minute_end: int,
    ) -> list[IndexedCandle]:
        """Every candle whose hour is *hour* and minute is in ``[minute_start, minute_end)``."""
        if not 0 <= hour <= 23:
            raise ValidationError(f"hour must be 0-23, got {hour}")
        if not 0 <= minute_start < minute_end <= 60:
            raise ValidationError(
                f"minute bounds must satisfy 0 <= start < end <= 60, "
                f"got [{minute_start}, {minute_end})"
            )
        series = self._data.get(normalize_symbol(symbol))
        if series is None:
            return []
        return [
            c for c in series.candles
            if c.time.hour == hour and minute_start <= c.time.minute < minute_end
        ]

    def slice_quarter(self, symbol: str, hour: int, quarter: int) -> list[IndexedCandle]:
        """:meth:`slice_all_history` for the 15-minute *quarter* (0-3) of *hour*."""
        if not 0 <= quarter <= 3:
            raise ValidationError(f"quarter must be 0-3, got {quarter}")
        return self.slice_all_history(symbol, hour, quarter * 15, quarter * 15 + 15)

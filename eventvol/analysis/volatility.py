"""Event vs. baseline volatility for a single event occurrence — pure math over the index."""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from eventvol.index.candle_index import IndexSession, IndexedCandle
from eventvol.market.models import ensure_utc, normalize_symbol


@dataclass(frozen=True)
class VolatilityMetrics:
    """How much wider the event window traded than the same hour on prior days."""

    symbol: str
    event_time: datetime
    event_volatility: float  # mean high−low, pips
    baseline_volatility: float  # mean high−low, pips
    multiplier: float
    event_candle_count: int
    baseline_candle_count: int
    price_change_pips: float
    direction: str  # "up", "down" or "flat"

    def to_dict(self) -> dict:
        d = asdict(self)
        d["event_time"] = self.event_time.isoformat()
        return d


def mean_range_pips(candles: list[IndexedCandle], pip_value: float) -> float:
    """Average ``(high − low) / pip_value``; 0.0 for an empty list."""
    if not candles:
        return 0.0
    return sum((c.high - c.low) / pip_value for c in candles) / len(candles)


def compute_volatility_metrics(
    session: IndexSession,
    symbol: str,
    event_dt: datetime,
    window_minutes: int,
    baseline_days: int,
    pip_value: float,
) -> VolatilityMetrics:
    """Compare the ±*window_minutes* event window with the same-hour baseline.

    A symbol that was never loaded reads as empty: every figure is 0.0 and
    no exception is raised.

    Args:
        session: An open index session.
        symbol: Instrument symbol.
        event_dt: Event timestamp (UTC).
        window_minutes: Half-width of the event window.
        baseline_days: How many prior days feed the baseline.
        pip_value: Price size of one pip for *symbol*.

    Returns:
        ``VolatilityMetrics`` with means in pips, the event/baseline
        multiplier (0.0 when the baseline is 0) and the net price move.
    """
    key = normalize_symbol(symbol)
    event_dt = ensure_utc(event_dt)
    start = event_dt - timedelta(minutes=window_minutes)
    end = event_dt + timedelta(minutes=window_minutes)

    day_candles = session.range(key, start.date(), end.date()) or []
    event_candles = [c for c in day_candles if start <= c.time <= end]
    baseline_candles = session.baseline(key, event_dt, baseline_days) or []

    event_vol = mean_range_pips(event_candles, pip_value)
    baseline_vol = mean_range_pips(baseline_candles, pip_value)
    multiplier = event_vol / baseline_vol if baseline_vol > 0 else 0.0

    if event_candles:
        change = (event_candles[-1].close - event_candles[0].open) / pip_value
    else:
        change = 0.0
    if change > 0:
        direction = "up"
    elif change < 0:
        direction = "down"
    else:
        direction = "flat"

    return VolatilityMetrics(
        symbol=key,
        event_time=event_dt,
        event_volatility=event_vol,
        baseline_volatility=baseline_vol,
        multiplier=multiplier,
        event_candle_count=len(event_candles),
        baseline_candle_count=len(baseline_candles),
        price_change_pips=change,
        direction=direction,
    )

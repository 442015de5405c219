"""Event-type × symbol volatility heatmap."""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from eventvol.analysis.volatility import compute_volatility_metrics
from eventvol.index.candle_index import IndexSession


@dataclass(frozen=True)
class HeatmapCell:
    """Average event-window behaviour of one event type on one symbol."""

    event_type: str
    symbol: str
    value: float  # mean event volatility, pips
    multiplier: float  # mean event/baseline multiplier
    sample_count: int

    @property
    def has_data(self) -> bool:
        return self.sample_count > 0

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "symbol": self.symbol,
            "value": round(self.value, 4),
            "multiplier": round(self.multiplier, 4),
            "sample_count": self.sample_count,
            "has_data": self.has_data,
        }


@dataclass(frozen=True)
class Heatmap:
    symbols: list[str]
    event_types: list[str]
    cells: list[HeatmapCell] = field(default_factory=list)

    def cell(self, event_type: str, symbol: str) -> HeatmapCell:
        for c in self.cells:
            if c.event_type == event_type and c.symbol == symbol:
                return c
        raise KeyError((event_type, symbol))

    def to_dict(self) -> dict:
        data: dict[str, dict[str, float]] = {}
        counts: dict[str, dict[str, int]] = {}
        for c in self.cells:
            data.setdefault(c.event_type, {})[c.symbol] = round(c.value, 4)
            counts.setdefault(c.event_type, {})[c.symbol] = c.sample_count
        return {
            "symbols": self.symbols,
            "event_types": self.event_types,
            "data": data,
            "counts": counts,
        }


def compute_heatmap(
    session: IndexSession,
    symbols: Sequence[str],
    occurrences: Mapping[str, Sequence[datetime]],
    window_minutes: int,
    baseline_days: int,
    pip_value_for: Callable[[str], float],
) -> Heatmap:
    """Fill one cell per ``(event_type, symbol)`` pair.

    Occurrences with no candles in their event window are left out of the
    cell's average; a cell with no usable occurrence reads 0.0.  The caller
    is expected to have loaded every symbol on *session* beforehand.
    """
    cells: list[HeatmapCell] = []
    for event_type, times in occurrences.items():
        for symbol in symbols:
            pip_value = pip_value_for(symbol)
            volatilities: list[float] = []
            multipliers: list[float] = []
            for event_dt in times:
                metrics = compute_volatility_metrics(
                    session, symbol, event_dt, window_minutes, baseline_days, pip_value,
                )
                if metrics.event_candle_count == 0:
                    continue
                volatilities.append(metrics.event_volatility)
                multipliers.append(metrics.multiplier)
            n = len(volatilities)
            cells.append(HeatmapCell(
                event_type=event_type,
                symbol=symbol,
                value=sum(volatilities) / n if n else 0.0,
                multiplier=sum(multipliers) / n if n else 0.0,
                sample_count=n,
            ))
    return Heatmap(symbols=list(symbols), event_types=list(occurrences), cells=cells)

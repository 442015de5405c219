"""Impact profile — the average minute-by-minute shape of an event type.

Every historical occurrence of an event type contributes the candles from
30 minutes before to 90 minutes after its release.  Candles are placed by
their minute offset from the event, so a gap in one occurrence only
thins that minute's sample instead of shifting the whole timeline.

Units: ATR, wick and range figures stay in price units; callers divide by
``point_value`` to get pips.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import numpy as np

from eventvol.errors import InsufficientDataError
from eventvol.index.candle_index import IndexedCandle
from eventvol.market.models import CalendarEvent, ensure_utc

logger = logging.getLogger("eventvol.analysis")

PRE_MINUTES = 30
POST_MINUTES = 90
P95_WINDOW = (-5, 15)  # minute offsets, end exclusive


@dataclass(frozen=True)
class ImpactProfile:
    """Averaged pre/post-event behaviour of one event type on one symbol."""

    symbol: str
    event_type: str
    occurrences: int
    point_value: float
    atr_before: list[float]  # 30 values, index 0 = event − 30 min
    atr_after: list[float]  # 90 values, index 0 = event minute
    body_before: list[float]
    body_after: list[float]
    noise_before: float
    noise_during: float
    noise_after: float
    volatility_increase_pct: float
    p95_wick: float
    p95_range: float
    avg_deviation: float
    surprise_event_count: int
    first_occurrence: Optional[datetime] = None
    last_occurrence: Optional[datetime] = None
    skipped_occurrences: int = 0
    minute_samples: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "event_type": self.event_type,
            "occurrences": self.occurrences,
            "skipped_occurrences": self.skipped_occurrences,
            "point_value": self.point_value,
            "atr_before": self.atr_before,
            "atr_after": self.atr_after,
            "body_before": self.body_before,
            "body_after": self.body_after,
            "noise_before": round(self.noise_before, 4),
            "noise_during": round(self.noise_during, 4),
            "noise_after": round(self.noise_after, 4),
            "volatility_increase_pct": round(self.volatility_increase_pct, 2),
            "p95_wick": self.p95_wick,
            "p95_range": self.p95_range,
            "avg_deviation": self.avg_deviation,
            "surprise_event_count": self.surprise_event_count,
            "first_occurrence": (
                self.first_occurrence.isoformat() if self.first_occurrence else None
            ),
            "last_occurrence": (
                self.last_occurrence.isoformat() if self.last_occurrence else None
            ),
        }


# ── Per-candle measures ──────────────────────────────────────────────────


def true_range(candle: IndexedCandle) -> float:
    """Single-candle ATR: ``high − low``."""
    return candle.high - candle.low


def body_percent(candle: IndexedCandle) -> float:
    """Body as a percentage of the candle's range; 0.0 for a zero-range bar."""
    rng = candle.high - candle.low
    if rng <= 0:
        return 0.0
    return abs(candle.close - candle.open) / rng * 100.0


def noise_ratio(body_pct: float) -> float:
    """``100 / body%``: 1.0 for a full-body candle, large for wicky ones."""
    if body_pct <= 0:
        return 1.0
    return 100.0 / body_pct


def percentile_95(values: Sequence[float]) -> float:
    """95th percentile with linear interpolation; 0.0 when *values* is empty."""
    if len(values) == 0:
        return 0.0
    return float(np.percentile(np.asarray(values, dtype=float), 95))


def _minute_offset(candle: IndexedCandle, event_dt: datetime) -> int:
    return int((candle.time - event_dt).total_seconds() // 60)


def _averaged(sums: np.ndarray, counts: np.ndarray) -> list[float]:
    out = np.zeros_like(sums)
    np.divide(sums, counts, out=out, where=counts > 0)
    return [float(v) for v in out]


# ── Public API ───────────────────────────────────────────────────────────


def build_impact_profile(
    symbol: str,
    event_type: str,
    occurrences: Sequence[tuple[CalendarEvent, Sequence[IndexedCandle]]],
    point_value: float,
    min_candles: int = 120,
) -> ImpactProfile:
    """Aggregate every usable occurrence of *event_type* into one profile.

    Args:
        symbol: Instrument the candles belong to.
        event_type: Event description shared by all occurrences.
        occurrences: ``(event, candles)`` pairs, the candles spanning
            ``[event − 30 min, event + 90 min]``.
        point_value: Pip size of *symbol*, stored on the profile.
        min_candles: Occurrences with fewer candles are skipped.

    Returns:
        ``ImpactProfile`` averaged over the contributing occurrences.

    Raises:
        InsufficientDataError: If no occurrence has enough candles.
    """
    total = PRE_MINUTES + POST_MINUTES
    atr_sums = np.zeros(total)
    body_sums = np.zeros(total)
    counts = np.zeros(total)
    noise_pre = 0.0
    noise_event = 0.0
    noise_post = 0.0
    wicks: list[float] = []
    ranges: list[float] = []
    deviations: list[float] = []
    used: list[datetime] = []
    skipped = 0

    for event, candles in occurrences:
        event_dt = ensure_utc(event.time)
        if len(candles) < min_candles:
            skipped += 1
            logger.debug(
                "Skipping %s @ %s: %d candles (< %d)",
                event_type, event_dt.isoformat(), len(candles), min_candles,
            )
            continue

        used.append(event_dt)
        if event.deviation is not None:
            deviations.append(event.deviation)

        for candle in candles:
            offset = _minute_offset(candle, event_dt)
            if not -PRE_MINUTES <= offset < POST_MINUTES:
                continue
            slot = offset + PRE_MINUTES
            body = body_percent(candle)
            noise = noise_ratio(body)

            atr_sums[slot] += true_range(candle)
            body_sums[slot] += body
            counts[slot] += 1

            if offset < 0:
                noise_pre += noise
            elif offset == 0:
                noise_event += noise
            else:
                noise_post += noise

            if P95_WINDOW[0] <= offset < P95_WINDOW[1]:
                upper = candle.high - max(candle.open, candle.close)
                lower = min(candle.open, candle.close) - candle.low
                if upper > 0:
                    wicks.append(upper)
                if lower > 0:
                    wicks.append(lower)
                ranges.append(true_range(candle))

    occ = len(used)
    if occ == 0:
        raise InsufficientDataError(
            f"No occurrence of {event_type!r} on {symbol} has "
            f"{min_candles} candles of data"
        )

    atr = _averaged(atr_sums, counts)
    body = _averaged(body_sums, counts)
    atr_before, atr_after = atr[:PRE_MINUTES], atr[PRE_MINUTES:]

    mean_pre = float(np.mean(atr_before))
    mean_post = float(np.mean(atr_after))
    vol_increase = (mean_post - mean_pre) / mean_pre * 100.0 if mean_pre > 0 else 0.0

    logger.debug(
        "Impact profile %s/%s: %d occurrences, %d skipped, vol +%.1f%%",
        symbol, event_type, occ, skipped, vol_increase,
    )

    return ImpactProfile(
        symbol=symbol,
        event_type=event_type,
        occurrences=occ,
        point_value=point_value,
        atr_before=atr_before,
        atr_after=atr_after,
        body_before=body[:PRE_MINUTES],
        body_after=body[PRE_MINUTES:],
        noise_before=noise_pre / (PRE_MINUTES * occ),
        noise_during=noise_event / occ,
        noise_after=noise_post / ((POST_MINUTES - 1) * occ),
        volatility_increase_pct=vol_increase,
        p95_wick=percentile_95(wicks),
        p95_range=percentile_95(ranges),
        avg_deviation=sum(deviations) / len(deviations) if deviations else 0.0,
        surprise_event_count=sum(1 for d in deviations if d > 0),
        first_occurrence=min(used),
        last_occurrence=max(used),
        skipped_occurrences=skipped,
        minute_samples=[int(c) for c in counts],
    )

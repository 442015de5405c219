"""Volatility decay after an event — how fast the post-release spike fades."""

from collections.abc import Sequence
from dataclasses import asdict, dataclass

from eventvol.config import Heuristics
from eventvol.errors import InsufficientDataError


@dataclass(frozen=True)
class DecayProfile:
    """Peak timing and fade speed of the post-event ATR timeline."""

    peak_delay_minutes: int
    peak_atr_pips: float
    decay_rate_pips_per_minute: float
    decay_speed: str  # "fast", "medium" or "slow"
    recommended_timeout_minutes: int

    def to_dict(self) -> dict:
        return asdict(self)


def peak_delay(atr_after: Sequence[float]) -> int:
    """Index of the first maximum, i.e. minutes from release to peak."""
    best = 0
    for i, value in enumerate(atr_after):
        if value > atr_after[best]:
            best = i
    return best


def decay_rate(atr_after: Sequence[float], point_value: float, horizon: int = 10) -> float:
    """Pips per minute lost between the peak and *horizon* minutes later."""
    peak_idx = peak_delay(atr_after)
    end_idx = min(peak_idx + horizon, len(atr_after) - 1)
    elapsed = max(end_idx - peak_idx, 1)
    drop = atr_after[peak_idx] - atr_after[end_idx]
    return drop / point_value / elapsed


def classify_decay(rate: float, heuristics: Heuristics) -> tuple[str, int]:
    """Map a decay rate to ``(speed, recommended_timeout_minutes)``."""
    if rate > heuristics.decay_fast_rate:
        return "fast", heuristics.decay_fast_timeout
    if rate > heuristics.decay_medium_rate:
        return "medium", heuristics.decay_medium_timeout
    return "slow", heuristics.decay_slow_timeout


def analyze_decay(
    atr_after: Sequence[float],
    point_value: float,
    heuristics: Heuristics,
) -> DecayProfile:
    """Build a :class:`DecayProfile` from a post-event ATR series.

    Raises:
        InsufficientDataError: If the series is shorter than
            ``heuristics.decay_min_values``.
    """
    if len(atr_after) < heuristics.decay_min_values:
        raise InsufficientDataError(
            f"Decay analysis needs {heuristics.decay_min_values} ATR values, "
            f"got {len(atr_after)}"
        )
    rate = decay_rate(atr_after, point_value, heuristics.decay_horizon_minutes)
    speed, timeout = classify_decay(rate, heuristics)
    peak_idx = peak_delay(atr_after)
    return DecayProfile(
        peak_delay_minutes=peak_idx,
        peak_atr_pips=atr_after[peak_idx] / point_value,
        decay_rate_pips_per_minute=rate,
        decay_speed=speed,
        recommended_timeout_minutes=timeout,
    )

"""Straddle order sizing — pure math, no I/O.

A straddle brackets the release price with a buy stop above and a sell
stop below.  All distances are derived from the impact profile:

    offset      distance of each pending stop from the reference price
    stop loss   hard stop from the filled entry
    trailing    distance the trailing stop follows behind closes
    sl recovery stop for the reversed leg opened after a losing first leg
                (simultaneous mode only)
    timeout     minutes before an open position is closed at market

Sizes are whole pips (rounded up) so they can be typed straight into a
broker ticket.
"""

import enum
import math
from collections.abc import Sequence
from dataclasses import dataclass

from eventvol.analysis.impact import ImpactProfile
from eventvol.config import Heuristics
from eventvol.errors import ValidationError


class StraddleMode(str, enum.Enum):
    DIRECTIONAL = "directional"
    SIMULTANEOUS = "simultaneous"

    @classmethod
    def parse(cls, raw: str) -> "StraddleMode":
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise ValidationError(
                f"mode must be 'directional' or 'simultaneous', got '{raw}'"
            ) from None


@dataclass(frozen=True)
class SizingLevels:
    """Raw sizing output before the mode-specific adjustments."""
    offset_pips: float
    stop_loss_pips: float
    trailing_stop_pips: float
    risk_reward_ratio: float
    timeout_minutes: int
    spread_safety_pips: float


@dataclass(frozen=True)
class StraddleParameters:
    """Order distances for one event type on one symbol, in pips."""
    symbol: str
    event_type: str
    mode: StraddleMode
    pip_value: float
    offset_pips: float
    stop_loss_pips: float
    trailing_stop_pips: float
    sl_recovery_pips: float
    timeout_minutes: int
    best_moment_minute: int
    risk_reward_ratio: float
    spread_safety_pips: float
    recent_atr_pips: float
    noise_ratio: float

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "event_type": self.event_type,
            "mode": self.mode.value,
            "pip_value": self.pip_value,
            "offset_pips": self.offset_pips,
            "stop_loss_pips": self.stop_loss_pips,
            "trailing_stop_pips": self.trailing_stop_pips,
            "sl_recovery_pips": self.sl_recovery_pips,
            "timeout_minutes": self.timeout_minutes,
            "best_moment_minute": self.best_moment_minute,
            "risk_reward_ratio": round(self.risk_reward_ratio, 4),
            "spread_safety_pips": self.spread_safety_pips,
            "recent_atr_pips": round(self.recent_atr_pips, 4),
            "noise_ratio": round(self.noise_ratio, 4),
        }

    def to_price_distances(self) -> dict[str, float]:
        """Distances in price units (pips × pip value)."""
        return {
            "offset": self.offset_pips * self.pip_value,
            "stop_loss": self.stop_loss_pips * self.pip_value,
            "trailing_stop": self.trailing_stop_pips * self.pip_value,
            "sl_recovery": self.sl_recovery_pips * self.pip_value,
        }

    def to_points(self, point_size: float) -> dict[str, int]:
        """Distances in broker points, rounded to the nearest point."""
        if point_size <= 0:
            raise ValidationError(f"point_size must be positive, got {point_size}")
        return {
            name: int(round(distance / point_size))
            for name, distance in self.to_price_distances().items()
        }


# ── Building blocks ──────────────────────────────────────────────────────


def _ceil(value: float) -> int:
    """Round up to a whole pip, ignoring float noise below 1e-6."""
    return math.ceil(round(value, 6))


def calculate_sizing(
    atr_pips: float,
    noise_ratio: float,
    spread_safety_pips: float,
    timeout_hint: int,
    p95_wick_pips: float = 0.0,
) -> SizingLevels:
    """Derive order distances from recent ATR and the noise ratio.

    - **Offset**: ``ceil(ATR × 3)`` when noise > 2.5, else ``ceil(ATR × 2)``,
      plus the spread safety margin; never closer than the P95 wick.
    - **Stop loss**: ``ceil(ATR × r)``, r = 5 / 4 / 3 / 2.5 for
      noise > 3.5 / > 2.5 / > 2.0 / otherwise.
    - **Trailing stop**: ``ceil(ATR × t)``, t = 2 / 1.5 / 1.2 / 1.0 for
      noise > 3 / > 2 / > 1.5 / otherwise.

    Args:
        atr_pips: Recent ATR in pips.
        noise_ratio: Wick-to-body noise measure (1.0 = clean candles).
        spread_safety_pips: Margin added to the offset.
        timeout_hint: Timeout in minutes, passed through unchanged.
        p95_wick_pips: 95th-percentile wick around the release, in pips.

    Returns:
        ``SizingLevels``; ``risk_reward_ratio`` is ``ATR / SL`` (0.0 when
        the stop loss is 0).
    """
    offset_mult = 3.0 if noise_ratio > 2.5 else 2.0
    offset = _ceil(atr_pips * offset_mult) + spread_safety_pips
    if p95_wick_pips > 0:
        offset = max(offset, _ceil(p95_wick_pips) + spread_safety_pips)

    if noise_ratio > 3.5:
        sl_ratio = 5.0
    elif noise_ratio > 2.5:
        sl_ratio = 4.0
    elif noise_ratio > 2.0:
        sl_ratio = 3.0
    else:
        sl_ratio = 2.5
    stop_loss = float(_ceil(atr_pips * sl_ratio))

    if noise_ratio > 3.0:
        ts_ratio = 2.0
    elif noise_ratio > 2.0:
        ts_ratio = 1.5
    elif noise_ratio > 1.5:
        ts_ratio = 1.2
    else:
        ts_ratio = 1.0
    trailing = float(_ceil(atr_pips * ts_ratio))

    return SizingLevels(
        offset_pips=float(offset),
        stop_loss_pips=stop_loss,
        trailing_stop_pips=trailing,
        risk_reward_ratio=atr_pips / stop_loss if stop_loss > 0 else 0.0,
        timeout_minutes=timeout_hint,
        spread_safety_pips=spread_safety_pips,
    )


def calculate_timeout(
    atr_after: Sequence[float],
    volatility_increase: float,
    heuristics: Heuristics,
) -> int:
    """Minutes until the post-event ATR settles back below a share of its peak.

    Scans the smoothed post-event ATR for the first minute whose 3-bar mean
    falls to ``timeout_peak_ratio × peak``.  Strong events get a floor so a
    short pause right after the release does not cut the trade; when the
    ATR never settles the timeout falls back by impact strength.
    """
    h = heuristics
    if not atr_after:
        return h.timeout_max_minutes
    peak = max(atr_after)
    if peak <= 0:
        return h.timeout_max_minutes

    threshold = peak * h.timeout_peak_ratio
    start = (
        h.timeout_late_start_minute
        if volatility_increase > h.timeout_late_start_vol_pct
        else h.timeout_early_start_minute
    )
    width = h.timeout_smoothing_window
    n = len(atr_after)

    timeout = h.timeout_max_minutes
    for i in range(start, n):
        window = [atr_after[j] if j < n else atr_after[i] for j in range(i, i + width)]
        if sum(window) / width <= threshold:
            if volatility_increase > h.timeout_floor_vol_pct and i < h.timeout_floor_minutes:
                timeout = h.timeout_floor_minutes
            else:
                timeout = min(i, h.timeout_max_minutes)
            break

    if timeout == h.timeout_max_minutes:
        if volatility_increase > h.timeout_high_impact_vol_pct:
            timeout = h.timeout_high_impact_minutes
        elif volatility_increase < h.timeout_low_impact_vol_pct:
            timeout = h.timeout_low_impact_minutes
    return timeout


def calculate_best_moment(atr_before: Sequence[float]) -> int:
    """Minute slot of the pre-event ATR peak, counted back from minute 29.

    Only the last five pre-event values are considered; on a tie the
    earliest minute wins.
    """
    if not atr_before:
        return 0
    n = len(atr_before)
    best = max(range(max(n - 5, 0), n), key=lambda i: (atr_before[i], -i))
    return max(29 - best, 0)


def recent_atr_pips(profile: ImpactProfile, heuristics: Heuristics) -> float:
    """Mean of the last few pre-event ATR values, in pips."""
    tail = profile.atr_before[-heuristics.recent_atr_minutes:]
    if not tail or profile.point_value <= 0:
        return heuristics.fallback_atr_pips
    return sum(tail) / len(tail) / profile.point_value


# ── Public API ───────────────────────────────────────────────────────────


def _build(
    profile: ImpactProfile,
    heuristics: Heuristics,
    mode: StraddleMode,
    noise: float,
) -> tuple[SizingLevels, dict]:
    atr = recent_atr_pips(profile, heuristics)
    timeout = calculate_timeout(
        profile.atr_after, profile.volatility_increase_pct, heuristics,
    )
    p95_wick_pips = (
        profile.p95_wick / profile.point_value if profile.point_value > 0 else 0.0
    )
    sizing = calculate_sizing(
        atr, noise, heuristics.spread_safety_pips, timeout, p95_wick_pips,
    )
    common = {
        "symbol": profile.symbol,
        "event_type": profile.event_type,
        "mode": mode,
        "pip_value": profile.point_value,
        "offset_pips": sizing.offset_pips,
        "stop_loss_pips": sizing.stop_loss_pips,
        "trailing_stop_pips": sizing.trailing_stop_pips,
        "timeout_minutes": sizing.timeout_minutes,
        "best_moment_minute": calculate_best_moment(profile.atr_before),
        "risk_reward_ratio": sizing.risk_reward_ratio,
        "spread_safety_pips": sizing.spread_safety_pips,
        "recent_atr_pips": atr,
        "noise_ratio": noise,
    }
    return sizing, common


def calculate_directional(
    profile: ImpactProfile, heuristics: Heuristics,
) -> StraddleParameters:
    """Parameters for a straddle that cancels the second stop once one fills."""
    _, common = _build(
        profile, heuristics, StraddleMode.DIRECTIONAL, profile.noise_during,
    )
    return StraddleParameters(sl_recovery_pips=0.0, **common)


def calculate_simultaneous(
    profile: ImpactProfile, heuristics: Heuristics,
) -> StraddleParameters:
    """Parameters for a straddle that keeps both legs live.

    Noise is inflated by ``simultaneous_noise_multiplier`` and the recovery
    stop is capped by the P95 candle range around the release.
    """
    noise = profile.noise_during * heuristics.simultaneous_noise_multiplier
    sizing, common = _build(profile, heuristics, StraddleMode.SIMULTANEOUS, noise)

    recovery = sizing.stop_loss_pips * heuristics.sl_recovery_sl_multiplier
    if profile.p95_range > 0 and profile.point_value > 0:
        cap = profile.p95_range / profile.point_value * heuristics.sl_recovery_p95_multiplier
        recovery = min(recovery, cap)
    return StraddleParameters(sl_recovery_pips=float(_ceil(recovery)), **common)


def calculate_parameters(
    profile: ImpactProfile, heuristics: Heuristics, mode: StraddleMode,
) -> StraddleParameters:
    if mode is StraddleMode.SIMULTANEOUS:
        return calculate_simultaneous(profile, heuristics)
    return calculate_directional(profile, heuristics)

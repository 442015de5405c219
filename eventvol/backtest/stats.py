"""Backtest statistics — pure functions for trade-series analysis."""

from collections.abc import Sequence
from typing import Optional

from eventvol.backtest.models import TradeOutcome, TradeResult
from eventvol.config import Heuristics

_WHIPSAW_RISK_LEVELS = [
    (5.0, "very_low"),
    (15.0, "low"),
    (30.0, "moderate"),
    (50.0, "high"),
]


def whipsaw_risk_level(frequency_pct: float) -> str:
    """Bucket a whipsaw frequency (percent of entered trades)."""
    for limit, label in _WHIPSAW_RISK_LEVELS:
        if frequency_pct < limit:
            return label
    return "very_high"


def confidence_score(entered: int, whipsaw_pct: float, full_sample: int = 10) -> float:
    """0–100 score weighting sample size (70%) and whipsaw avoidance (30%)."""
    sample = min(entered / full_sample, 1.0) if full_sample > 0 else 1.0
    return 0.7 * sample * 100.0 + 0.3 * (100.0 - whipsaw_pct)


def calculate_stats(trades: Sequence[TradeResult], heuristics: Heuristics) -> dict:
    """Compute summary statistics from the trades of one backtest.

    Win rate, whipsaw frequency and confidence are computed over
    *entered* trades; ``NoEntry`` occurrences only count towards
    ``total_trades`` and ``no_entries``.

    Returns:
        Dict matching the ``backtest_runs`` table columns plus the
        whipsaw timing breakdown.
    """
    entered = [t for t in trades if t.outcome is not TradeOutcome.NO_ENTRY]
    whipsaws = [t for t in entered if t.outcome is TradeOutcome.WHIPSAW]
    pnls = [t.pips_net for t in entered]

    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p <= 0]
    n_entered = len(entered)

    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    profit_factor: Optional[float] = (
        gross_profit / gross_loss if gross_loss > 0 else None
    )

    win_rate = len(winners) / n_entered if n_entered else 0.0
    whipsaw_pct = len(whipsaws) / n_entered * 100.0 if n_entered else 0.0
    total_pips = sum(pnls)

    early = [
        t for t in whipsaws
        if t.trigger_minute is not None
        and t.trigger_minute < heuristics.whipsaw_early_minutes
    ]

    return {
        "total_trades": len(trades),
        "entered_trades": n_entered,
        "winning_trades": len(winners),
        "losing_trades": len(losers),
        "no_entries": len(trades) - n_entered,
        "whipsaws": len(whipsaws),
        "win_rate": round(win_rate, 4),
        "whipsaw_frequency_pct": round(whipsaw_pct, 2),
        "whipsaw_risk": whipsaw_risk_level(whipsaw_pct),
        "early_whipsaws": len(early),
        "late_whipsaws": len(whipsaws) - len(early),
        "total_pips": round(total_pips, 2),
        "average_pips": round(total_pips / n_entered, 2) if n_entered else 0.0,
        "max_drawdown_pips": round(_max_drawdown(pnls), 2),
        "profit_factor": round(profit_factor, 4) if profit_factor is not None else None,
        "confidence_score": round(
            confidence_score(n_entered, whipsaw_pct, heuristics.confidence_full_sample), 2,
        ),
        "low_sample_warning": n_entered < heuristics.low_sample_threshold,
    }


# ── Helpers ──────────────────────────────────────────────────────────────


def _max_drawdown(pnls: list[float]) -> float:
    """Maximum drawdown from the cumulative pip curve.

    Returns the largest peak-to-trough decline as a positive number.
    """
    cumulative = 0.0
    peak = 0.0
    max_dd = 0.0
    for p in pnls:
        cumulative += p
        if cumulative > peak:
            peak = cumulative
        dd = peak - cumulative
        if dd > max_dd:
            max_dd = dd
    return max_dd

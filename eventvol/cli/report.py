"""CLI report — prints analysis results to the console."""

from eventvol.analysis.impact import ImpactProfile
from eventvol.backtest.models import BacktestResult
from eventvol.risk.straddle_params import StraddleParameters

_RULE = "─" * 50


def _emit(title: str, rows: list[tuple[str, str]]) -> str:
    header = f" {title} ".center(50, "─")
    lines = [header] + [f"  {label:<20} {value}" for label, value in rows] + [_RULE]
    output = "\n".join(lines)
    print(output)
    return output


def print_profile_summary(profile: ImpactProfile) -> str:
    """Format and print an impact profile headline.

    Returns:
        The formatted string (also printed to stdout).
    """
    pip = profile.point_value
    peak = max(profile.atr_after) / pip if profile.atr_after else 0.0
    return _emit(f"{profile.symbol} · {profile.event_type}", [
        ("Occurrences:", f"{profile.occurrences} ({profile.skipped_occurrences} skipped)"),
        ("Volatility change:", f"{profile.volatility_increase_pct:+.1f}%"),
        ("Peak ATR:", f"{peak:.1f} pips"),
        ("Noise before:", f"{profile.noise_before:.2f}"),
        ("Noise at release:", f"{profile.noise_during:.2f}"),
        ("Noise after:", f"{profile.noise_after:.2f}"),
        ("P95 wick:", f"{profile.p95_wick / pip:.1f} pips"),
    ])


def print_parameters(params: StraddleParameters) -> str:
    """Format and print straddle order distances."""
    return _emit(f"Straddle ({params.mode.value})", [
        ("Offset:", f"{params.offset_pips:.0f} pips"),
        ("Stop loss:", f"{params.stop_loss_pips:.0f} pips"),
        ("Trailing stop:", f"{params.trailing_stop_pips:.0f} pips"),
        ("SL recovery:", f"{params.sl_recovery_pips:.0f} pips"),
        ("Timeout:", f"{params.timeout_minutes} min"),
        ("Risk/reward:", f"{params.risk_reward_ratio:.2f}"),
    ])


def print_backtest_summary(result: BacktestResult) -> str:
    """Format and print a backtest run summary."""
    s = result.stats
    pf = s.get("profit_factor")
    rows = [
        ("Occurrences:", str(s["total_trades"])),
        ("Entered:", str(s["entered_trades"])),
        ("Win rate:", f"{s['win_rate'] * 100:.1f}%"),
        ("Whipsaws:", f"{s['whipsaws']} ({s['whipsaw_risk']})"),
        ("Total:", f"{s['total_pips']:+.1f} pips"),
        ("Max drawdown:", f"{s['max_drawdown_pips']:.1f} pips"),
        ("Profit factor:", f"{pf:.2f}" if pf is not None else "N/A"),
        ("Confidence:", f"{s['confidence_score']:.0f}/100"),
    ]
    if s.get("low_sample_warning"):
        rows.append(("Warning:", "low sample size"))
    return _emit(f"Backtest {result.symbol} · {result.event_type}", rows)

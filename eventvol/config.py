"""EventVol — application configuration.

Loads .env variables into a typed config object and merges the tuned
analysis heuristics from an optional JSON settings file.
"""

import json
import os
import pathlib
from dataclasses import dataclass, field, fields

from dotenv import load_dotenv

from eventvol.errors import ValidationError


_REQUIRED_VARS = [
    "DB_PATH",
]


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    db_path: str
    settings_path: str
    event_window_minutes: int
    baseline_days: int
    spread_pips: float
    slippage_pips: float
    worker_threads: int
    busy_timeout_ms: int
    log_level: str
    api_port: int


@dataclass(frozen=True)
class Heuristics:
    """Empirically tuned trading judgment.

    None of these are structural invariants; every field can be overridden
    from the ``heuristics`` section of the settings file.
    """

    # Impact profile
    min_occurrence_candles: int = 120

    # Parameter derivation
    recent_atr_minutes: int = 5
    fallback_atr_pips: float = 10.0
    simultaneous_noise_multiplier: float = 1.2
    spread_safety_pips: float = 3.0
    sl_recovery_p95_multiplier: float = 1.5
    sl_recovery_sl_multiplier: float = 1.2

    # Timeout scan over the post-event ATR timeline
    timeout_peak_ratio: float = 0.6
    timeout_smoothing_window: int = 3
    timeout_late_start_vol_pct: float = 20.0
    timeout_late_start_minute: int = 5
    timeout_early_start_minute: int = 1
    timeout_floor_vol_pct: float = 30.0
    timeout_floor_minutes: int = 15
    timeout_max_minutes: int = 60
    timeout_high_impact_vol_pct: float = 50.0
    timeout_high_impact_minutes: int = 45
    timeout_low_impact_vol_pct: float = 10.0
    timeout_low_impact_minutes: int = 50

    # Decay buckets (pips per minute)
    decay_min_values: int = 12
    decay_horizon_minutes: int = 10
    decay_fast_rate: float = 3.0
    decay_medium_rate: float = 1.5
    decay_fast_timeout: int = 18
    decay_medium_timeout: int = 25
    decay_slow_timeout: int = 32

    # Backtest
    whipsaw_lookahead_minutes: int = 5
    whipsaw_early_minutes: int = 8
    low_sample_threshold: int = 5
    confidence_full_sample: int = 10


@dataclass(frozen=True)
class AnalysisSettings:
    """Stored analysis overrides: heuristics plus per-symbol pip values."""

    heuristics: Heuristics = field(default_factory=Heuristics)
    pip_values: dict[str, float] = field(default_factory=dict)


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    return Config(
        db_path=os.environ["DB_PATH"],
        settings_path=os.environ.get("SETTINGS_PATH", "settings.json"),
        event_window_minutes=int(os.environ.get("EVENT_WINDOW_MINUTES", "30")),
        baseline_days=int(os.environ.get("BASELINE_DAYS", "7")),
        spread_pips=float(os.environ.get("SPREAD_PIPS", "1.0")),
        slippage_pips=float(os.environ.get("SLIPPAGE_PIPS", "0.5")),
        worker_threads=int(os.environ.get("WORKER_THREADS", "4")),
        busy_timeout_ms=int(os.environ.get("BUSY_TIMEOUT_MS", "5000")),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(os.environ.get("API_PORT", "8080")),
    )


def load_settings(path: str | None) -> AnalysisSettings:
    """Read heuristic and pip-value overrides from a JSON settings file.

    A missing file yields the defaults.  Unknown heuristic names raise
    ``ValidationError`` so a typo never silently falls back to a default.
    Pip values must be positive numbers.
    """
    if not path:
        return AnalysisSettings()
    settings_file = pathlib.Path(path)
    if not settings_file.exists():
        return AnalysisSettings()

    data = json.loads(settings_file.read_text(encoding="utf-8"))

    overrides = data.get("heuristics", {})
    known = {f.name for f in fields(Heuristics)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValidationError(f"Unknown heuristic(s): {', '.join(unknown)}")

    defaults = Heuristics()
    coerced = {
        name: type(getattr(defaults, name))(value)
        for name, value in overrides.items()
    }

    pip_values = {}
    for symbol, value in data.get("pip_values", {}).items():
        try:
            pip = float(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid pip value for {symbol}: {value!r}") from exc
        if not pip > 0:
            raise ValidationError(f"Pip value for {symbol} must be positive, got {value!r}")
        pip_values[symbol.upper().replace("_", "").replace("/", "")] = pip
    return AnalysisSettings(heuristics=Heuristics(**coerced), pip_values=pip_values)

"""Analysis service — wires the candle index, repositories and analyzers together.

Each public operation takes the index session exactly once and runs all of
its queries inside it, so a concurrent import can never swap a symbol's
candles out halfway through a computation.  Request handlers call these
operations through :meth:`AnalysisService.run_blocking`, which moves the
CPU-bound work onto a worker pool.
"""

import asyncio
import dataclasses
import functools
import logging
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Optional

from eventvol.analysis.decay import DecayProfile, analyze_decay
from eventvol.analysis.heatmap import Heatmap, compute_heatmap
from eventvol.analysis.impact import POST_MINUTES, PRE_MINUTES, ImpactProfile, build_impact_profile
from eventvol.analysis.volatility import VolatilityMetrics, compute_volatility_metrics
from eventvol.backtest.engine import StraddleBacktestSimulator
from eventvol.backtest.models import BacktestResult, BacktestSettings
from eventvol.config import AnalysisSettings, Config, Heuristics
from eventvol.errors import NotFoundError, ValidationError
from eventvol.index.candle_index import CandleIndex, IndexSession
from eventvol.market.models import Candle, CalendarEvent, get_pip_value, normalize_symbol
from eventvol.repos.candle_repo import CandleRepo
from eventvol.repos.event_repo import EventRepo
from eventvol.risk.straddle_params import (
    StraddleMode,
    StraddleParameters,
    calculate_parameters,
)

logger = logging.getLogger("eventvol.service")

# Order distances a backtest caller may override.
_OVERRIDABLE_PARAMETERS = {
    "offset_pips",
    "stop_loss_pips",
    "trailing_stop_pips",
    "sl_recovery_pips",
    "timeout_minutes",
}

# Candles replayed after the timeout so late exits are still observed.
_BACKTEST_TAIL_MINUTES = 10


class AnalysisService:
    """Entry point for every analysis the API and CLI expose.

    Args:
        config: Application configuration.
        settings: Heuristic and pip-value overrides.
        candle_repo: Source of M1 candles, also the index's fetch callable.
        event_repo: Source of calendar events.
    """

    def __init__(
        self,
        config: Config,
        settings: AnalysisSettings,
        candle_repo: CandleRepo,
        event_repo: EventRepo,
    ) -> None:
        self._config = config
        self._settings = settings
        self._candle_repo = candle_repo
        self._event_repo = event_repo
        self._index = CandleIndex(candle_repo.fetch_candles)
        self._executor = ThreadPoolExecutor(
            max_workers=config.worker_threads, thread_name_prefix="eventvol",
        )

    @property
    def index(self) -> CandleIndex:
        return self._index

    @property
    def heuristics(self) -> Heuristics:
        return self._settings.heuristics

    def pip_value(self, symbol: str) -> float:
        return get_pip_value(symbol, self._settings.pip_values)

    async def run_blocking(self, fn, *args, **kwargs):
        """Run *fn* on the worker pool and await its result."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, functools.partial(fn, *args, **kwargs),
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    # ── Public API ───────────────────────────────────────────────────────

    def volatility_metrics(
        self,
        symbol: str,
        event_time: datetime,
        window_minutes: Optional[int] = None,
        baseline_days: Optional[int] = None,
    ) -> VolatilityMetrics:
        """Event-window vs. baseline volatility around one timestamp.

        Raises:
            NotFoundError: If *symbol* has no candles.
        """
        key = normalize_symbol(symbol)
        with self._index.session() as idx:
            self._require_candles(idx, key)
            return compute_volatility_metrics(
                idx,
                key,
                event_time,
                window_minutes or self._config.event_window_minutes,
                baseline_days or self._config.baseline_days,
                self.pip_value(key),
            )

    def impact_profile(
        self, symbol: str, event_type: str, calendar_id: Optional[int] = None,
    ) -> ImpactProfile:
        """Average pre/post-event profile of *event_type* on *symbol*.

        Raises:
            NotFoundError: If the symbol has no candles or the event type
                has no occurrences.
            InsufficientDataError: If no occurrence has enough candles.
        """
        key = normalize_symbol(symbol)
        events = self._occurrences(event_type, calendar_id)
        with self._index.session() as idx:
            return self._build_profile(idx, key, event_type, events)

    def straddle_parameters(
        self,
        symbol: str,
        event_type: str,
        mode: StraddleMode = StraddleMode.SIMULTANEOUS,
        calendar_id: Optional[int] = None,
    ) -> StraddleParameters:
        profile = self.impact_profile(symbol, event_type, calendar_id)
        return calculate_parameters(profile, self.heuristics, mode)

    def decay_profile(
        self, symbol: str, event_type: str, calendar_id: Optional[int] = None,
    ) -> DecayProfile:
        profile = self.impact_profile(symbol, event_type, calendar_id)
        return analyze_decay(profile.atr_after, profile.point_value, self.heuristics)

    def backtest(
        self,
        symbol: str,
        event_type: str,
        mode: StraddleMode = StraddleMode.SIMULTANEOUS,
        overrides: Optional[dict] = None,
        take_profit_pips: Optional[float] = None,
        calendar_id: Optional[int] = None,
    ) -> BacktestResult:
        """Replay the straddle on every historical occurrence of *event_type*.

        Parameters are derived from the impact profile; *overrides* replaces
        individual order distances (e.g. ``{"offset_pips": 12}``).
        Occurrences with no candles after the release are left out of the
        run rather than counted as trades without an entry.

        Raises:
            ValidationError: If *overrides* is not a mapping, names an unknown
                parameter or holds a non-numeric value, or if
                *take_profit_pips* is not a positive number.
        """
        if overrides is not None and not isinstance(overrides, Mapping):
            raise ValidationError(
                f"Backtest parameters must be an object, got {type(overrides).__name__}"
            )
        overrides = dict(overrides or {})
        unknown = sorted(set(overrides) - _OVERRIDABLE_PARAMETERS)
        if unknown:
            raise ValidationError(f"Unknown backtest parameter(s): {', '.join(unknown)}")
        try:
            overrides = {
                k: int(v) if k == "timeout_minutes" else float(v)
                for k, v in overrides.items()
            }
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid backtest parameter: {exc}") from exc
        if take_profit_pips is not None:
            try:
                take_profit_pips = float(take_profit_pips)
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"Invalid take_profit_pips: {take_profit_pips!r}") from exc
            if not take_profit_pips > 0:
                raise ValidationError(f"take_profit_pips must be positive, got {take_profit_pips}")

        key = normalize_symbol(symbol)
        events = self._occurrences(event_type, calendar_id)
        simulator = StraddleBacktestSimulator(
            BacktestSettings(
                spread_pips=self._config.spread_pips,
                slippage_pips=self._config.slippage_pips,
                take_profit_pips=take_profit_pips,
            ),
            self.heuristics,
        )

        with self._index.session() as idx:
            profile = self._build_profile(idx, key, event_type, events)
            params = calculate_parameters(profile, self.heuristics, mode)
            if overrides:
                params = dataclasses.replace(params, **overrides)
            horizon = timedelta(minutes=params.timeout_minutes + _BACKTEST_TAIL_MINUTES)
            occurrences = []
            for e in events:
                window = idx.window(key, e.time, e.time + horizon)
                if window:
                    occurrences.append((e.time, window))
            skipped = len(events) - len(occurrences)
            if skipped:
                logger.info(
                    "Backtest %s/%s: skipped %d occurrence(s) without candles",
                    key, event_type, skipped,
                )
            return simulator.run(params, occurrences)

    def heatmap(
        self,
        symbols: Sequence[str],
        calendar_id: Optional[int] = None,
        impacts: Sequence[str] = ("HIGH", "MEDIUM"),
    ) -> Heatmap:
        """Mean event volatility for every event type × symbol pair.

        The whole grid is computed inside one index session.

        Raises:
            ValidationError: If *symbols* is empty.
        """
        if not symbols:
            raise ValidationError("heatmap needs at least one symbol")
        keys = [normalize_symbol(s) for s in symbols]
        types = self._event_repo.event_types(calendar_id=calendar_id, impacts=impacts)
        occurrences = {
            t["name"]: [e.time for e in self._event_repo.events_by_type(t["name"], calendar_id)]
            for t in types
        }
        with self._index.session() as idx:
            for key in keys:
                idx.load(key)
            grid = compute_heatmap(
                idx,
                keys,
                occurrences,
                self._config.event_window_minutes,
                self._config.baseline_days,
                self.pip_value,
            )
        logger.info(
            "Heatmap: %d symbols x %d event types", len(keys), len(occurrences),
        )
        return grid

    def event_types(
        self,
        calendar_id: Optional[int] = None,
        impacts: Optional[Sequence[str]] = None,
    ) -> list[dict]:
        return self._event_repo.event_types(calendar_id=calendar_id, impacts=impacts)

    def import_candles(
        self,
        symbol: str,
        candles: Iterable[Candle],
        source_file: Optional[str] = None,
    ) -> dict:
        """Upsert *candles* and reindex the symbol.

        Returns:
            Dict with ``symbol``, ``imported`` rows and ``indexed`` candles.
        """
        key = normalize_symbol(symbol)
        written = self._candle_repo.upsert_candles(key, candles, source_file=source_file)
        with self._index.session() as idx:
            idx.invalidate(key)
            idx.load(key)
            indexed = idx.candle_count(key)
        return {"symbol": key, "imported": written, "indexed": indexed}

    def import_events(self, events: Iterable[CalendarEvent]) -> int:
        return self._event_repo.insert_events(events)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _occurrences(
        self, event_type: str, calendar_id: Optional[int],
    ) -> list[CalendarEvent]:
        events = self._event_repo.events_by_type(event_type, calendar_id)
        if not events:
            raise NotFoundError(f"No occurrences of event type {event_type!r}")
        return events

    @staticmethod
    def _require_candles(idx: IndexSession, symbol: str) -> None:
        idx.load(symbol)
        if idx.candle_count(symbol) == 0:
            raise NotFoundError(f"No candle data for {symbol}")

    def _build_profile(
        self,
        idx: IndexSession,
        symbol: str,
        event_type: str,
        events: Sequence[CalendarEvent],
    ) -> ImpactProfile:
        self._require_candles(idx, symbol)
        occurrences = [
            (
                e,
                idx.window(
                    symbol,
                    e.time - timedelta(minutes=PRE_MINUTES),
                    e.time + timedelta(minutes=POST_MINUTES),
                ) or [],
            )
            for e in events
        ]
        return build_impact_profile(
            symbol,
            event_type,
            occurrences,
            self.pip_value(symbol),
            min_candles=self.heuristics.min_occurrence_candles,
        )

"""Straddle backtest engine — replays each event occurrence through the order rules.

For every occurrence a buy stop and a sell stop are placed ``offset`` pips
either side of the release price and the M1 candles after the release are
walked one by one.  In simultaneous mode a losing first leg is followed by
a recovery leg in the opposite direction, protected by the wider
``sl_recovery`` stop.  No real orders are placed.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Optional

from eventvol.backtest.models import (
    BacktestResult,
    BacktestSettings,
    TradeOutcome,
    TradeResult,
)
from eventvol.backtest.stats import calculate_stats
from eventvol.config import Heuristics
from eventvol.index.candle_index import IndexedCandle
from eventvol.market.models import ensure_utc
from eventvol.risk.straddle_params import StraddleMode, StraddleParameters

logger = logging.getLogger("eventvol.backtest")

_RECOVERABLE = (TradeOutcome.STOP_LOSS, TradeOutcome.WHIPSAW)


def _minutes(later: datetime, earlier: datetime) -> int:
    return int((later - earlier).total_seconds() // 60)


class StraddleBacktestSimulator:
    """Simulates the straddle on historical event occurrences.

    Args:
        settings: Spread, slippage and optional take-profit target.
        heuristics: Whipsaw lookahead and summary thresholds.
    """

    def __init__(self, settings: BacktestSettings, heuristics: Heuristics) -> None:
        self._settings = settings
        self._heuristics = heuristics

    # ── Public API ───────────────────────────────────────────────────────

    def run(
        self,
        params: StraddleParameters,
        occurrences: Sequence[tuple[datetime, Sequence[IndexedCandle]]],
    ) -> BacktestResult:
        """Simulate every ``(event_time, candles)`` occurrence and summarise.

        Returns:
            ``BacktestResult`` with one ``TradeResult`` per occurrence, in
            the order given, and the summary statistics.
        """
        trades = [
            self.simulate_occurrence(event_dt, candles, params)
            for event_dt, candles in occurrences
        ]
        stats = calculate_stats(trades, self._heuristics)
        logger.info(
            "Backtest %s/%s: %d occurrences, %d entered, net %.1f pips",
            params.symbol, params.event_type, stats["total_trades"],
            stats["entered_trades"], stats["total_pips"],
        )
        return BacktestResult(
            symbol=params.symbol,
            event_type=params.event_type,
            parameters=params,
            trades=trades,
            stats=stats,
        )

    def simulate_occurrence(
        self,
        event_dt: datetime,
        candles: Sequence[IndexedCandle],
        params: StraddleParameters,
    ) -> TradeResult:
        """Walk *candles* from the release and return the trade outcome."""
        event_dt = ensure_utc(event_dt)
        bars = [c for c in candles if c.time >= event_dt]
        if not bars:
            return TradeResult(event_time=event_dt, outcome=TradeOutcome.NO_ENTRY)

        pip = params.pip_value
        reference = bars[0].open
        buy_stop = reference + params.offset_pips * pip
        sell_stop = reference - params.offset_pips * pip

        for i, candle in enumerate(bars):
            if _minutes(candle.time, event_dt) > params.timeout_minutes:
                break
            buy_hit = candle.high >= buy_stop
            sell_hit = candle.low <= sell_stop
            if not buy_hit and not sell_hit:
                continue

            direction = "long" if buy_hit else "short"
            entry = buy_stop if buy_hit else sell_stop
            trade = self._open(direction, entry, candle, event_dt, params, buy_stop, sell_stop)

            if buy_hit and sell_hit:
                # Both stops inside one bar: long first, out at the sell stop
                # unless the hard stop is closer.
                self._track_excursion(trade, candle)
                exit_price = max(sell_stop, trade["sl"])
                return self._finish(
                    trade, exit_price, candle, TradeOutcome.WHIPSAW,
                    bars[i + 1:], event_dt, params,
                )

            exit_price, exit_candle, outcome, rest = self._walk(
                trade, bars[i:], event_dt, params,
            )
            return self._finish(
                trade, exit_price, exit_candle, outcome, rest, event_dt, params,
            )

        return TradeResult(event_time=event_dt, outcome=TradeOutcome.NO_ENTRY)

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _open(
        direction: str,
        entry: float,
        candle: IndexedCandle,
        event_dt: datetime,
        params: StraddleParameters,
        buy_stop: Optional[float],
        sell_stop: Optional[float],
        stop_pips: Optional[float] = None,
    ) -> dict:
        if stop_pips is None:
            stop_pips = params.stop_loss_pips
        sl_dist = stop_pips * params.pip_value
        return {
            "direction": direction,
            "entry_price": entry,
            "entry_time": candle.time,
            "event_time": event_dt,
            "sl": entry - sl_dist if direction == "long" else entry + sl_dist,
            "opposite_stop": sell_stop if direction == "long" else buy_stop,
            "trailing": None,
            "high": entry,
            "low": entry,
            "pip": params.pip_value,
        }

    def _walk(
        self,
        trade: dict,
        bars: Sequence[IndexedCandle],
        event_dt: datetime,
        params: StraddleParameters,
    ) -> tuple[float, IndexedCandle, TradeOutcome, Sequence[IndexedCandle]]:
        """Manage an open position bar by bar until it exits.

        Returns ``(exit_price, exit_candle, outcome, remaining_bars)``.
        Running out of bars closes at the last close as a timeout.
        """
        for j, candle in enumerate(bars):
            self._track_excursion(trade, candle)
            result = self._check_exit(trade, candle, _minutes(candle.time, event_dt), params)
            if result is not None:
                exit_price, outcome = result
                return exit_price, candle, outcome, bars[j + 1:]
            self._ratchet_trailing(trade, candle, params)
        last = bars[-1]
        return last.close, last, TradeOutcome.TIMEOUT, []

    def _finish(
        self,
        trade: dict,
        exit_price: float,
        candle: IndexedCandle,
        outcome: TradeOutcome,
        rest: Sequence[IndexedCandle],
        event_dt: datetime,
        params: StraddleParameters,
    ) -> TradeResult:
        """Close the first leg and, when due, run the recovery leg after it."""
        result = self._close(trade, exit_price, candle, outcome)
        if (
            params.mode is not StraddleMode.SIMULTANEOUS
            or outcome not in _RECOVERABLE
            or result.pips_gross >= 0
            or params.sl_recovery_pips <= 0
            or not rest
        ):
            return result

        reverse = "short" if trade["direction"] == "long" else "long"
        recovery = self._open(
            reverse, exit_price, candle, event_dt, params, None, None,
            stop_pips=params.sl_recovery_pips,
        )
        r_price, r_candle, _, _ = self._walk(recovery, rest, event_dt, params)
        recovery_pips = self._gross_pips(recovery, r_price)
        gross = result.pips_gross + recovery_pips
        logger.debug(
            "Recovery %s leg at %.5f closed %+.1f pips", reverse, exit_price, recovery_pips,
        )
        return TradeResult(
            event_time=result.event_time,
            outcome=outcome,
            direction=result.direction,
            entry_time=result.entry_time,
            entry_price=result.entry_price,
            exit_time=r_candle.time,
            exit_price=r_price,
            pips_gross=gross,
            pips_net=gross - 2 * self._settings.cost_pips,
            mfe_pips=result.mfe_pips,
            mae_pips=result.mae_pips,
            duration_minutes=_minutes(r_candle.time, trade["entry_time"]),
            trigger_minute=result.trigger_minute,
            recovery_pips=recovery_pips,
        )

    @staticmethod
    def _track_excursion(trade: dict, candle: IndexedCandle) -> None:
        trade["high"] = max(trade["high"], candle.high)
        trade["low"] = min(trade["low"], candle.low)

    def _check_exit(
        self,
        trade: dict,
        candle: IndexedCandle,
        elapsed: int,
        params: StraddleParameters,
    ) -> Optional[tuple[float, TradeOutcome]]:
        """Check if *candle* closes the position.

        Returns ``(exit_price, outcome)`` or ``None``.  Rules are tried in
        priority order: early reversal through the opposite stop, hard
        stop, trailing stop, take-profit target, timeout.
        """
        is_long = trade["direction"] == "long"
        pip = trade["pip"]
        since_entry = _minutes(candle.time, trade["entry_time"])

        opposite = trade["opposite_stop"]
        if opposite is not None and since_entry <= self._heuristics.whipsaw_lookahead_minutes:
            if (is_long and candle.low <= opposite) or (not is_long and candle.high >= opposite):
                exit_price = max(opposite, trade["sl"]) if is_long else min(opposite, trade["sl"])
                return exit_price, TradeOutcome.WHIPSAW

        sl = trade["sl"]
        if (is_long and candle.low <= sl) or (not is_long and candle.high >= sl):
            return sl, TradeOutcome.STOP_LOSS

        trail = trade["trailing"]
        if trail is not None:
            if (is_long and candle.low <= trail) or (not is_long and candle.high >= trail):
                net = self._gross_pips(trade, trail) - self._settings.cost_pips
                outcome = TradeOutcome.TAKE_PROFIT if net > 0 else TradeOutcome.STOP_LOSS
                return trail, outcome

        tp_pips = self._settings.take_profit_pips
        if tp_pips is not None:
            entry = trade["entry_price"]
            tp = entry + tp_pips * pip if is_long else entry - tp_pips * pip
            if (is_long and candle.high >= tp) or (not is_long and candle.low <= tp):
                return tp, TradeOutcome.TAKE_PROFIT

        if elapsed > params.timeout_minutes:
            return candle.open, TradeOutcome.TIMEOUT
        return None

    @staticmethod
    def _ratchet_trailing(
        trade: dict, candle: IndexedCandle, params: StraddleParameters,
    ) -> None:
        """Move the trailing stop behind the close; it never moves backwards."""
        dist = params.trailing_stop_pips * params.pip_value
        if dist <= 0:
            return
        current = trade["trailing"]
        if trade["direction"] == "long":
            level = candle.close - dist
            if current is None or level > current:
                trade["trailing"] = level
        else:
            level = candle.close + dist
            if current is None or level < current:
                trade["trailing"] = level

    @staticmethod
    def _gross_pips(trade: dict, exit_price: float) -> float:
        if trade["direction"] == "long":
            return (exit_price - trade["entry_price"]) / trade["pip"]
        return (trade["entry_price"] - exit_price) / trade["pip"]

    def _close(
        self,
        trade: dict,
        exit_price: float,
        candle: IndexedCandle,
        outcome: TradeOutcome,
    ) -> TradeResult:
        pip = trade["pip"]
        entry = trade["entry_price"]
        gross = self._gross_pips(trade, exit_price)
        if trade["direction"] == "long":
            mfe = (trade["high"] - entry) / pip
            mae = (entry - trade["low"]) / pip
        else:
            mfe = (entry - trade["low"]) / pip
            mae = (trade["high"] - entry) / pip
        return TradeResult(
            event_time=trade["event_time"],
            outcome=outcome,
            direction=trade["direction"],
            entry_time=trade["entry_time"],
            entry_price=entry,
            exit_time=candle.time,
            exit_price=exit_price,
            pips_gross=gross,
            pips_net=gross - self._settings.cost_pips,
            mfe_pips=max(mfe, 0.0),
            mae_pips=max(mae, 0.0),
            duration_minutes=_minutes(candle.time, trade["entry_time"]),
            trigger_minute=_minutes(trade["entry_time"], trade["event_time"]),
        )

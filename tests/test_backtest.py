"""Tests for eventvol.backtest — straddle simulation and summary statistics."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from eventvol.backtest.engine import StraddleBacktestSimulator
from eventvol.backtest.models import BacktestSettings, TradeOutcome, TradeResult
from eventvol.backtest.stats import calculate_stats, confidence_score, whipsaw_risk_level
from eventvol.config import Heuristics
from eventvol.index.candle_index import IndexedCandle
from eventvol.risk.straddle_params import StraddleMode, StraddleParameters

H = Heuristics()
PIP = 0.0001
EVENT = datetime(2024, 1, 5, 13, 30, tzinfo=timezone.utc)


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_params(**overrides) -> StraddleParameters:
    """Directional, offset 10, SL 20, trailing 10, timeout 15 on EURUSD."""
    base = dict(
        symbol="EURUSD",
        event_type="Non-Farm Employment Change",
        mode=StraddleMode.DIRECTIONAL,
        pip_value=PIP,
        offset_pips=10.0,
        stop_loss_pips=20.0,
        trailing_stop_pips=10.0,
        sl_recovery_pips=0.0,
        timeout_minutes=15,
        best_moment_minute=0,
        risk_reward_ratio=0.5,
        spread_safety_pips=3.0,
        recent_atr_pips=4.0,
        noise_ratio=2.0,
    )
    base.update(overrides)
    return StraddleParameters(**base)


def _bar(minute, o, h, l, c):
    return IndexedCandle(time=EVENT + timedelta(minutes=minute), high=h, low=l, close=c, open=o)


def _flat(minute, price=1.1000):
    return _bar(minute, price, price + 0.0005, price - 0.0005, price)


def _long_entry_bar(minute=1):
    """Crosses the 1.1010 buy stop, stays well above the sell stop."""
    return _bar(minute, 1.1000, 1.1012, 1.1000, 1.1008)


def _short_entry_bar(minute=1):
    return _bar(minute, 1.1000, 1.1000, 1.0988, 1.0992)


def _simulate(bars, settings=None, **param_overrides):
    sim = StraddleBacktestSimulator(settings or BacktestSettings(), H)
    return sim.simulate_occurrence(EVENT, bars, _make_params(**param_overrides))


def _make_trade(outcome, pips_net, trigger=None):
    entered = outcome is not TradeOutcome.NO_ENTRY
    return TradeResult(
        event_time=EVENT,
        outcome=outcome,
        direction="long" if entered else None,
        pips_net=pips_net,
        trigger_minute=trigger,
    )


# ── Simulation ───────────────────────────────────────────────────────────


class TestNoEntry:
    def test_no_candles(self):
        t = _simulate([])
        assert t.outcome is TradeOutcome.NO_ENTRY
        assert not t.entered

    def test_candles_before_release_ignored(self):
        t = _simulate([_bar(-1, 1.1000, 1.1050, 1.0950, 1.1000)])
        assert t.outcome is TradeOutcome.NO_ENTRY

    def test_quiet_market(self):
        t = _simulate([_flat(m) for m in range(20)])
        assert t.outcome is TradeOutcome.NO_ENTRY
        assert t.pips_net == 0.0

    def test_pending_orders_expire_at_timeout(self):
        bars = [_flat(m) for m in range(16)] + [_bar(16, 1.1000, 1.1020, 1.1000, 1.1018)]
        t = _simulate(bars)
        assert t.outcome is TradeOutcome.NO_ENTRY


class TestWhipsaw:
    def test_both_stops_in_one_bar(self):
        t = _simulate([_bar(0, 1.1000, 1.1015, 1.0985, 1.1000)])
        assert t.outcome is TradeOutcome.WHIPSAW
        assert t.direction == "long"
        assert t.entry_price == pytest.approx(1.1010)
        assert t.exit_price == pytest.approx(1.0990)
        assert t.pips_gross == pytest.approx(-20.0)
        assert t.pips_net == pytest.approx(-22.0)
        assert t.mfe_pips == pytest.approx(5.0)
        assert t.mae_pips == pytest.approx(25.0)
        assert t.trigger_minute == 0

    def test_both_stops_in_one_bar_respects_tighter_stop_loss(self):
        t = _simulate([_bar(0, 1.1000, 1.1015, 1.0985, 1.1000)], stop_loss_pips=15.0)
        assert t.outcome is TradeOutcome.WHIPSAW
        assert t.exit_price == pytest.approx(1.0995)
        assert t.pips_gross == pytest.approx(-15.0)
        assert t.pips_net == pytest.approx(-17.0)

    def test_reversal_through_opposite_stop(self):
        bars = [_flat(0), _long_entry_bar(), _bar(2, 1.1005, 1.1006, 1.0985, 1.0988)]
        t = _simulate(bars)
        assert t.outcome is TradeOutcome.WHIPSAW
        assert t.direction == "long"
        assert t.exit_price == pytest.approx(1.0990)
        assert t.pips_net == pytest.approx(-22.0)
        assert t.trigger_minute == 1
        assert t.duration_minutes == 1

    def test_short_reversal_mirrors_long(self):
        bars = [_flat(0), _short_entry_bar(), _bar(2, 1.0995, 1.1015, 1.0994, 1.1012)]
        t = _simulate(bars)
        assert t.outcome is TradeOutcome.WHIPSAW
        assert t.direction == "short"
        assert t.entry_price == pytest.approx(1.0990)
        assert t.exit_price == pytest.approx(1.1010)
        assert t.pips_gross == pytest.approx(-20.0)


class TestExits:
    def test_stop_loss_after_lookahead(self):
        bars = [_flat(0), _long_entry_bar()]
        bars += [_bar(m, 1.1005, 1.1008, 1.1000, 1.1005) for m in range(2, 7)]
        bars.append(_bar(7, 1.1000, 1.1001, 1.0985, 1.0986))
        t = _simulate(bars, trailing_stop_pips=0.0)
        assert t.outcome is TradeOutcome.STOP_LOSS
        assert t.exit_time == EVENT + timedelta(minutes=7)
        assert t.exit_price == pytest.approx(1.0990)
        assert t.pips_gross == pytest.approx(-20.0)

    def test_trailing_stop_locks_in_profit(self):
        bars = [
            _flat(0),
            _long_entry_bar(),
            _bar(2, 1.1020, 1.1030, 1.1020, 1.1030),
            _bar(3, 1.1030, 1.1035, 1.1015, 1.1020),
        ]
        t = _simulate(bars)
        assert t.outcome is TradeOutcome.TAKE_PROFIT
        assert t.exit_price == pytest.approx(1.1020)
        assert t.pips_gross == pytest.approx(10.0)
        assert t.pips_net == pytest.approx(8.0)
        assert t.mfe_pips == pytest.approx(25.0)
        assert t.mae_pips == pytest.approx(10.0)

    def test_trailing_stop_below_costs_is_a_loss(self):
        bars = [
            _flat(0),
            _long_entry_bar(),
            _bar(2, 1.1012, 1.1022, 1.1012, 1.1021),
            _bar(3, 1.1015, 1.1015, 1.1009, 1.1010),
        ]
        t = _simulate(bars)
        assert t.outcome is TradeOutcome.STOP_LOSS
        assert t.pips_gross == pytest.approx(1.0)
        assert t.pips_net == pytest.approx(-1.0)

    def test_timeout_exits_at_open(self):
        bars = [_flat(0), _long_entry_bar()]
        bars += [_bar(m, 1.1010, 1.1015, 1.1005, 1.1010) for m in range(2, 16)]
        bars.append(_bar(16, 1.1012, 1.1014, 1.1008, 1.1012))
        t = _simulate(bars, trailing_stop_pips=0.0)
        assert t.outcome is TradeOutcome.TIMEOUT
        assert t.exit_price == pytest.approx(1.1012)
        assert t.pips_gross == pytest.approx(2.0)
        assert t.pips_net == pytest.approx(0.0)
        assert t.duration_minutes == 15

    def test_out_of_data_exits_at_last_close(self):
        bars = [_flat(0), _long_entry_bar()]
        bars += [_bar(m, 1.1010, 1.1015, 1.1005, 1.1010) for m in range(2, 10)]
        bars.append(_bar(10, 1.1010, 1.1015, 1.1005, 1.1013))
        t = _simulate(bars, trailing_stop_pips=0.0)
        assert t.outcome is TradeOutcome.TIMEOUT
        assert t.exit_price == pytest.approx(1.1013)
        assert t.pips_gross == pytest.approx(3.0)

    def test_take_profit_target(self):
        bars = [_flat(0), _long_entry_bar(), _bar(2, 1.1012, 1.1030, 1.1010, 1.1028)]
        settings = BacktestSettings(take_profit_pips=15.0)
        t = _simulate(bars, settings=settings, trailing_stop_pips=0.0)
        assert t.outcome is TradeOutcome.TAKE_PROFIT
        assert t.exit_price == pytest.approx(1.1025)
        assert t.pips_net == pytest.approx(13.0)

    def test_costs_follow_settings(self):
        bars = [_bar(0, 1.1000, 1.1015, 1.0985, 1.1000)]
        settings = BacktestSettings(spread_pips=0.0, slippage_pips=0.0)
        t = _simulate(bars, settings=settings)
        assert t.pips_net == pytest.approx(t.pips_gross)


class TestRecoveryLeg:
    """Simultaneous mode reverses at the stop after a losing first leg."""

    @staticmethod
    def _stopped_long_then_falls():
        bars = [_flat(0), _long_entry_bar()]
        bars += [_bar(m, 1.1005, 1.1008, 1.1000, 1.1005) for m in range(2, 7)]
        bars.append(_bar(7, 1.1000, 1.1001, 1.0985, 1.0986))
        bars.append(_bar(8, 1.0986, 1.0997, 1.0975, 1.0976))
        bars.append(_bar(9, 1.0976, 1.0980, 1.0970, 1.0972))
        bars.append(_bar(10, 1.0972, 1.0975, 1.0968, 1.0970))
        return bars

    def _run(self, mode=StraddleMode.SIMULTANEOUS, recovery=30.0):
        return _simulate(
            self._stopped_long_then_falls(),
            mode=mode, sl_recovery_pips=recovery, trailing_stop_pips=0.0,
        )

    def test_recovery_leg_wins_back_the_loss(self):
        t = self._run()
        assert t.outcome is TradeOutcome.STOP_LOSS
        assert t.direction == "long"
        assert t.recovery_pips == pytest.approx(20.0)
        assert t.pips_gross == pytest.approx(0.0)
        assert t.pips_net == pytest.approx(-4.0)
        assert t.exit_time == EVENT + timedelta(minutes=10)
        assert t.exit_price == pytest.approx(1.0970)
        assert t.duration_minutes == 9

    def test_recovery_leg_stopped_out_adds_to_loss(self):
        t = self._run(recovery=5.0)
        assert t.recovery_pips == pytest.approx(-5.0)
        assert t.exit_time == EVENT + timedelta(minutes=8)
        assert t.exit_price == pytest.approx(1.0995)
        assert t.pips_gross == pytest.approx(-25.0)
        assert t.pips_net == pytest.approx(-29.0)

    def test_directional_mode_has_no_recovery(self):
        t = self._run(mode=StraddleMode.DIRECTIONAL)
        assert t.recovery_pips is None
        assert t.exit_time == EVENT + timedelta(minutes=7)
        assert t.pips_net == pytest.approx(-22.0)

    def test_zero_recovery_distance_disables_leg(self):
        t = self._run(recovery=0.0)
        assert t.recovery_pips is None
        assert t.pips_net == pytest.approx(-22.0)

    def test_profitable_exit_opens_no_recovery(self):
        bars = [
            _flat(0),
            _long_entry_bar(),
            _bar(2, 1.1020, 1.1030, 1.1020, 1.1030),
            _bar(3, 1.1030, 1.1035, 1.1015, 1.1020),
            _bar(4, 1.1020, 1.1022, 1.0990, 1.0995),
        ]
        t = _simulate(bars, mode=StraddleMode.SIMULTANEOUS, sl_recovery_pips=30.0)
        assert t.outcome is TradeOutcome.TAKE_PROFIT
        assert t.recovery_pips is None
        assert t.pips_net == pytest.approx(8.0)

    def test_recovery_pips_serialised(self):
        assert self._run().to_dict()["recovery_pips"] == pytest.approx(20.0)
        assert self._run(mode=StraddleMode.DIRECTIONAL).to_dict()["recovery_pips"] is None


class TestRun:
    def test_run_keeps_order_and_summarises(self):
        sim = StraddleBacktestSimulator(BacktestSettings(), H)
        day2 = EVENT + timedelta(days=28)
        whipsaw_bar = _bar(0, 1.1000, 1.1015, 1.0985, 1.1000)
        result = sim.run(_make_params(), [
            (EVENT, [whipsaw_bar]),
            (day2, []),
        ])
        assert [t.outcome for t in result.trades] == [TradeOutcome.WHIPSAW, TradeOutcome.NO_ENTRY]
        assert result.trades[1].event_time == day2
        assert result.stats["total_trades"] == 2
        assert result.stats["entered_trades"] == 1
        d = result.to_dict()
        assert d["parameters"]["offset_pips"] == 10.0
        assert d["trades"][0]["outcome"] == "Whipsaw"


# ── Statistics ───────────────────────────────────────────────────────────


class TestStats:
    def test_mixed_outcomes(self):
        trades = [
            _make_trade(TradeOutcome.TAKE_PROFIT, 10.0, trigger=1),
            _make_trade(TradeOutcome.STOP_LOSS, -5.0, trigger=2),
            _make_trade(TradeOutcome.WHIPSAW, -4.0, trigger=3),
            _make_trade(TradeOutcome.WHIPSAW, -6.0, trigger=10),
            _make_trade(TradeOutcome.NO_ENTRY, 0.0),
        ]
        s = calculate_stats(trades, H)
        assert s["total_trades"] == 5
        assert s["entered_trades"] == 4
        assert s["no_entries"] == 1
        assert s["winning_trades"] == 1
        assert s["losing_trades"] == 3
        assert s["win_rate"] == pytest.approx(0.25)
        assert s["whipsaws"] == 2
        assert s["whipsaw_frequency_pct"] == pytest.approx(50.0)
        assert s["whipsaw_risk"] == "very_high"
        assert s["early_whipsaws"] == 1
        assert s["late_whipsaws"] == 1
        assert s["total_pips"] == pytest.approx(-5.0)
        assert s["average_pips"] == pytest.approx(-1.25)
        assert s["max_drawdown_pips"] == pytest.approx(15.0)
        assert s["profit_factor"] == pytest.approx(0.6667)
        assert s["confidence_score"] == pytest.approx(43.0)
        assert s["low_sample_warning"] is True

    def test_empty(self):
        s = calculate_stats([], H)
        assert s["total_trades"] == 0
        assert s["win_rate"] == 0.0
        assert s["profit_factor"] is None
        assert s["confidence_score"] == pytest.approx(30.0)
        assert s["whipsaw_risk"] == "very_low"

    def test_no_losses_leaves_profit_factor_open(self):
        s = calculate_stats([_make_trade(TradeOutcome.TAKE_PROFIT, 8.0)], H)
        assert s["profit_factor"] is None
        assert s["max_drawdown_pips"] == 0.0

    def test_full_sample_confidence(self):
        h = replace(H, confidence_full_sample=2)
        trades = [_make_trade(TradeOutcome.TAKE_PROFIT, 8.0)] * 3
        assert calculate_stats(trades, h)["confidence_score"] == pytest.approx(100.0)

    @pytest.mark.parametrize("pct, level", [
        (0.0, "very_low"),
        (4.99, "very_low"),
        (5.0, "low"),
        (15.0, "moderate"),
        (30.0, "high"),
        (49.9, "high"),
        (50.0, "very_high"),
    ])
    def test_whipsaw_risk_levels(self, pct, level):
        assert whipsaw_risk_level(pct) == level

    def test_confidence_score_caps_sample_weight(self):
        assert confidence_score(20, 0.0, 10) == pytest.approx(100.0)

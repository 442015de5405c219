"""Tests for eventvol.risk.straddle_params — straddle order sizing."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from eventvol.analysis.impact import ImpactProfile, build_impact_profile
from eventvol.config import Heuristics
from eventvol.errors import ValidationError
from eventvol.index.candle_index import IndexedCandle
from eventvol.market.models import CalendarEvent
from eventvol.risk.straddle_params import (
    StraddleMode,
    calculate_best_moment,
    calculate_directional,
    calculate_parameters,
    calculate_simultaneous,
    calculate_sizing,
    calculate_timeout,
)

H = Heuristics()
PIP = 0.0001


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_profile(**overrides) -> ImpactProfile:
    """Profile with a 4-pip pre-event ATR and a 50% body during the release."""
    base = dict(
        symbol="EURUSD",
        event_type="Non-Farm Employment Change",
        occurrences=3,
        point_value=PIP,
        atr_before=[4 * PIP] * 30,
        atr_after=[8 * PIP] * 90,
        body_before=[50.0] * 30,
        body_after=[50.0] * 90,
        noise_before=2.0,
        noise_during=2.0,
        noise_after=2.0,
        volatility_increase_pct=25.0,
        p95_wick=0.0,
        p95_range=0.0,
        avg_deviation=0.0,
        surprise_event_count=0,
    )
    base.update(overrides)
    return ImpactProfile(**base)


# ── Tests ────────────────────────────────────────────────────────────────


class TestTimeout:
    def test_never_settles_high_impact(self):
        assert calculate_timeout([8.0] * 90, 60.0, H) == 45

    def test_never_settles_low_impact(self):
        assert calculate_timeout([8.0] * 90, 5.0, H) == 50

    def test_never_settles_moderate_impact(self):
        assert calculate_timeout([8.0] * 90, 25.0, H) == 60

    def test_strong_event_gets_floor(self):
        atr = [10.0] * 6 + [2.0] * 84
        assert calculate_timeout(atr, 40.0, H) == 15

    def test_moderate_event_settles_early(self):
        atr = [10.0] * 6 + [2.0] * 84
        assert calculate_timeout(atr, 25.0, H) == 5

    def test_early_start_for_weak_events(self):
        atr = [10.0, 10.0] + [2.0] * 88
        assert calculate_timeout(atr, 10.0, H) == 1

    def test_flat_zero_series(self):
        assert calculate_timeout([0.0] * 90, 40.0, H) == 60

    def test_empty_series(self):
        assert calculate_timeout([], 40.0, H) == 60

    def test_smoothing_window_runs_off_the_end(self):
        atr = [10.0] * 10 + [2.0, 2.0]
        assert calculate_timeout(atr, 0.0, H) == 9

    def test_heuristics_override(self):
        h = replace(H, timeout_max_minutes=30, timeout_high_impact_minutes=20)
        assert calculate_timeout([8.0] * 90, 60.0, h) == 20


class TestBestMoment:
    def test_peak_in_last_five_minutes(self):
        atr = [1.0] * 30
        atr[27] = 5.0
        assert calculate_best_moment(atr) == 2

    def test_earlier_peaks_ignored(self):
        atr = [1.0] * 30
        atr[3] = 50.0
        atr[29] = 2.0
        assert calculate_best_moment(atr) == 0

    def test_tie_prefers_earliest(self):
        atr = [1.0] * 30
        atr[26] = 5.0
        atr[28] = 5.0
        assert calculate_best_moment(atr) == 3

    def test_empty(self):
        assert calculate_best_moment([]) == 0


class TestSizing:
    def test_clean_candles(self):
        s = calculate_sizing(4.0, 2.0, 3.0, 30)
        assert s.offset_pips == 11.0
        assert s.stop_loss_pips == 10.0
        assert s.trailing_stop_pips == 5.0
        assert s.risk_reward_ratio == pytest.approx(0.4)
        assert s.timeout_minutes == 30

    def test_noisy_candles(self):
        s = calculate_sizing(4.0, 3.0, 3.0, 30)
        assert s.offset_pips == 15.0
        assert s.stop_loss_pips == 16.0
        assert s.trailing_stop_pips == 6.0

    def test_very_noisy_candles(self):
        s = calculate_sizing(4.0, 4.0, 3.0, 30)
        assert s.stop_loss_pips == 20.0
        assert s.trailing_stop_pips == 8.0

    def test_offset_clears_p95_wick(self):
        s = calculate_sizing(4.0, 2.0, 3.0, 30, p95_wick_pips=14.2)
        assert s.offset_pips == 18.0

    def test_float_noise_does_not_round_up(self):
        # 10 × 1.2 is 12.000000000000002 in binary floating point
        s = calculate_sizing(10.0, 1.6, 0.0, 30)
        assert s.trailing_stop_pips == 12.0

    def test_zero_atr(self):
        s = calculate_sizing(0.0, 2.0, 3.0, 30)
        assert s.stop_loss_pips == 0.0
        assert s.risk_reward_ratio == 0.0


class TestParameters:
    def test_simultaneous_inflates_noise(self):
        p = calculate_simultaneous(_make_profile(p95_range=20 * PIP), H)
        assert p.mode is StraddleMode.SIMULTANEOUS
        assert p.noise_ratio == pytest.approx(2.4)
        assert p.offset_pips == 11.0
        assert p.stop_loss_pips == 12.0
        assert p.trailing_stop_pips == 6.0
        assert p.sl_recovery_pips == 15.0
        assert p.timeout_minutes == 60

    def test_recovery_capped_by_p95_range(self):
        p = calculate_simultaneous(_make_profile(p95_range=8 * PIP), H)
        assert p.sl_recovery_pips == 12.0

    def test_recovery_without_p95_range(self):
        p = calculate_simultaneous(_make_profile(), H)
        assert p.sl_recovery_pips == 15.0

    def test_directional(self):
        p = calculate_directional(_make_profile(), H)
        assert p.mode is StraddleMode.DIRECTIONAL
        assert p.offset_pips == 11.0
        assert p.stop_loss_pips == 10.0
        assert p.trailing_stop_pips == 5.0
        assert p.sl_recovery_pips == 0.0
        assert p.recent_atr_pips == pytest.approx(4.0)

    def test_dispatch_by_mode(self):
        profile = _make_profile()
        assert calculate_parameters(profile, H, StraddleMode.DIRECTIONAL).mode is StraddleMode.DIRECTIONAL
        assert calculate_parameters(profile, H, StraddleMode.SIMULTANEOUS).mode is StraddleMode.SIMULTANEOUS

    def test_price_distances_and_points(self):
        p = calculate_directional(_make_profile(), H)
        distances = p.to_price_distances()
        assert distances["offset"] == pytest.approx(11 * PIP)
        assert distances["sl_recovery"] == 0.0
        points = p.to_points(0.00001)
        assert points["offset"] == 110
        assert points["stop_loss"] == 100

    def test_points_reject_bad_point_size(self):
        p = calculate_directional(_make_profile(), H)
        with pytest.raises(ValidationError):
            p.to_points(0.0)

    def test_to_dict(self):
        d = calculate_simultaneous(_make_profile(), H).to_dict()
        assert d["mode"] == "simultaneous"
        assert d["symbol"] == "EURUSD"


class TestStraddleMode:
    @pytest.mark.parametrize("raw, expected", [
        ("directional", StraddleMode.DIRECTIONAL),
        (" Simultaneous ", StraddleMode.SIMULTANEOUS),
    ])
    def test_parse(self, raw, expected):
        assert StraddleMode.parse(raw) is expected

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValidationError):
            StraddleMode.parse("strangle")


class TestFromMeasuredProfile:
    """Parameters derived from a profile built out of raw candles."""

    @staticmethod
    def _occurrence(event_dt):
        candles = []
        for m in range(-30, 91):
            if m < 0:
                rng = 2 * PIP
            elif m < 3:
                rng = 6 * PIP
            elif m == 3:
                rng = 8 * PIP
            else:
                rng = 3 * PIP
            low = 1.1000
            candles.append(IndexedCandle(
                time=event_dt + timedelta(minutes=m),
                high=low + rng, low=low, close=low + rng / 2, open=low,
            ))
        return candles

    def _profile(self):
        times = [
            datetime(2024, 1, 5, 13, 30, tzinfo=timezone.utc),
            datetime(2024, 2, 2, 13, 30, tzinfo=timezone.utc),
            datetime(2024, 3, 8, 13, 30, tzinfo=timezone.utc),
        ]
        occurrences = [
            (CalendarEvent("USD", t, "HIGH", "Non-Farm Employment Change"), self._occurrence(t))
            for t in times
        ]
        return build_impact_profile("EURUSD", "Non-Farm Employment Change", occurrences, PIP)

    def test_strong_event_settling_early_gets_floor(self):
        profile = self._profile()
        assert profile.volatility_increase_pct == pytest.approx(57.78, abs=0.01)
        assert calculate_simultaneous(profile, H).timeout_minutes == 15
        assert calculate_directional(profile, H).timeout_minutes == 15

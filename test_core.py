"""
Unit tests for core OEE math and quality submissions.

Run: python -m pytest test_core.py -v
"""

import dataclasses
from datetime import datetime

import pandas as pd
import pytest

from errors import ComputationError, ReferentialError, StoreError, ValidationError
from oee import (
    calculate_and_save_oee,
    compute_oee,
    format_percentage,
    latest_oee,
    oee_history,
    rejections_from_frame,
    stop_times_from_frame,
    submit_quality_data,
)
from production import record_counter_report
from shared import OEE, PART_DETAILS, PART_NUMBERS, REJECTIONS, SHIFT_1, SHIFT_2, STOP_TIMES, OEEConfig
from shift_clock import FixedClock

BIG = PART_NUMBERS["BIG_CYLINDER"]
SMALL = PART_NUMBERS["SMALL_CYLINDER"]
DAY = "2026-10-19"


def _seed_production(store, big=300, small=200, shift=SHIFT_1, day=DAY):
    for pn, count in ((BIG, big), (SMALL, small)):
        store.insert(PART_DETAILS, {"part_number": pn, "shift": shift, "date": day,
                                    "count": count, "target": 900})


# =====================================================================
# compute_oee — pure math
# =====================================================================

class TestComputeOEE:
    def test_worked_example(self):
        r = compute_oee(500, 30, 10, rejections_recorded=True)
        assert r.run_time == 600
        assert r.availability == pytest.approx(600 / 630)
        assert r.performance == pytest.approx(0.5)
        assert r.quality == pytest.approx(0.98)
        assert r.good_count == 490
        assert r.oee == pytest.approx(0.4667, abs=1e-4)

    def test_oee_is_product_of_factors(self):
        r = compute_oee(420, 45, 12, rejections_recorded=True)
        assert r.oee == pytest.approx(r.availability * r.performance * r.quality)

    def test_no_rejections_means_perfect_quality(self):
        r = compute_oee(500, 30)
        assert r.quality == 1.0
        assert r.good_count == 500

    def test_performance_not_capped(self):
        # 1200 units in 630 min at 36 s ideal
        r = compute_oee(1200, 0)
        assert r.availability == 1.0
        assert r.performance == pytest.approx(43200 / 37800)
        assert r.performance > 1.0

    def test_zero_production_raises(self):
        with pytest.raises(ComputationError) as exc:
            compute_oee(0, 30)
        assert exc.value.kind == "computation"
        assert str(exc.value).startswith("OEE Calculation Error: ")

    @pytest.mark.parametrize("stopped", [630, 700])
    def test_non_positive_runtime_raises(self, stopped):
        with pytest.raises(ComputationError):
            compute_oee(500, stopped)

    def test_nan_raises(self):
        with pytest.raises(ComputationError):
            compute_oee(float("nan"), 0)

    def test_custom_config(self):
        cfg = OEEConfig(ideal_cycle_time=30, planned_production_time=600)
        r = compute_oee(600, 100, config=cfg)
        assert r.run_time == 500
        assert r.availability == pytest.approx(500 / 600)
        assert r.performance == pytest.approx(30 * 600 / (500 * 60))

    def test_config_is_frozen(self):
        cfg = OEEConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.ideal_cycle_time = 10


# =====================================================================
# calculate_and_save_oee — from stored facts
# =====================================================================

class TestCalculateAndSave:
    def test_sums_across_parts(self, store):
        _seed_production(store)
        store.insert(STOP_TIMES, {"shift": SHIFT_1, "date": DAY, "duration": 20, "reason": "tooling"})
        store.insert(STOP_TIMES, {"shift": SHIFT_1, "date": DAY, "duration": 10, "reason": "material"})
        store.insert(REJECTIONS, {"shift": SHIFT_1, "date": DAY, "part_number": BIG, "count": 4, "reason": "dent"})
        store.insert(REJECTIONS, {"shift": SHIFT_1, "date": DAY, "part_number": SMALL, "count": 6, "reason": "leak"})

        rec = calculate_and_save_oee(store, SHIFT_1, DAY)
        assert rec["total_count"] == 500
        assert rec["good_count"] == 490
        assert rec["oee"] == pytest.approx(0.4667, abs=1e-4)

    def test_recompute_keeps_one_record(self, store):
        _seed_production(store)
        calculate_and_save_oee(store, SHIFT_1, DAY)
        calculate_and_save_oee(store, SHIFT_1, DAY)
        assert len(store.find(OEE, {"shift": SHIFT_1, "date": DAY})) == 1

    def test_no_production_stores_nothing(self, store):
        with pytest.raises(ComputationError):
            calculate_and_save_oee(store, SHIFT_1, DAY)
        assert store.find(OEE) == []


# =====================================================================
# submit_quality_data
# =====================================================================

class TestSubmitQualityData:
    def _payload(self, **kw):
        payload = {
            "shift": SHIFT_1,
            "date": DAY,
            "stopTimes": [{"duration": 20, "reason": "tooling"}, {"duration": 10, "reason": "material"}],
            "rejections": [
                {"partNumber": BIG, "count": 4, "reason": "dent"},
                {"partNumber": SMALL, "count": 6, "reason": "leak"},
            ],
        }
        payload.update(kw)
        return payload

    def test_worked_example_end_to_end(self, store):
        _seed_production(store)
        result = submit_quality_data(store, self._payload())
        assert result["stoppages_processed"] == 2
        assert result["rejections_processed"] == 2
        assert result["oee"]["oee"] == pytest.approx(0.4667, abs=1e-4)

    def test_from_counter_reports(self, store):
        clock = FixedClock(datetime(2026, 10, 19, 10, 0))
        record_counter_report(store, {"partNumber": BIG, "count": 300, "target": 900}, clock)
        record_counter_report(store, {"partNumber": SMALL, "count": 200, "target": 900}, clock)
        result = submit_quality_data(store, self._payload())
        assert result["oee"]["total_count"] == 500

    def test_no_production_is_referential_error(self, store):
        with pytest.raises(ReferentialError):
            submit_quality_data(store, self._payload())
        assert store.find(STOP_TIMES) == []

    def test_missing_stop_times(self, store):
        _seed_production(store)
        payload = self._payload()
        del payload["stopTimes"]
        with pytest.raises(ValidationError):
            submit_quality_data(store, payload)

    def test_empty_stop_times_allowed(self, store):
        _seed_production(store)
        result = submit_quality_data(store, self._payload(stopTimes=[], rejections=[]))
        assert result["oee"]["availability"] == 1.0
        assert result["oee"]["quality"] == 1.0
        assert result["rejections_processed"] is None

    @pytest.mark.parametrize("stop", [
        {"duration": -5, "reason": "x"},
        {"duration": "ten", "reason": "x"},
        {"duration": 5, "reason": ""},
        {"duration": float("nan"), "reason": "x"},
        {"duration": float("inf"), "reason": "x"},
    ])
    def test_bad_stop_rows(self, store, stop):
        _seed_production(store)
        with pytest.raises(ValidationError):
            submit_quality_data(store, self._payload(stopTimes=[stop]))
        assert store.find(STOP_TIMES) == []
        assert store.find(OEE) == []

    def test_unknown_shift(self, store):
        with pytest.raises(ValidationError):
            submit_quality_data(store, self._payload(shift="shift-3"))

    def test_resubmission_replaces_stoppages(self, store):
        _seed_production(store)
        submit_quality_data(store, self._payload())
        submit_quality_data(store, self._payload(stopTimes=[{"duration": 15, "reason": "cleaning"}]))

        stops = store.find(STOP_TIMES, {"shift": SHIFT_1, "date": DAY})
        assert [s["reason"] for s in stops] == ["cleaning"]
        assert store.find_one(OEE)["run_time"] == 615

    def test_omitted_rejections_are_kept(self, store):
        _seed_production(store)
        submit_quality_data(store, self._payload())
        result = submit_quality_data(store, self._payload(rejections=None))
        assert result["rejections_processed"] is None
        assert len(store.find(REJECTIONS)) == 2
        assert result["oee"]["good_count"] == 490

    def test_incomplete_rejections_skipped(self, store):
        _seed_production(store)
        result = submit_quality_data(store, self._payload(rejections=[
            {"partNumber": BIG, "count": 4, "reason": "dent"},
            {"partNumber": BIG, "count": 0, "reason": "none"},
            {"partNumber": SMALL, "count": 3},
        ]))
        assert result["rejections_processed"] == 1
        assert result["oee"]["good_count"] == 496

    def test_unknown_rejection_part(self, store):
        _seed_production(store)
        with pytest.raises(ValidationError):
            submit_quality_data(store, self._payload(rejections=[
                {"partNumber": "123", "count": 4, "reason": "dent"},
            ]))

    def test_only_incomplete_rejections_keep_recorded_ones(self, store):
        _seed_production(store)
        submit_quality_data(store, self._payload())
        result = submit_quality_data(store, self._payload(rejections=[
            {"partNumber": BIG, "count": 0, "reason": ""},
        ]))
        assert result["rejections_processed"] is None
        assert len(store.find(REJECTIONS)) == 2
        assert result["oee"]["quality"] == pytest.approx(0.98)

    def test_rejection_count_coerced_like_counter_reports(self, store):
        _seed_production(store)
        result = submit_quality_data(store, self._payload(rejections=[
            {"partNumber": BIG, "count": "4", "reason": "dent"},
            {"partNumber": SMALL, "count": 6.0, "reason": "leak"},
        ]))
        assert sorted(r["count"] for r in store.find(REJECTIONS)) == [4, 6]
        assert result["oee"]["good_count"] == 490

    @pytest.mark.parametrize("count", [1.5, -2, True, "four", float("nan")])
    def test_bad_rejection_count(self, store, count):
        _seed_production(store)
        with pytest.raises(ValidationError):
            submit_quality_data(store, self._payload(rejections=[
                {"partNumber": BIG, "count": count, "reason": "dent"},
            ]))
        assert store.find(REJECTIONS) == []

    def test_other_shift_untouched(self, store):
        _seed_production(store)
        _seed_production(store, shift=SHIFT_2)
        submit_quality_data(store, self._payload())
        submit_quality_data(store, self._payload(shift=SHIFT_2, stopTimes=[{"duration": 5, "reason": "x"}]))
        submit_quality_data(store, self._payload(stopTimes=[]))
        assert len(store.find(STOP_TIMES, {"shift": SHIFT_2})) == 1

    def test_store_failure_leaves_previous_facts(self, store, monkeypatch):
        _seed_production(store)
        submit_quality_data(store, self._payload())
        before = store.find_one(OEE)

        def boom(replacements):
            raise StoreError("connection reset")

        monkeypatch.setattr(store, "replace_sets", boom)
        with pytest.raises(StoreError):
            submit_quality_data(store, self._payload(stopTimes=[{"duration": 100, "reason": "x"}]))

        assert len(store.find(STOP_TIMES)) == 2
        assert store.find_one(OEE) == before

    def test_runtime_error_after_replace(self, store):
        _seed_production(store)
        with pytest.raises(ComputationError):
            submit_quality_data(store, self._payload(stopTimes=[{"duration": 630, "reason": "outage"}]))
        assert store.find(OEE) == []
        assert len(store.find(STOP_TIMES)) == 1


# =====================================================================
# Read views
# =====================================================================

class TestOEEViews:
    def test_format_percentage(self):
        assert format_percentage(0.5) == "50.00%"
        assert format_percentage(None) == "0%"
        assert format_percentage(float("nan")) == "0%"
        assert format_percentage("abc") == "0%"

    def test_latest_oee_empty(self, store):
        assert latest_oee(store) is None

    def test_latest_and_history(self, store):
        store.insert(OEE, {"shift": SHIFT_1, "date": "2026-10-18", "availability": 0.9,
                           "performance": 0.8, "quality": 1.0, "oee": 0.72,
                           "total_count": 400, "good_count": 400, "run_time": 567})
        store.insert(OEE, {"shift": SHIFT_2, "date": "2026-10-18", "availability": 1.0,
                           "performance": 0.5, "quality": 1.0, "oee": 0.5,
                           "total_count": 525, "good_count": 525, "run_time": 630})

        latest = latest_oee(store)
        assert latest["shift"] == SHIFT_2
        assert latest["oee"] == "50.00%"

        history = oee_history(store)
        assert [h["shift"] for h in history] == [SHIFT_2, SHIFT_1]
        assert history[1]["oee"] == "72.00"


# =====================================================================
# Dashboard editor tables -> submission entries
# =====================================================================

class TestEditorFrames:
    def test_untouched_tables(self):
        stops = pd.DataFrame([{"duration": 0, "reason": ""}])
        rej = pd.DataFrame([{"partNumber": BIG, "count": 0, "reason": ""}])
        assert stop_times_from_frame(stops) == []
        assert rejections_from_frame(rej) == []

    def test_blank_cells_from_added_rows(self):
        stops = pd.DataFrame([
            {"duration": 20, "reason": "tooling"},
            {"duration": None, "reason": None},
            {"duration": float("nan"), "reason": "material"},
        ])
        assert stop_times_from_frame(stops) == [
            {"duration": 20, "reason": "tooling"},
            {"duration": None, "reason": "material"},
        ]

        rej = pd.DataFrame([
            {"partNumber": BIG, "count": 4.0, "reason": "dent"},
            {"partNumber": None, "count": float("nan"), "reason": None},
            {"partNumber": SMALL, "count": float("nan"), "reason": "leak"},
        ])
        assert rejections_from_frame(rej) == [{"partNumber": BIG, "count": 4, "reason": "dent"}]

    def test_blank_duration_is_validation_error(self, store):
        _seed_production(store)
        stops = stop_times_from_frame(pd.DataFrame([{"duration": None, "reason": "tooling"}]))
        with pytest.raises(ValidationError):
            submit_quality_data(store, {"shift": SHIFT_1, "date": DAY, "stopTimes": stops})

    def test_untouched_rejections_keep_recorded_ones(self, store):
        _seed_production(store)
        submit_quality_data(store, {
            "shift": SHIFT_1, "date": DAY, "stopTimes": [],
            "rejections": [{"partNumber": BIG, "count": 10, "reason": "dent"}],
        })
        rejections = rejections_from_frame(pd.DataFrame([{"partNumber": BIG, "count": 0, "reason": ""}]))
        result = submit_quality_data(store, {
            "shift": SHIFT_1, "date": DAY,
            "stopTimes": stop_times_from_frame(pd.DataFrame([{"duration": 0, "reason": ""}])),
            "rejections": rejections,
        })
        assert [r["count"] for r in store.find(REJECTIONS)] == [10]
        assert result["oee"]["quality"] == pytest.approx(0.98)

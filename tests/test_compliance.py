"""
Reference-status rule tests: boundaries, unknown handling and purity.
"""
import copy
from datetime import date

import pytest

from aerocore.compliance import (
    EXPIRED,
    OK,
    UNKNOWN,
    WARNING,
    add_months,
    evaluate,
    evaluate_date,
    evaluate_hours,
    summarize,
)

AS_OF = "2026-02-01"


class TestHourItems:
    def test_magnetos_at_limit_is_expired(self):
        result = evaluate({"magnetos_hours_since_inspection": 500}, AS_OF)
        assert result["magnetos"]["status"] == EXPIRED
        assert result["magnetos"]["remaining"] == 0

    def test_ninety_percent_is_warning(self):
        result = evaluate(
            {"magnetos_hours_since_inspection": 450, "vacuum_pump_hours_since_replacement": 360},
            AS_OF,
        )
        assert result["magnetos"]["status"] == WARNING
        assert result["vacuum_pump"]["status"] == WARNING
        assert result["vacuum_pump"]["remaining"] == 40

    def test_just_below_warning_is_ok(self):
        result = evaluate({"vacuum_pump_hours_since_replacement": 359}, AS_OF)
        assert result["vacuum_pump"]["status"] == OK

    def test_over_limit_is_expired(self):
        assert evaluate_hours(620, 500, 0.9)["status"] == EXPIRED

    def test_engine_uses_snapshot_tbo(self):
        result = evaluate({"engine_hours": 1800, "engine_tbo_hours": 2000}, AS_OF)
        assert result["engine"]["status"] == WARNING
        assert result["engine"]["limit"] == 2000

    def test_engine_without_tbo_is_unknown(self):
        result = evaluate({"engine_hours": 1800}, AS_OF)
        assert result["engine"]["status"] == UNKNOWN

    def test_missing_or_bad_hours_are_unknown(self):
        assert evaluate_hours(None, 500, 0.9)["status"] == UNKNOWN
        assert evaluate_hours("lots", 500, 0.9)["status"] == UNKNOWN
        assert evaluate_hours(-3, 500, 0.9)["status"] == UNKNOWN

    def test_configurable_warning_ratio(self):
        assert evaluate_hours(400, 500, 0.75)["status"] == WARNING
        assert evaluate_hours(400, 500, 0.9)["status"] == OK

    @pytest.mark.parametrize("limit", [400, 500, 1142, 1147, 1152, 1800, 2000, 4999])
    def test_exactly_ninety_percent_of_any_limit_is_warning(self, limit):
        result = evaluate({"engine_hours": 0.9 * limit, "engine_tbo_hours": limit}, AS_OF)
        assert result["engine"]["status"] == WARNING


class TestDateItems:
    def test_avionics_overdue_is_expired(self):
        result = evaluate({"avionics_certification_date": "2024-01-15"}, AS_OF)
        assert result["avionics"]["status"] == EXPIRED
        assert result["avionics"]["due"] == "2026-01-15"
        assert result["avionics"]["remaining"] == -17

    def test_late_in_interval_is_warning(self):
        result = evaluate({"propeller_inspection_date": "2021-03-01"}, AS_OF)
        assert result["propeller"]["status"] == WARNING
        assert result["propeller"]["due"] == "2026-03-01"

    def test_recent_inspection_is_ok(self):
        result = evaluate({"airframe_inspection_date": "2025-01-01"}, AS_OF)
        assert result["airframe"]["status"] == OK

    def test_on_due_date_is_not_expired(self):
        entry = evaluate_date("2024-02-01", 24, date(2026, 2, 1), 0.9)
        assert entry["status"] == WARNING
        assert entry["remaining"] == 0

    def test_future_or_unparseable_date_is_unknown(self):
        result = evaluate(
            {"avionics_certification_date": "2027-01-01", "propeller_inspection_date": "not a date"},
            AS_OF,
        )
        assert result["avionics"]["status"] == UNKNOWN
        assert result["propeller"]["status"] == UNKNOWN

    def test_missing_as_of_gives_unknown_dates(self):
        result = evaluate({"airframe_inspection_date": "2025-01-01"}, None)
        assert result["airframe"]["status"] == UNKNOWN

    def test_dates_beyond_calendar_range_are_unknown(self):
        snapshot = {
            "avionics_certification_date": date(9999, 1, 1),
            "elt_battery_replaced_date": date(9999, 1, 1),
            "elt_battery_expiry_date": date(9999, 12, 1),
        }
        result = evaluate(snapshot, date(9999, 12, 31))
        assert result["avionics"]["status"] == UNKNOWN
        assert result["elt_battery"]["status"] == UNKNOWN
        assert add_months(date(9999, 6, 1), 12) is None


class TestElt:
    def test_annual_test_overdue(self):
        result = evaluate({"elt_last_test_date": "2025-01-15"}, AS_OF)
        assert result["elt_test"]["status"] == EXPIRED
        assert result["elt_test"]["due"] == "2026-01-15"

    @pytest.mark.parametrize("last_test,status", [
        ("2025-03-01", WARNING),
        ("2025-06-01", OK),
    ])
    def test_annual_test_cycle(self, last_test, status):
        assert evaluate({"elt_last_test_date": last_test}, AS_OF)["elt_test"]["status"] == status

    @pytest.mark.parametrize("replaced,expiry,status", [
        ("2020-03-01", "2026-03-01", WARNING),
        ("2024-01-01", "2028-01-01", OK),
        ("2020-01-01", "2025-12-31", EXPIRED),
    ])
    def test_battery_counts_to_printed_expiry(self, replaced, expiry, status):
        snapshot = {"elt_battery_replaced_date": replaced, "elt_battery_expiry_date": expiry}
        entry = evaluate(snapshot, AS_OF)["elt_battery"]
        assert entry["status"] == status
        assert entry["due"] == expiry

    @pytest.mark.parametrize("expiry", [None, "2021-01-01", "2030-01-01"])
    def test_battery_expiry_outside_policy_life_is_unknown(self, expiry):
        snapshot = {"elt_battery_replaced_date": "2020-01-01", "elt_battery_expiry_date": expiry}
        entry = evaluate(snapshot, AS_OF)["elt_battery"]
        assert entry["status"] == UNKNOWN
        assert entry["limit"] == [24, 72]


def test_empty_snapshot_is_all_unknown():
    result = evaluate({}, AS_OF)
    assert set(result) == {
        "avionics", "propeller", "airframe", "elt_test", "elt_battery", "engine", "magnetos", "vacuum_pump",
    }
    assert all(entry["status"] == UNKNOWN for entry in result.values())


def test_evaluate_is_pure():
    snapshot = {
        "engine_hours": 1200,
        "engine_tbo_hours": 2000,
        "magnetos_hours_since_inspection": 450,
        "avionics_certification_date": "2024-01-15",
    }
    before = copy.deepcopy(snapshot)
    first = evaluate(snapshot, AS_OF)
    second = evaluate(snapshot, AS_OF)
    assert first == second
    assert snapshot == before


def test_summarize_counts_every_status():
    result = evaluate(
        {"magnetos_hours_since_inspection": 500, "vacuum_pump_hours_since_replacement": 10},
        AS_OF,
    )
    counts = summarize(result)
    assert counts[EXPIRED] == 1
    assert counts[OK] == 1
    assert sum(counts.values()) == len(result)

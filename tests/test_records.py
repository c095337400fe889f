import pytest

from aerocore.errors import InvalidInput, NotFound
from aerocore.records import parse_selections
from aerocore.utils import normalize_payload

from conftest import ACCOUNT, MAINTENANCE_PAYLOAD


class TestAircraft:
    def test_registration_is_unique_per_account(self, store, aircraft):
        assert aircraft["registration"] == "C-GABC"
        with pytest.raises(InvalidInput):
            store.create_aircraft(ACCOUNT, "C-GABC")
        other = store.create_aircraft("acct-2", "C-GABC")
        assert other["id"] != aircraft["id"]

    def test_other_account_cannot_see_aircraft(self, store, aircraft):
        with pytest.raises(NotFound):
            store.get_aircraft("acct-2", aircraft["id"])
        assert store.list_aircraft("acct-2") == []

    def test_negative_hours_rejected(self, store):
        with pytest.raises(InvalidInput):
            store.create_aircraft(ACCOUNT, "C-FNEG", hours={"airframe_hours": -1})


class TestLimits:
    def test_new_aircraft_has_empty_snapshot(self, store, aircraft):
        snap = store.get_limits_snapshot(aircraft["id"])
        assert snap["engine_hours"] == 1200
        assert snap["engine_tbo_hours"] is None
        assert snap["avionics_certification_date"] is None

    def test_update_editable_fields(self, store, aircraft):
        snap = store.update_limits(
            aircraft["id"],
            {"engine_tbo_hours": "2000", "avionics_certification_date": "2024-01-15"},
            actor=ACCOUNT,
        )
        assert snap["engine_tbo_hours"] == 2000
        assert snap["avionics_certification_date"] == "2024-01-15"
        audit = store.list_audit(aircraft["id"])
        assert audit[0]["table_name"] == "limits_snapshot"
        assert audit[0]["details"]["diff"]["engine_tbo_hours"] == {"from": None, "to": 2000.0}

    def test_policy_intervals_are_not_editable(self, store, aircraft):
        with pytest.raises(InvalidInput) as exc:
            store.update_limits(aircraft["id"], {"magnetos_limit_hours": 600})
        assert exc.value.context["fields"] == ["magnetos_limit_hours"]

    def test_elt_dates_are_editable_but_not_its_policy(self, store, aircraft):
        snap = store.update_limits(
            aircraft["id"],
            {"elt_last_test_date": "2025-06-01", "elt_battery_replaced_date": "2024-01-01",
             "elt_battery_expiry_date": "2028-01-01"},
        )
        assert snap["elt_last_test_date"] == "2025-06-01"
        assert snap["elt_battery_expiry_date"] == "2028-01-01"
        for field in ("elt_test_interval_months", "elt_battery_max_months"):
            with pytest.raises(InvalidInput):
                store.update_limits(aircraft["id"], {field: 96})

    @pytest.mark.parametrize("changes", [
        {"wing_color": "red"},
        {"propeller_inspection_date": "soon"},
        {"magnetos_hours_since_inspection": -5},
        {},
    ])
    def test_bad_updates_rejected(self, store, aircraft, changes):
        with pytest.raises(InvalidInput):
            store.update_limits(aircraft["id"], changes)


class TestApply:
    def test_maintenance_report_writes_every_section(self, store, aircraft):
        fields = normalize_payload(MAINTENANCE_PAYLOAD)
        applied = store.apply_validated_fields(aircraft["id"], "maintenance_report", fields, actor=ACCOUNT)
        assert applied["maintenance_id"] is not None
        assert len(applied["adsb_ids"]) == 1
        assert len(applied["part_ids"]) == 1
        assert len(applied["stc_ids"]) == 1

        ac = store.get_aircraft(ACCOUNT, aircraft["id"])
        assert ac["airframe_hours"] == 2450.5
        parts = store.list_records(aircraft["id"], "parts")
        assert parts[0]["confirmed"] == 0
        assert parts[0]["source"] == "manual"
        adsb = store.list_records(aircraft["id"], "adsb")
        assert adsb[0]["status"] == "COMPLIED"

    def test_exact_duplicates_are_linked_not_duplicated(self, store, aircraft):
        fields = normalize_payload(MAINTENANCE_PAYLOAD)
        first = store.apply_validated_fields(aircraft["id"], "maintenance_report", fields)
        report = store.check_duplicates(aircraft["id"], "maintenance_report", fields)
        assert report["summary"]["ad_sb"] == {"duplicates": 1, "new": 0}
        assert report["duplicates"]["parts"][0]["match_type"] == "exact"

        second = store.apply_validated_fields(aircraft["id"], "maintenance_report", fields)
        assert second["adsb_ids"] == first["adsb_ids"]
        assert second["part_ids"] == first["part_ids"]
        assert len(store.list_records(aircraft["id"], "adsb")) == 1
        assert len(store.list_records(aircraft["id"], "maintenance")) == 2

    def test_skip_selection(self, store, aircraft):
        fields = normalize_payload(MAINTENANCE_PAYLOAD)
        applied = store.apply_validated_fields(
            aircraft["id"], "maintenance_report", fields,
            selections={"parts": [{"index": 0, "action": "skip"}]},
        )
        assert applied["part_ids"] == []
        assert store.list_records(aircraft["id"], "parts") == []

    def test_link_requires_existing_id(self, store, aircraft):
        fields = normalize_payload(MAINTENANCE_PAYLOAD)
        with pytest.raises(InvalidInput):
            store.apply_validated_fields(
                aircraft["id"], "maintenance_report", fields,
                selections={"stc": [{"index": 0, "action": "link"}]},
            )
        assert store.list_records(aircraft["id"], "maintenance") == []

    def test_invoice_partial_match_creates_new_row(self, store, aircraft):
        fields = {"invoice_number": "INV-9", "supplier": "Acme Parts", "total": 310.0, "invoice_date": "2025-03-11"}
        store.apply_validated_fields(aircraft["id"], "invoice", fields)
        other = dict(fields, supplier="Other Supplier")
        report = store.check_duplicates(aircraft["id"], "invoice", other)
        assert report["duplicates"]["invoices"][0]["match_type"] == "partial"
        store.apply_validated_fields(aircraft["id"], "invoice", other)
        assert len(store.list_records(aircraft["id"], "invoices")) == 2

    def test_unknown_record_kind(self, store, aircraft):
        with pytest.raises(InvalidInput):
            store.list_records(aircraft["id"], "engines")


def test_delete_detaches_records(store, aircraft):
    store.apply_validated_fields(aircraft["id"], "maintenance_report", normalize_payload(MAINTENANCE_PAYLOAD))
    store.delete_aircraft(ACCOUNT, aircraft["id"])
    with pytest.raises(NotFound):
        store.get_aircraft(ACCOUNT, aircraft["id"])
    with pytest.raises(NotFound):
        store.get_limits_snapshot(aircraft["id"])
    assert store.list_records(aircraft["id"], "maintenance") == []


@pytest.mark.parametrize("selections", [
    [{"index": 0, "action": "skip"}],
    {"parts": {"index": 0, "action": "skip"}},
    {"parts": ["skip"]},
    {"parts": [{"action": "skip"}]},
    {"parts": [{"index": "first", "action": "skip"}]},
    {"parts": [{"index": 0, "action": "merge"}]},
])
def test_malformed_selections_rejected(store, aircraft, selections):
    with pytest.raises(InvalidInput):
        parse_selections(selections)
    with pytest.raises(InvalidInput):
        store.apply_validated_fields(
            aircraft["id"], "maintenance_report", normalize_payload(MAINTENANCE_PAYLOAD), selections=selections,
        )
    assert store.list_records(aircraft["id"], "maintenance") == []


def test_selection_action_is_case_insensitive():
    parsed = parse_selections({"stc": [{"index": 0, "action": "LINK", "existing_id": "4"}]})
    assert parsed == {("stc", 0): {"action": "link", "existing_id": 4}}


class TestNormalizePayload:
    def test_wrong_shape_sections_dropped_from_extraction(self):
        fields = normalize_payload({"description": "x", "parts_replaced": 3, "stc_references": ["junk"]})
        assert "parts_replaced" not in fields
        assert fields["stc_references"] == []

    @pytest.mark.parametrize("payload", [
        {"parts_replaced": 3},
        {"ad_sb_references": {"reference_number": "CF-1"}},
        {"stc_references": ["SA01234"]},
    ])
    def test_wrong_shape_sections_rejected_when_validated(self, payload):
        with pytest.raises(InvalidInput):
            normalize_payload(payload, strict=True)

"""
Maintenance Record Store: system of record for aircraft, limits snapshots,
scans and the maintenance facts applied from validated scans.
"""
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .compliance import FIXED_POLICY
from .config import DEFAULT_PLAN
from .db import connect, write_transaction
from .errors import InvalidInput, InvalidStateTransition, NotFound, RecordStoreWriteFailed
from .utils import (
    diff_rows,
    json_dumps,
    json_loads_or_none,
    strip_or_none,
    to_date_iso,
    to_float_or_none,
    to_int_or_none,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

LIMIT_DATE_FIELDS = {
    "avionics_certification_date",
    "propeller_inspection_date",
    "airframe_inspection_date",
    "elt_last_test_date",
    "elt_battery_replaced_date",
    "elt_battery_expiry_date",
}
LIMIT_HOUR_FIELDS = {
    "engine_tbo_hours",
    "magnetos_hours_since_inspection",
    "vacuum_pump_hours_since_replacement",
}
EDITABLE_LIMIT_FIELDS = LIMIT_DATE_FIELDS | LIMIT_HOUR_FIELDS
FIXED_LIMIT_FIELDS = set(FIXED_POLICY)

RECORD_TABLES = {
    "maintenance": "maintenance_record",
    "parts": "part_record",
    "adsb": "adsb_record",
    "stc": "stc_record",
    "invoices": "invoice_record",
}

ITEM_ACTIONS = {"create", "link", "skip"}

SCAN_JSON_FIELDS = ("raw_payload", "validated_payload", "applied_ids")


def log_ledger(con, table_name: str, action: str, row_id, aircraft_id: Optional[int], details: Dict[str, Any], actor: Optional[str] = None) -> None:
    con.execute(
        "INSERT INTO data_ledger(table_name, action, row_id, aircraft_id, actor, details) VALUES (?,?,?,?,?,?)",
        (table_name, action, None if row_id is None else str(row_id), aircraft_id, actor, json_dumps(details)),
    )


def parse_selections(selections) -> Dict[Tuple[str, int], Dict[str, Any]]:
    """Index per-item create/link/skip choices by (section, item index)."""
    if not selections:
        return {}
    if not isinstance(selections, dict):
        raise InvalidInput("selections must be an object keyed by section")
    out = {}
    for section, items in selections.items():
        if items is None:
            continue
        if not isinstance(items, list):
            raise InvalidInput("selections must be a list per section", section=section)
        for s in items:
            if not isinstance(s, dict):
                raise InvalidInput("each selection must be an object", section=section)
            index = s.get("index")
            if isinstance(index, bool) or not isinstance(index, int) or index < 0:
                raise InvalidInput("selection index must be a non-negative integer", section=section)
            action = str(s.get("action") or "").lower()
            if action not in ITEM_ACTIONS:
                raise InvalidInput(f"Unknown action '{action}'", section=section, index=index)
            existing_id = to_int_or_none(s.get("existing_id"))
            if action == "link" and existing_id is None:
                raise InvalidInput("existing_id is required to link", section=section, index=index)
            out[(section, index)] = {"action": action, "existing_id": existing_id}
    return out


def scan_row_to_dict(row) -> Dict[str, Any]:
    out = dict(row)
    for k in SCAN_JSON_FIELDS:
        out[k] = json_loads_or_none(out.get(k))
    return out


class MaintenanceRecordStore:
    def __init__(self, db_path=None):
        self.db_path = db_path

    # ---------------------- Accounts & aircraft ----------------------
    def ensure_account(self, account_id: str) -> None:
        with write_transaction(self.db_path) as con:
            con.execute("INSERT OR IGNORE INTO account(id, plan) VALUES (?, ?)", (account_id, DEFAULT_PLAN))

    def set_plan(self, account_id: str, plan: str) -> None:
        with write_transaction(self.db_path) as con:
            con.execute(
                "INSERT INTO account(id, plan) VALUES (?, ?) ON CONFLICT(id) DO UPDATE SET plan=excluded.plan",
                (account_id, plan.upper()),
            )

    def create_aircraft(self, account_id: str, registration: str, model: str = "N/A", hours: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        registration = (registration or "").strip().upper()
        model = (model or "N/A").strip()
        if not registration:
            raise InvalidInput("registration is required")
        tc_vals = {}
        for k, v in (hours or {}).items():
            if k not in ("airframe_hours", "engine_hours", "propeller_hours") or v is None:
                continue
            n = to_float_or_none(v)
            if n is None or n < 0:
                raise InvalidInput(f"{k} must be a non-negative number")
            tc_vals[k] = n
        self.ensure_account(account_id)
        with write_transaction(self.db_path) as con:
            try:
                cur = con.execute(
                    "INSERT INTO aircraft(account_id, registration, model, airframe_hours, engine_hours, propeller_hours) "
                    "VALUES (?,?,?,?,?,?)",
                    (account_id, registration, model, tc_vals.get("airframe_hours"),
                     tc_vals.get("engine_hours"), tc_vals.get("propeller_hours")),
                )
            except sqlite3.IntegrityError:
                raise InvalidInput(f"Aircraft {registration} is already registered")
            aircraft_id = cur.lastrowid
            con.execute("INSERT INTO limits_snapshot(aircraft_id) VALUES (?)", (aircraft_id,))
            details = {"action": "CREATE", "table": "aircraft", "values": {"registration": registration, "model": model, **tc_vals}}
            log_ledger(con, "aircraft", "CREATE", aircraft_id, aircraft_id, details, account_id)
        logger.info(f"Registered aircraft {registration} ({aircraft_id}) for account {account_id}")
        return self.get_aircraft(account_id, aircraft_id)

    def get_aircraft(self, account_id: str, aircraft_id: int) -> Dict[str, Any]:
        with connect(self.db_path) as con:
            r = con.execute(
                "SELECT * FROM aircraft WHERE id=? AND account_id=?", (aircraft_id, account_id)
            ).fetchone()
        if not r:
            raise NotFound("Aircraft not found", aircraft_id=aircraft_id)
        return dict(r)

    def list_aircraft(self, account_id: str) -> List[Dict[str, Any]]:
        with connect(self.db_path) as con:
            rows = con.execute(
                "SELECT * FROM aircraft WHERE account_id=? ORDER BY id DESC", (account_id,)
            ).fetchall()
        return [dict(r) for r in rows]

    def delete_aircraft(self, account_id: str, aircraft_id: int) -> None:
        """Remove an aircraft. Scans and records are kept but detached."""
        with write_transaction(self.db_path) as con:
            r = con.execute(
                "SELECT * FROM aircraft WHERE id=? AND account_id=?", (aircraft_id, account_id)
            ).fetchone()
            if not r:
                raise NotFound("Aircraft not found", aircraft_id=aircraft_id)
            con.execute("DELETE FROM aircraft WHERE id=?", (aircraft_id,))
            details = {"action": "DELETE", "table": "aircraft", "before": dict(r)}
            log_ledger(con, "aircraft", "DELETE", aircraft_id, aircraft_id, details, account_id)
        logger.info(f"Removed aircraft {aircraft_id} for account {account_id}")

    # ---------------------- Limits snapshot ----------------------
    def get_limits_snapshot(self, aircraft_id: int) -> Dict[str, Any]:
        with connect(self.db_path) as con:
            r = con.execute(
                """
                SELECT ls.*, a.engine_hours
                FROM limits_snapshot ls
                JOIN aircraft a ON a.id = ls.aircraft_id
                WHERE ls.aircraft_id=?
                """,
                (aircraft_id,),
            ).fetchone()
        if not r:
            raise NotFound("Limits snapshot not found", aircraft_id=aircraft_id)
        return dict(r)

    def update_limits(self, aircraft_id: int, changes: Dict[str, Any], actor: Optional[str] = None) -> Dict[str, Any]:
        fixed = sorted(set(changes) & FIXED_LIMIT_FIELDS)
        if fixed:
            raise InvalidInput("Policy intervals cannot be edited", fields=fixed)
        unknown = sorted(set(changes) - EDITABLE_LIMIT_FIELDS)
        if unknown:
            raise InvalidInput("Unknown limits fields", fields=unknown)
        update = {}
        for k, v in changes.items():
            if v is None or v == "":
                update[k] = None
            elif k in LIMIT_DATE_FIELDS:
                d = to_date_iso(v)
                if d is None:
                    raise InvalidInput(f"{k} must be a date (YYYY-MM-DD)")
                update[k] = d
            else:
                n = to_float_or_none(v)
                if n is None or n < 0:
                    raise InvalidInput(f"{k} must be a non-negative number")
                update[k] = n
        if not update:
            raise InvalidInput("No changes")
        with write_transaction(self.db_path) as con:
            row = con.execute("SELECT * FROM limits_snapshot WHERE aircraft_id=?", (aircraft_id,)).fetchone()
            if not row:
                raise NotFound("Limits snapshot not found", aircraft_id=aircraft_id)
            current = dict(row)
            sets = [f"{k}=:{k}" for k in update.keys()]
            sql = "UPDATE limits_snapshot SET " + ", ".join(sets) + ", updated_at=datetime('now') WHERE aircraft_id=:aircraft_id"
            con.execute(sql, {**update, "aircraft_id": aircraft_id})
            changed = diff_rows({k: current.get(k) for k in update}, update)
            if changed:
                details = {"action": "UPDATE", "table": "limits_snapshot", "diff": changed}
                log_ledger(con, "limits_snapshot", "UPDATE", aircraft_id, aircraft_id, details, actor)
        return self.get_limits_snapshot(aircraft_id)

    # ---------------------- Scans ----------------------
    def record_scan_history_entry(self, scan: Dict[str, Any]) -> None:
        row = dict(scan)
        for k in SCAN_JSON_FIELDS:
            if row.get(k) is not None:
                row[k] = json_dumps(row[k])
        cols = [
            "id", "account_id", "aircraft_id", "document_type", "state", "image_sha256",
            "reservation_token", "raw_payload", "validated_payload", "applied_ids",
            "error_message", "created_at", "updated_at",
        ]
        values = {c: row.get(c) for c in cols}
        updates = ", ".join(f"{c}=excluded.{c}" for c in cols if c not in ("id", "created_at"))
        with write_transaction(self.db_path) as con:
            con.execute(
                f"INSERT INTO scan({', '.join(cols)}) VALUES ({', '.join(':' + c for c in cols)}) "
                f"ON CONFLICT(id) DO UPDATE SET {updates}",
                values,
            )

    def _transition_scan(self, con, scan_id: str, from_states: Iterable[str], to_state: str, now: datetime, fields: Dict[str, Any]) -> bool:
        from_states = list(from_states)
        sets = {"state": to_state, "updated_at": utc_now_iso(now)}
        for k, v in fields.items():
            sets[k] = json_dumps(v) if k in SCAN_JSON_FIELDS and v is not None else v
        placeholders = ",".join("?" for _ in from_states)
        sql = (
            "UPDATE scan SET " + ", ".join(f"{k}=?" for k in sets)
            + f" WHERE id=? AND state IN ({placeholders})"
        )
        cur = con.execute(sql, (*sets.values(), scan_id, *from_states))
        if cur.rowcount == 1:
            details = {"action": "TRANSITION", "table": "scan", "to": to_state, "from": from_states}
            log_ledger(con, "scan", "TRANSITION", scan_id, None, details)
            return True
        return False

    def transition_scan(self, scan_id: str, from_states: Iterable[str], to_state: str, now: datetime, **fields) -> bool:
        """Compare-and-set on the scan state. Returns False when another writer got there first."""
        with write_transaction(self.db_path) as con:
            return self._transition_scan(con, scan_id, from_states, to_state, now, fields)

    def get_scan(self, scan_id: str) -> Optional[Dict[str, Any]]:
        with connect(self.db_path) as con:
            r = con.execute("SELECT * FROM scan WHERE id=?", (scan_id,)).fetchone()
        return scan_row_to_dict(r) if r else None

    def list_scans(self, account_id: str, aircraft_id: int, limit: int = 20) -> List[Dict[str, Any]]:
        with connect(self.db_path) as con:
            rows = con.execute(
                """
                SELECT * FROM scan
                WHERE aircraft_id=? AND account_id=?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (aircraft_id, account_id, limit),
            ).fetchall()
        return [scan_row_to_dict(r) for r in rows]

    # ---------------------- Duplicate lookups ----------------------
    def find_duplicate_adsb(self, con, aircraft_id: int, reference_number: str):
        r = con.execute(
            "SELECT * FROM adsb_record WHERE aircraft_id=? AND reference_number=?",
            (aircraft_id, reference_number),
        ).fetchone()
        return (dict(r), "exact") if r else (None, "none")

    def find_duplicate_part(self, con, aircraft_id: int, part_number: str, serial_number: Optional[str]):
        if serial_number:
            r = con.execute(
                "SELECT * FROM part_record WHERE aircraft_id=? AND part_number=? AND serial_number=?",
                (aircraft_id, part_number, serial_number),
            ).fetchone()
            if r:
                return dict(r), "exact"
        r = con.execute(
            "SELECT * FROM part_record WHERE aircraft_id=? AND part_number=?",
            (aircraft_id, part_number),
        ).fetchone()
        return (dict(r), "partial") if r else (None, "none")

    def find_duplicate_stc(self, con, aircraft_id: int, stc_number: str):
        r = con.execute(
            "SELECT * FROM stc_record WHERE aircraft_id=? AND stc_number=?",
            (aircraft_id, stc_number),
        ).fetchone()
        return (dict(r), "exact") if r else (None, "none")

    def find_duplicate_invoice(self, con, aircraft_id: int, invoice: Dict[str, Any]):
        number, supplier = invoice.get("invoice_number"), invoice.get("supplier")
        if number and supplier:
            r = con.execute(
                "SELECT * FROM invoice_record WHERE aircraft_id=? AND invoice_number=? AND supplier=?",
                (aircraft_id, number, supplier),
            ).fetchone()
            if r:
                return dict(r), "exact"
        if number:
            r = con.execute(
                "SELECT * FROM invoice_record WHERE aircraft_id=? AND invoice_number=?",
                (aircraft_id, number),
            ).fetchone()
            if r:
                return dict(r), "partial"
        total, invoice_date = invoice.get("total"), invoice.get("invoice_date")
        if total is not None and invoice_date:
            r = con.execute(
                "SELECT * FROM invoice_record WHERE aircraft_id=? AND total=? AND invoice_date=?",
                (aircraft_id, total, invoice_date),
            ).fetchone()
            if r:
                return dict(r), "partial"
        return None, "none"

    def check_duplicates(self, aircraft_id: int, document_type: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        duplicates: Dict[str, List[Dict[str, Any]]] = {"ad_sb": [], "parts": [], "stc": [], "invoices": []}
        new_items: Dict[str, List[Dict[str, Any]]] = {"ad_sb": [], "parts": [], "stc": [], "invoices": []}

        def _add(section, idx, item, existing, match_type):
            if existing:
                duplicates[section].append({
                    "index": idx, "extracted": item, "existing": existing,
                    "existing_id": existing["id"], "match_type": match_type,
                })
            else:
                new_items[section].append({"index": idx, **item})

        with connect(self.db_path) as con:
            for idx, adsb in enumerate(fields.get("ad_sb_references") or []):
                if adsb.get("reference_number"):
                    _add("ad_sb", idx, adsb, *self.find_duplicate_adsb(con, aircraft_id, adsb["reference_number"]))
            for idx, part in enumerate(fields.get("parts_replaced") or []):
                if part.get("part_number"):
                    _add("parts", idx, part, *self.find_duplicate_part(
                        con, aircraft_id, part["part_number"], part.get("serial_number")))
            for idx, stc in enumerate(fields.get("stc_references") or []):
                if stc.get("stc_number"):
                    _add("stc", idx, stc, *self.find_duplicate_stc(con, aircraft_id, stc["stc_number"]))
            if document_type == "invoice":
                invoice = {k: fields.get(k) for k in ("invoice_number", "supplier", "total", "invoice_date")}
                _add("invoices", 0, invoice, *self.find_duplicate_invoice(con, aircraft_id, invoice))

        summary = {k: {"duplicates": len(duplicates[k]), "new": len(new_items[k])} for k in duplicates}
        return {"duplicates": duplicates, "new_items": new_items, "summary": summary}

    # ---------------------- Apply validated fields ----------------------
    def apply_validated_fields(
        self,
        aircraft_id: int,
        document_type: str,
        fields: Dict[str, Any],
        scan_id: Optional[str] = None,
        selections: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Write validated fields in a single transaction.

        When ``scan_id`` is given the scan moves validated -> applied inside
        the same transaction, so the writes and the state change commit or
        roll back together.
        """
        now = now or datetime.utcnow()
        try:
            with write_transaction(self.db_path) as con:
                if not con.execute("SELECT 1 FROM aircraft WHERE id=?", (aircraft_id,)).fetchone():
                    raise NotFound("Aircraft not found", aircraft_id=aircraft_id)
                writer = _ApplyWriter(self, con, aircraft_id, scan_id, selections, utc_now_iso(now))
                applied = writer.run(document_type, fields)
                if scan_id is not None:
                    won = self._transition_scan(
                        con, scan_id, ["validated"], "applied", now, {"applied_ids": applied}
                    )
                    if not won:
                        raise InvalidStateTransition("Scan is no longer validated", scan_id=scan_id)
                details = {"action": "APPLY", "table": "scan", "document_type": document_type, "applied": applied}
                log_ledger(con, "scan", "APPLY", scan_id, aircraft_id, details, actor)
        except sqlite3.Error as e:
            logger.error(f"Record store write failed for aircraft {aircraft_id} (scan {scan_id}): {e}")
            raise RecordStoreWriteFailed("Maintenance record write failed", scan_id=scan_id) from e
        logger.info(f"Applied {document_type} fields to aircraft {aircraft_id}: {applied}")
        return applied

    # ---------------------- Listings ----------------------
    def list_records(self, aircraft_id: int, kind: str, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        table = RECORD_TABLES.get(kind)
        if table is None:
            raise InvalidInput(f"Unknown record kind '{kind}'", allowed=sorted(RECORD_TABLES))
        with connect(self.db_path) as con:
            rows = con.execute(
                f"SELECT * FROM {table} WHERE aircraft_id=? ORDER BY id DESC LIMIT ? OFFSET ?",
                (aircraft_id, limit, offset),
            ).fetchall()
        return [dict(r) for r in rows]

    def list_audit(self, aircraft_id: int, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        with connect(self.db_path) as con:
            rows = con.execute(
                """
                SELECT * FROM data_ledger
                WHERE aircraft_id=?
                   OR (table_name='scan' AND row_id IN (SELECT id FROM scan WHERE aircraft_id=?))
                ORDER BY id DESC LIMIT ? OFFSET ?
                """,
                (aircraft_id, aircraft_id, limit, offset),
            ).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            d["details"] = json_loads_or_none(d["details"])
            out.append(d)
        return out


class _ApplyWriter:
    """Create-or-link writes for one apply call, all on one connection."""

    def __init__(self, store: MaintenanceRecordStore, con, aircraft_id: int, scan_id: Optional[str], selections, now_iso: str):
        self.store = store
        self.con = con
        self.aircraft_id = aircraft_id
        self.scan_id = scan_id
        self.now = now_iso
        self.source = "ocr" if scan_id else "manual"
        self.selections = parse_selections(selections)
        self.applied: Dict[str, Any] = {
            "maintenance_id": None, "adsb_ids": [], "part_ids": [], "stc_ids": [], "invoice_ids": [],
        }

    def run(self, document_type: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        if document_type == "maintenance_report":
            self.update_aircraft_hours(fields)
            self.insert_maintenance(fields)
            self.apply_adsb(fields)
            self.apply_parts(fields)
            self.apply_stc(fields)
        elif document_type == "invoice":
            self.apply_invoice(fields)
        elif document_type == "stc":
            self.apply_stc(fields)
        else:
            self.insert_maintenance(fields)
        return self.applied

    def _selection(self, section: str, idx: int) -> Optional[Dict[str, Any]]:
        return self.selections.get((section, idx))

    def _link(self, table: str, existing_id, update: Dict[str, Any]) -> None:
        update = {k: v for k, v in update.items() if v is not None}
        update.update({"source": self.source, "scan_id": self.scan_id, "updated_at": self.now})
        sets = ", ".join(f"{k}=:{k}" for k in update)
        cur = self.con.execute(
            f"UPDATE {table} SET {sets} WHERE id=:id AND aircraft_id=:aircraft_id",
            {**update, "id": existing_id, "aircraft_id": self.aircraft_id},
        )
        if cur.rowcount != 1:
            raise InvalidInput(f"Record {existing_id} not found on this aircraft", table=table)

    def _insert(self, table: str, values: Dict[str, Any]) -> int:
        values = {**values, "aircraft_id": self.aircraft_id, "source": self.source, "scan_id": self.scan_id}
        cols = ",".join(values.keys())
        vals = ":" + ",:".join(values.keys())
        return self.con.execute(f"INSERT INTO {table}({cols}) VALUES ({vals})", values).lastrowid

    def _create_or_link(self, section, idx, table, existing, match_type, auto_link_on, update, values) -> Optional[int]:
        selection = self._selection(section, idx)
        if selection:
            if selection["action"] == "skip":
                return None
            if selection["action"] == "link":
                self._link(table, selection["existing_id"], update)
                return selection["existing_id"]
        elif existing and match_type in auto_link_on:
            self._link(table, existing["id"], update)
            return existing["id"]
        return self._insert(table, values)

    def update_aircraft_hours(self, fields: Dict[str, Any]) -> None:
        hours = {k: fields.get(k) for k in ("airframe_hours", "engine_hours", "propeller_hours")}
        hours = {k: v for k, v in hours.items() if v is not None}
        if not hours:
            return
        sets = ", ".join(f"{k}=:{k}" for k in hours)
        self.con.execute(
            f"UPDATE aircraft SET {sets}, updated_at=:now WHERE id=:id",
            {**hours, "now": self.now, "id": self.aircraft_id},
        )

    def insert_maintenance(self, fields: Dict[str, Any]) -> None:
        if not (fields.get("description") or fields.get("work_order_number")):
            return
        values = {k: fields.get(k) for k in (
            "date", "work_order_number", "ame_name", "ame_license", "amo_name",
            "airframe_hours", "engine_hours", "propeller_hours",
            "labor_cost", "parts_cost", "total_cost", "remarks",
        )}
        values["description"] = fields.get("description") or "Scanned maintenance entry"
        values["date"] = values["date"] or self.now[:10]
        self.applied["maintenance_id"] = self._insert("maintenance_record", values)

    def apply_adsb(self, fields: Dict[str, Any]) -> None:
        for idx, adsb in enumerate(fields.get("ad_sb_references") or []):
            ref = strip_or_none(adsb.get("reference_number"))
            if not ref:
                continue
            existing, match_type = self.store.find_duplicate_adsb(self.con, self.aircraft_id, ref)
            update = {
                "status": adsb.get("status") or "UNKNOWN",
                "compliance_date": adsb.get("compliance_date"),
                "compliance_airframe_hours": adsb.get("airframe_hours"),
            }
            values = {
                "adsb_type": adsb.get("adsb_type") or "AD",
                "reference_number": ref,
                "description": adsb.get("description"),
                **update,
            }
            rid = self._create_or_link("ad_sb", idx, "adsb_record", existing, match_type, ("exact",), update, values)
            if rid is not None:
                self.applied["adsb_ids"].append(rid)

    def apply_parts(self, fields: Dict[str, Any]) -> None:
        for idx, part in enumerate(fields.get("parts_replaced") or []):
            pn = strip_or_none(part.get("part_number"))
            if not pn:
                continue
            existing, match_type = self.store.find_duplicate_part(self.con, self.aircraft_id, pn, part.get("serial_number"))
            update = {"serial_number": part.get("serial_number"), "price": part.get("price")}
            values = {
                "part_number": pn,
                "name": part.get("name") or pn,
                "serial_number": part.get("serial_number"),
                "quantity": part.get("quantity") or 1,
                "price": part.get("price"),
                "supplier": part.get("supplier"),
                "installation_date": fields.get("date") or self.now[:10],
                "installation_airframe_hours": fields.get("airframe_hours"),
                # parts read from a document still need a human to confirm them
                "confirmed": 0,
            }
            rid = self._create_or_link("parts", idx, "part_record", existing, match_type, ("exact",), update, values)
            if rid is not None:
                self.applied["part_ids"].append(rid)

    def apply_stc(self, fields: Dict[str, Any]) -> None:
        for idx, stc in enumerate(fields.get("stc_references") or []):
            number = strip_or_none(stc.get("stc_number"))
            if not number:
                continue
            existing, match_type = self.store.find_duplicate_stc(self.con, self.aircraft_id, number)
            update = {"title": stc.get("title"), "description": stc.get("description")}
            values = {
                "stc_number": number,
                "holder": stc.get("holder"),
                "installation_date": stc.get("installation_date") or fields.get("date") or self.now[:10],
                "installation_airframe_hours": stc.get("installation_airframe_hours") or fields.get("airframe_hours"),
                **update,
            }
            rid = self._create_or_link("stc", idx, "stc_record", existing, match_type, ("exact",), update, values)
            if rid is not None:
                self.applied["stc_ids"].append(rid)

    def apply_invoice(self, fields: Dict[str, Any]) -> None:
        invoice = {
            "invoice_number": fields.get("invoice_number"),
            "supplier": fields.get("supplier"),
            "invoice_date": fields.get("invoice_date") or fields.get("date"),
            "parts_cost": fields.get("parts_cost"),
            "labor_cost": fields.get("labor_cost"),
            "hours_worked": fields.get("hours_worked"),
            "total": fields.get("total") if fields.get("total") is not None else fields.get("total_cost"),
            "currency": fields.get("currency"),
        }
        if not any(v is not None for v in invoice.values()):
            return
        existing, match_type = self.store.find_duplicate_invoice(self.con, self.aircraft_id, invoice)
        rid = self._create_or_link("invoices", 0, "invoice_record", existing, match_type, ("exact",), invoice, invoice)
        if rid is not None:
            self.applied["invoice_ids"].append(rid)

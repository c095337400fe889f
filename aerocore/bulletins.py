"""
Bulletin cross-reference feed.

Alerts are pushed by an external feed; this module only stores and
surfaces them. Applicability of a bulletin is never computed here.
"""
import logging
from typing import Any, Dict, List, Optional

from .db import connect, write_transaction
from .errors import InvalidInput, NotFound

logger = logging.getLogger(__name__)

NEW_REFERENCE_TYPES = ("NEW_AD_SB", "NEW_TC_REFERENCE")
ALERT_TYPES = NEW_REFERENCE_TYPES + ("INFO", "WARNING")


class BulletinFeed:
    def __init__(self, db_path=None):
        self.db_path = db_path

    def push(self, aircraft_id: int, alert_type: str, reference: Optional[str] = None, title: Optional[str] = None, message: Optional[str] = None) -> int:
        alert_type = (alert_type or "").strip().upper()
        if alert_type not in ALERT_TYPES:
            raise InvalidInput(f"Unknown alert type '{alert_type}'", allowed=list(ALERT_TYPES))
        with write_transaction(self.db_path) as con:
            if not con.execute("SELECT 1 FROM aircraft WHERE id=?", (aircraft_id,)).fetchone():
                raise NotFound("Aircraft not found", aircraft_id=aircraft_id)
            cur = con.execute(
                "INSERT INTO bulletin_alert(aircraft_id, type, reference, title, message) VALUES (?,?,?,?,?)",
                (aircraft_id, alert_type, reference, title, message),
            )
        logger.info(f"Bulletin alert {alert_type} {reference or ''} recorded for aircraft {aircraft_id}")
        return cur.lastrowid

    def alerts(self, aircraft_id: int) -> List[Dict[str, Any]]:
        placeholders = ",".join("?" for _ in NEW_REFERENCE_TYPES)
        with connect(self.db_path) as con:
            rows = con.execute(
                f"""
                SELECT * FROM bulletin_alert
                WHERE aircraft_id=? AND type IN ({placeholders})
                ORDER BY created_at DESC, id DESC
                """,
                (aircraft_id, *NEW_REFERENCE_TYPES),
            ).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            d["is_read"] = bool(d["is_read"])
            out.append(d)
        return out

    def has_new_reference_item(self, aircraft_id: int) -> bool:
        return any(not a["is_read"] for a in self.alerts(aircraft_id))

    def mark_read(self, aircraft_id: int, alert_id: int) -> None:
        with write_transaction(self.db_path) as con:
            cur = con.execute(
                "UPDATE bulletin_alert SET is_read=1 WHERE id=? AND aircraft_id=?", (alert_id, aircraft_id)
            )
            if cur.rowcount != 1:
                raise NotFound("Alert not found", alert_id=alert_id)

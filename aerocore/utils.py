import hashlib
import json
import math
from datetime import datetime, date
from typing import Optional, Dict, Any, List

from .errors import InvalidInput


def sha256_bytes(b: bytes) -> str:
    h = hashlib.sha256()
    h.update(b)
    return h.hexdigest()


def json_dumps(obj) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str)


def json_loads_or_none(s: Optional[str]):
    if s is None:
        return None
    return json.loads(s)


def strip_or_none(x: Optional[str]):
    if x is None:
        return None
    s = str(x).strip().replace("\t", "")
    return s if s else None


def to_float_or_none(x):
    if x is None or x == "" or isinstance(x, bool):
        return None
    try:
        if isinstance(x, str):
            x = x.replace(",", "")
        v = float(x)
    except (TypeError, ValueError):
        return None
    if math.isnan(v) or math.isinf(v):
        return None
    return v


def to_int_or_none(x):
    v = to_float_or_none(x)
    return int(v) if v is not None else None


def to_date_iso(x) -> Optional[str]:
    if x is None or str(x).strip() == "":
        return None
    if isinstance(x, datetime):
        return x.date().isoformat()
    if isinstance(x, date):
        return x.isoformat()
    import pandas as pd
    try:
        ts = pd.to_datetime(str(x).strip(), errors="coerce")
    except (ValueError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return ts.date().isoformat()


def utc_now_iso(now: datetime) -> str:
    return now.replace(microsecond=0).isoformat()


def diff_rows(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    changed = {}
    keys = set(before.keys()) | set(after.keys())
    for k in keys:
        if before.get(k) != after.get(k):
            changed[k] = {"from": before.get(k), "to": after.get(k)}
    return changed


# Validated-field normalization, keyed by document section
HEADER_TEXT_FIELDS = {
    "date", "ame_name", "amo_name", "ame_license", "work_order_number",
    "description", "remarks", "invoice_number", "supplier", "invoice_date", "currency",
}
HEADER_NUMBER_FIELDS = {
    "airframe_hours", "engine_hours", "propeller_hours",
    "labor_cost", "parts_cost", "total_cost", "total", "hours_worked",
}
HEADER_DATE_FIELDS = {"date", "invoice_date"}

ADSB_FIELDS = {"adsb_type", "reference_number", "description", "status", "compliance_date", "airframe_hours"}
PART_FIELDS = {"part_number", "name", "serial_number", "quantity", "price", "supplier"}
STC_FIELDS = {"stc_number", "title", "description", "holder", "installation_date", "installation_airframe_hours"}

LIST_SECTIONS = {
    "ad_sb_references": ADSB_FIELDS,
    "parts_replaced": PART_FIELDS,
    "stc_references": STC_FIELDS,
}


def _normalize_item(item: Dict[str, Any], allowed: set) -> Dict[str, Any]:
    out = {}
    for k, v in item.items():
        if k not in allowed:
            continue
        if k in {"airframe_hours", "price", "installation_airframe_hours"}:
            out[k] = to_float_or_none(v)
        elif k == "quantity":
            q = to_int_or_none(v)
            out[k] = q if q is not None and q >= 0 else 1
        elif k in {"compliance_date", "installation_date"}:
            out[k] = to_date_iso(v)
        else:
            out[k] = strip_or_none(v)
    if "adsb_type" in out:
        t = (out["adsb_type"] or "AD").upper()
        out["adsb_type"] = t if t in ("AD", "SB") else "AD"
    if "status" in out and out["status"]:
        out["status"] = out["status"].upper()
    return out


def normalize_payload(payload: Dict[str, Any], strict: bool = False) -> Dict[str, Any]:
    """Keep only known fields and normalize their types.

    Sections and items of the wrong shape are dropped, or rejected with
    ``InvalidInput`` when ``strict`` (human-validated input).
    """
    out: Dict[str, Any] = {}
    for k, v in payload.items():
        if k in LIST_SECTIONS:
            if v is None:
                v = []
            if not isinstance(v, list):
                if strict:
                    raise InvalidInput(f"{k} must be a list")
                continue
            items: List[Dict[str, Any]] = []
            for idx, item in enumerate(v):
                if isinstance(item, dict):
                    items.append(_normalize_item(item, LIST_SECTIONS[k]))
                elif strict:
                    raise InvalidInput(f"{k} items must be objects", index=idx)
            out[k] = items
        elif k in HEADER_DATE_FIELDS:
            out[k] = to_date_iso(v)
        elif k in HEADER_NUMBER_FIELDS:
            n = to_float_or_none(v)
            out[k] = n if n is not None and n >= 0 else None
        elif k in HEADER_TEXT_FIELDS:
            out[k] = strip_or_none(v)
    return out

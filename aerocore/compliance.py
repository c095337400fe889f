"""
Reference status for time- and hour-limited components.

Everything computed here is an advisory signal meant to draw a human's
attention. It is never an airworthiness determination and is never stored.
"""
from datetime import date
from typing import Any, Dict, Mapping, Optional

import pandas as pd

from .utils import to_date_iso, to_float_or_none

OK = "ok"
WARNING = "warning"
EXPIRED = "expired"
UNKNOWN = "unknown"
STATUSES = (OK, WARNING, EXPIRED, UNKNOWN)

DISCLAIMER = (
    "Reference information only. This is not an airworthiness or regulatory "
    "compliance determination; verify every item against the aircraft records."
)

# Intervals set by policy, not by the operator
FIXED_POLICY = {
    "propeller_interval_months": 60,
    "airframe_interval_months": 60,
    "avionics_interval_months": 24,
    "elt_test_interval_months": 12,
    "elt_battery_min_months": 24,
    "elt_battery_max_months": 72,
    "magnetos_limit_hours": 500.0,
    "vacuum_pump_limit_hours": 400.0,
}

# item -> (snapshot key of the "last performed" date, policy key)
DATE_ITEMS = {
    "avionics": ("avionics_certification_date", "avionics_interval_months"),
    "propeller": ("propeller_inspection_date", "propeller_interval_months"),
    "airframe": ("airframe_inspection_date", "airframe_interval_months"),
    "elt_test": ("elt_last_test_date", "elt_test_interval_months"),
}

# item -> (snapshot key of the replacement date, snapshot key of the printed expiry)
WINDOW_ITEMS = {
    "elt_battery": ("elt_battery_replaced_date", "elt_battery_expiry_date"),
}

# item -> (snapshot key of hours used, snapshot or policy key of the limit)
HOUR_ITEMS = {
    "engine": ("engine_hours", "engine_tbo_hours"),
    "magnetos": ("magnetos_hours_since_inspection", "magnetos_limit_hours"),
    "vacuum_pump": ("vacuum_pump_hours_since_replacement", "vacuum_pump_limit_hours"),
}

# raised by pandas or datetime for dates they cannot represent
_DATE_ERRORS = (pd.errors.OutOfBoundsDatetime, OverflowError, ValueError)


def _parse_date(x: Any) -> Optional[date]:
    iso = to_date_iso(x)
    return date.fromisoformat(iso) if iso else None


def _unknown(unit: str, limit: Any = None) -> Dict[str, Any]:
    return {"status": UNKNOWN, "remaining": None, "unit": unit, "limit": limit, "used": None}


def _battery_limit():
    return [FIXED_POLICY["elt_battery_min_months"], FIXED_POLICY["elt_battery_max_months"]]


def add_months(d: date, months: int) -> Optional[date]:
    """Calendar-month offset clamped to month end; None when out of range."""
    try:
        return (pd.Timestamp(d) + pd.DateOffset(months=months)).date()
    except _DATE_ERRORS:
        return None


def evaluate_hours(hours_since: Any, limit: Any, warning_ratio: float) -> Dict[str, Any]:
    used = to_float_or_none(hours_since)
    lim = to_float_or_none(limit)
    if lim is None or lim <= 0:
        return _unknown("hours")
    if used is None or used < 0:
        return _unknown("hours", lim)
    if used >= lim:
        status = EXPIRED
    elif used >= warning_ratio * lim:
        status = WARNING
    else:
        status = OK
    return {"status": status, "remaining": round(lim - used, 1), "unit": "hours", "limit": lim, "used": used}


def evaluate_window(last: date, due: date, as_of: date, warning_ratio: float, limit: Any) -> Dict[str, Any]:
    total_days = (due - last).days
    elapsed = (as_of - last).days
    if as_of > due:
        status = EXPIRED
    elif elapsed >= warning_ratio * total_days:
        status = WARNING
    else:
        status = OK
    return {
        "status": status,
        "remaining": (due - as_of).days,
        "unit": "days",
        "limit": limit,
        "used": elapsed,
        "last": last.isoformat(),
        "due": due.isoformat(),
    }


def evaluate_date(last: Any, interval_months: int, as_of: date, warning_ratio: float) -> Dict[str, Any]:
    last_date = _parse_date(last)
    if last_date is None or last_date > as_of:
        return _unknown("days", interval_months)
    due = add_months(last_date, interval_months)
    if due is None:
        return _unknown("days", interval_months)
    return evaluate_window(last_date, due, as_of, warning_ratio, interval_months)


def evaluate_battery(replaced: Any, expiry: Any, as_of: date, warning_ratio: float) -> Dict[str, Any]:
    """ELT battery, counted from replacement to the expiry printed on the pack.

    An expiry outside the 24 to 72 month policy life is treated as unreadable.
    """
    limit = _battery_limit()
    last_date, due = _parse_date(replaced), _parse_date(expiry)
    if last_date is None or due is None or last_date > as_of:
        return _unknown("days", limit)
    earliest, latest = add_months(last_date, limit[0]), add_months(last_date, limit[1])
    if earliest is None or latest is None or not earliest <= due <= latest:
        return _unknown("days", limit)
    return evaluate_window(last_date, due, as_of, warning_ratio, limit)


def evaluate(snapshot: Mapping[str, Any], as_of: Any, warning_ratio: float = 0.9) -> Dict[str, Dict[str, Any]]:
    """Map each tracked item to its reference status as of ``as_of``.

    Missing or unparseable inputs give ``unknown``; nothing here raises on
    bad data and nothing defaults to ``ok``.
    """
    snapshot = snapshot or {}
    as_of_date = _parse_date(as_of)
    out: Dict[str, Dict[str, Any]] = {}

    for item, (last_key, policy_key) in DATE_ITEMS.items():
        months = FIXED_POLICY[policy_key]
        if as_of_date is None:
            out[item] = _unknown("days", months)
        else:
            out[item] = evaluate_date(snapshot.get(last_key), months, as_of_date, warning_ratio)

    for item, (replaced_key, expiry_key) in WINDOW_ITEMS.items():
        if as_of_date is None:
            out[item] = _unknown("days", _battery_limit())
        else:
            out[item] = evaluate_battery(snapshot.get(replaced_key), snapshot.get(expiry_key), as_of_date, warning_ratio)

    for item, (used_key, limit_key) in HOUR_ITEMS.items():
        limit = FIXED_POLICY.get(limit_key, snapshot.get(limit_key))
        out[item] = evaluate_hours(snapshot.get(used_key), limit, warning_ratio)

    return out


def summarize(result: Mapping[str, Mapping[str, Any]]) -> Dict[str, int]:
    counts = {s: 0 for s in STATUSES}
    for entry in result.values():
        counts[entry["status"]] += 1
    return counts

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, UploadFile, File, Form, HTTPException, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .bulletins import BulletinFeed
from .compliance import DISCLAIMER, evaluate, summarize
from .config import parse_csv_env
from .db import init_db
from .errors import AerocoreError, InvalidInput
from .quota import QuotaLedger
from .records import MaintenanceRecordStore
from .scans import ScanLifecycleManager, summarize_scan
from .utils import to_date_iso
from .vision import OpenAIVisionExtractor, VisionExtractor

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="AeroLogix maintenance core")

_allow_origins = ["*"] if config.ALLOWED_ORIGINS.strip() == "*" else parse_csv_env(config.ALLOWED_ORIGINS)
_allow_methods = ["*"] if config.CORS_ALLOW_METHODS.strip() == "*" else parse_csv_env(config.CORS_ALLOW_METHODS)
_allow_headers = ["*"] if config.CORS_ALLOW_HEADERS.strip() == "*" else parse_csv_env(config.CORS_ALLOW_HEADERS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allow_origins,
    allow_credentials=config.CORS_ALLOW_CREDENTIALS,
    allow_methods=_allow_methods,
    allow_headers=_allow_headers,
)


def configure(
    target: FastAPI,
    db_path=None,
    extractor: Optional[VisionExtractor] = None,
    clock: Callable[[], datetime] = datetime.utcnow,
) -> None:
    """Build the services with their collaborators and attach them to the app."""
    init_db(db_path)
    store = MaintenanceRecordStore(db_path)
    quota = QuotaLedger(db_path, clock=clock)
    target.state.clock = clock
    target.state.store = store
    target.state.quota = quota
    target.state.bulletins = BulletinFeed(db_path)
    target.state.scans = ScanLifecycleManager(store, quota, extractor or OpenAIVisionExtractor(), clock=clock)


configure(app)


@app.exception_handler(AerocoreError)
async def handle_core_error(request: Request, exc: AerocoreError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def current_account(request: Request, x_account_id: Optional[str] = Header(None)) -> str:
    account_id = (x_account_id or "").strip()
    if not account_id:
        raise HTTPException(status_code=401, detail="X-Account-Id header required")
    request.app.state.store.ensure_account(account_id)
    return account_id


def _owned_aircraft(request: Request, account_id: str, aircraft_id: int) -> Dict[str, Any]:
    return request.app.state.store.get_aircraft(account_id, aircraft_id)


@app.get("/health")
def health():
    return {"ok": True}


# ---------------------- Aircraft ----------------------
@app.post("/api/aircraft")
def create_aircraft(payload: Dict[str, Any], request: Request, account_id: str = Depends(current_account)):
    return request.app.state.store.create_aircraft(
        account_id,
        payload.get("registration"),
        payload.get("model") or "N/A",
        hours={k: payload.get(k) for k in ("airframe_hours", "engine_hours", "propeller_hours")},
    )


@app.get("/api/aircraft")
def list_aircraft(request: Request, account_id: str = Depends(current_account)):
    return request.app.state.store.list_aircraft(account_id)


@app.get("/api/aircraft/{aircraft_id}")
def get_aircraft(aircraft_id: int, request: Request, account_id: str = Depends(current_account)):
    return _owned_aircraft(request, account_id, aircraft_id)


@app.delete("/api/aircraft/{aircraft_id}")
def delete_aircraft(aircraft_id: int, request: Request, account_id: str = Depends(current_account)):
    request.app.state.store.delete_aircraft(account_id, aircraft_id)
    return {"id": aircraft_id, "status": "deleted"}


# ---------------------- Limits & reference status ----------------------
@app.get("/api/aircraft/{aircraft_id}/limits")
def get_limits(aircraft_id: int, request: Request, account_id: str = Depends(current_account)):
    _owned_aircraft(request, account_id, aircraft_id)
    return request.app.state.store.get_limits_snapshot(aircraft_id)


@app.put("/api/aircraft/{aircraft_id}/limits")
def update_limits(aircraft_id: int, payload: Dict[str, Any], request: Request, account_id: str = Depends(current_account)):
    _owned_aircraft(request, account_id, aircraft_id)
    return request.app.state.store.update_limits(aircraft_id, payload, actor=account_id)


@app.get("/api/aircraft/{aircraft_id}/compliance")
def get_compliance(
    aircraft_id: int,
    request: Request,
    as_of: Optional[str] = None,
    account_id: str = Depends(current_account),
):
    _owned_aircraft(request, account_id, aircraft_id)
    if as_of is None:
        as_of_iso = request.app.state.clock().date().isoformat()
    else:
        as_of_iso = to_date_iso(as_of)
        if as_of_iso is None:
            raise InvalidInput("as_of must be a date (YYYY-MM-DD)")
    snapshot = request.app.state.store.get_limits_snapshot(aircraft_id)
    items = evaluate(snapshot, as_of_iso, config.COMPLIANCE_WARNING_RATIO)
    return {
        "aircraft_id": aircraft_id,
        "as_of": as_of_iso,
        "advisory": True,
        "disclaimer": DISCLAIMER,
        "items": items,
        "summary": summarize(items),
        "new_reference_item": request.app.state.bulletins.has_new_reference_item(aircraft_id),
    }


# ---------------------- Bulletin alerts ----------------------
@app.get("/api/aircraft/{aircraft_id}/alerts")
def list_alerts(aircraft_id: int, request: Request, account_id: str = Depends(current_account)):
    _owned_aircraft(request, account_id, aircraft_id)
    feed = request.app.state.bulletins
    alerts = feed.alerts(aircraft_id)
    return {
        "aircraft_id": aircraft_id,
        "advisory": True,
        "new_reference_item": any(not a["is_read"] for a in alerts),
        "alerts": alerts,
    }


@app.post("/api/aircraft/{aircraft_id}/alerts")
def push_alert(aircraft_id: int, payload: Dict[str, Any], request: Request, account_id: str = Depends(current_account)):
    _owned_aircraft(request, account_id, aircraft_id)
    alert_id = request.app.state.bulletins.push(
        aircraft_id,
        payload.get("type"),
        reference=payload.get("reference"),
        title=payload.get("title"),
        message=payload.get("message"),
    )
    return {"id": alert_id}


@app.post("/api/aircraft/{aircraft_id}/alerts/{alert_id}/read")
def mark_alert_read(aircraft_id: int, alert_id: int, request: Request, account_id: str = Depends(current_account)):
    _owned_aircraft(request, account_id, aircraft_id)
    request.app.state.bulletins.mark_read(aircraft_id, alert_id)
    return {"id": alert_id, "is_read": True}


# ---------------------- Records & audit ----------------------
@app.get("/api/aircraft/{aircraft_id}/records/{kind}")
def list_records(
    aircraft_id: int,
    kind: str,
    request: Request,
    limit: int = 100,
    offset: int = 0,
    account_id: str = Depends(current_account),
):
    _owned_aircraft(request, account_id, aircraft_id)
    return request.app.state.store.list_records(aircraft_id, kind, limit, offset)


@app.get("/api/aircraft/{aircraft_id}/audit")
def get_aircraft_audit(
    aircraft_id: int,
    request: Request,
    limit: int = 50,
    offset: int = 0,
    account_id: str = Depends(current_account),
):
    _owned_aircraft(request, account_id, aircraft_id)
    return request.app.state.store.list_audit(aircraft_id, limit, offset)


# ---------------------- Scans ----------------------
@app.get("/api/ocr/quota/status")
def quota_status(request: Request, account_id: str = Depends(current_account)):
    return request.app.state.quota.status(account_id)


@app.post("/api/ocr/scan")
async def scan_document(
    request: Request,
    aircraft_id: int = Form(...),
    document_type: str = Form(""),
    image: Optional[UploadFile] = File(None),
    account_id: str = Depends(current_account),
):
    content = await image.read() if image is not None else b""
    scans: ScanLifecycleManager = request.app.state.scans
    # the lifecycle blocks on the extractor; keep it off the event loop
    scan = await run_in_threadpool(scans.submit, account_id, aircraft_id, document_type, content)
    return summarize_scan(scan)


@app.get("/api/ocr/history/{aircraft_id}")
def get_history(aircraft_id: int, request: Request, limit: int = 20, account_id: str = Depends(current_account)):
    rows = request.app.state.scans.history(account_id, aircraft_id, limit)
    return [summarize_scan(r) for r in rows]


@app.get("/api/ocr/check-duplicates/{scan_id}")
def check_duplicates(scan_id: str, request: Request, account_id: str = Depends(current_account)):
    return request.app.state.scans.check_duplicates(account_id, scan_id)


@app.post("/api/ocr/apply/{scan_id}")
def apply_scan(scan_id: str, payload: Dict[str, Any], request: Request, account_id: str = Depends(current_account)):
    fields = payload.get("validated_fields")
    if fields is None:
        raise InvalidInput("validated_fields is required")
    scan = request.app.state.scans.apply(account_id, scan_id, fields, selections=payload.get("selections"))
    return {"scan_id": scan_id, "state": scan["state"], "applied": scan["applied_ids"]}


@app.post("/api/ocr/reject/{scan_id}")
def reject_scan(scan_id: str, request: Request, account_id: str = Depends(current_account)):
    scan = request.app.state.scans.reject(account_id, scan_id)
    return {"scan_id": scan_id, "state": scan["state"]}


@app.post("/api/ocr/{scan_id}/validation")
def begin_validation(scan_id: str, request: Request, account_id: str = Depends(current_account)):
    return request.app.state.scans.begin_validation(account_id, scan_id)


@app.get("/api/ocr/{scan_id}")
def get_scan(scan_id: str, request: Request, account_id: str = Depends(current_account)):
    return summarize_scan(request.app.state.scans.get(account_id, scan_id))

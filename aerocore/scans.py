"""
Scan lifecycle: submission, extraction, human validation, apply or reject.

    submitted -> extracting -> extracted -> validating -> validated -> applied
                     |                                        |
                     +-> failed          (any non-terminal) --+-> rejected
"""
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from .config import EXTRACTION_TIMEOUT_SECONDS, MAX_IMAGE_BYTES
from .compliance import DISCLAIMER
from .errors import (
    ExtractionFailed,
    InvalidInput,
    InvalidStateTransition,
    NotFound,
)
from .quota import QuotaLedger
from .records import MaintenanceRecordStore, parse_selections
from .utils import normalize_payload, sha256_bytes, utc_now_iso
from .vision import VisionExtractor

logger = logging.getLogger(__name__)

DOCUMENT_TYPES = ("maintenance_report", "invoice", "stc", "other")

SUBMITTED = "submitted"
EXTRACTING = "extracting"
EXTRACTED = "extracted"
VALIDATING = "validating"
VALIDATED = "validated"
APPLIED = "applied"
REJECTED = "rejected"
FAILED = "failed"

TRANSITIONS = {
    SUBMITTED: {EXTRACTING, REJECTED},
    EXTRACTING: {EXTRACTED, FAILED, REJECTED},
    EXTRACTED: {VALIDATING, REJECTED},
    VALIDATING: {VALIDATED, REJECTED},
    VALIDATED: {VALIDATED, APPLIED, REJECTED},
    APPLIED: set(),
    REJECTED: set(),
    FAILED: set(),
}
TERMINAL = {s for s, targets in TRANSITIONS.items() if not targets}
NON_TERMINAL = [s for s in TRANSITIONS if s not in TERMINAL]


def sources_for(to_state: str) -> List[str]:
    return [s for s, targets in TRANSITIONS.items() if to_state in targets]


def summarize_scan(scan: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "scan_id": scan["id"],
        "aircraft_id": scan["aircraft_id"],
        "document_type": scan["document_type"],
        "state": scan["state"],
        "extracted_data": scan.get("raw_payload"),
        "validated_data": scan.get("validated_payload"),
        "applied": scan.get("applied_ids"),
        "error_message": scan.get("error_message"),
        "created_at": scan["created_at"],
        "updated_at": scan["updated_at"],
    }


def review_fields(payload: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Field-level view of an extraction for human review."""
    confidence = payload.get("confidence")
    if not isinstance(confidence, Mapping):
        confidence = {}
    out = []
    for name, value in payload.items():
        if name == "confidence":
            continue
        c = confidence.get(name)
        out.append({
            "field": name,
            "value": value,
            "confidence": c if isinstance(c, (int, float)) and not isinstance(c, bool) else None,
        })
    return out


class ScanLifecycleManager:
    def __init__(
        self,
        store: MaintenanceRecordStore,
        quota: QuotaLedger,
        extractor: VisionExtractor,
        clock: Callable[[], datetime] = datetime.utcnow,
        extraction_timeout: float = EXTRACTION_TIMEOUT_SECONDS,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.store = store
        self.quota = quota
        self.extractor = extractor
        self.clock = clock
        self.extraction_timeout = extraction_timeout
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="vision")
        # striped per-scan locks
        self._locks = [threading.Lock() for _ in range(64)]

    def _lock_for(self, scan_id: str) -> threading.Lock:
        return self._locks[hash(scan_id) % len(self._locks)]

    def _transition(self, scan_id: str, to_state: str, from_states: Optional[List[str]] = None, **fields) -> bool:
        return self.store.transition_scan(
            scan_id, from_states or sources_for(to_state), to_state, self.clock(), **fields
        )

    def _require_transition(self, scan: Mapping[str, Any], to_state: str, from_states: Optional[List[str]] = None, **fields) -> None:
        if not self._transition(scan["id"], to_state, from_states, **fields):
            current = self.store.get_scan(scan["id"])
            raise InvalidStateTransition(
                f"Cannot move scan from {current['state']} to {to_state}",
                scan_id=scan["id"], state=current["state"], requested=to_state,
            )

    # ---------------------- queries ----------------------
    def get(self, account_id: str, scan_id: str) -> Dict[str, Any]:
        scan = self.store.get_scan(scan_id)
        if not scan or scan["account_id"] != account_id:
            raise NotFound("Scan not found", scan_id=scan_id)
        return scan

    def history(self, account_id: str, aircraft_id: int, limit: int = 20) -> List[Dict[str, Any]]:
        self.store.get_aircraft(account_id, aircraft_id)
        return self.store.list_scans(account_id, aircraft_id, limit)

    def check_duplicates(self, account_id: str, scan_id: str) -> Dict[str, Any]:
        scan = self.get(account_id, scan_id)
        if scan["state"] not in (EXTRACTED, VALIDATING, VALIDATED):
            raise InvalidStateTransition(
                "Duplicates can only be checked on an extracted scan", scan_id=scan_id, state=scan["state"]
            )
        if scan["aircraft_id"] is None:
            raise NotFound("Aircraft not found", scan_id=scan_id)
        fields = normalize_payload(scan.get("validated_payload") or scan.get("raw_payload") or {})
        report = self.store.check_duplicates(scan["aircraft_id"], scan["document_type"], fields)
        return {"scan_id": scan_id, **report}

    # ---------------------- submit ----------------------
    def _run_extraction(self, image: bytes, document_type: str) -> Dict[str, Any]:
        future = self.executor.submit(self.extractor.extract, image, document_type)
        try:
            payload = future.result(timeout=self.extraction_timeout)
        except FutureTimeout:
            raise ExtractionFailed(f"Extraction timed out after {self.extraction_timeout:g}s")
        except ExtractionFailed:
            raise
        except Exception as e:
            raise ExtractionFailed(f"Extraction error: {e}") from e
        if not isinstance(payload, Mapping):
            raise ExtractionFailed("Extraction returned a malformed payload")
        return dict(payload)

    def submit(self, account_id: str, aircraft_id: int, document_type: str, image: bytes) -> Dict[str, Any]:
        document_type = (document_type or "").strip().lower()
        if document_type not in DOCUMENT_TYPES:
            raise InvalidInput(f"Unsupported document type '{document_type}'", allowed=list(DOCUMENT_TYPES))
        if not image:
            raise InvalidInput("image is required")
        if len(image) > MAX_IMAGE_BYTES:
            raise InvalidInput("image is too large", max_bytes=MAX_IMAGE_BYTES)
        self.store.get_aircraft(account_id, aircraft_id)

        token = self.quota.reserve(account_id)
        now = utc_now_iso(self.clock())
        scan_id = uuid.uuid4().hex
        scan = {
            "id": scan_id,
            "account_id": account_id,
            "aircraft_id": aircraft_id,
            "document_type": document_type,
            "state": SUBMITTED,
            "image_sha256": sha256_bytes(image),
            "reservation_token": token.token,
            "created_at": now,
            "updated_at": now,
        }
        try:
            self.store.record_scan_history_entry(scan)
            self._require_transition(scan, EXTRACTING, [SUBMITTED])
        except Exception:
            self.quota.release(token)
            raise
        logger.info(f"Scan {scan_id} extracting ({document_type}) for aircraft {aircraft_id}")

        try:
            payload = self._run_extraction(image, document_type)
        except ExtractionFailed as e:
            logger.error(f"Scan {scan_id} failed: {e}")
            self.quota.release(token)
            self._transition(scan_id, FAILED, [EXTRACTING], error_message=str(e))
            raise ExtractionFailed(str(e), scan_id=scan_id) from e

        # the slot is spent once extraction succeeded, even if the scan was rejected meanwhile
        self.quota.commit(token)
        if not self._transition(scan_id, EXTRACTED, [EXTRACTING], raw_payload=payload):
            logger.info(f"Scan {scan_id} left extracting before extraction completed")
        else:
            logger.info(f"Scan {scan_id} extracted")
        return self.store.get_scan(scan_id)

    # ---------------------- validation round-trip ----------------------
    def begin_validation(self, account_id: str, scan_id: str) -> Dict[str, Any]:
        with self._lock_for(scan_id):
            scan = self.get(account_id, scan_id)
            if scan["state"] == EXTRACTED:
                self._require_transition(scan, VALIDATING, [EXTRACTED])
            elif scan["state"] != VALIDATING:
                raise InvalidStateTransition(
                    f"Cannot validate a scan in state {scan['state']}", scan_id=scan_id, state=scan["state"]
                )
        return {
            "scan_id": scan_id,
            "document_type": scan["document_type"],
            "state": VALIDATING,
            "fields": review_fields(scan.get("raw_payload") or {}),
            "disclaimer": DISCLAIMER,
        }

    def apply(
        self,
        account_id: str,
        scan_id: str,
        validated_fields: Mapping[str, Any],
        selections: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    ) -> Dict[str, Any]:
        if not isinstance(validated_fields, Mapping):
            raise InvalidInput("validated_fields must be an object")
        fields = normalize_payload(dict(validated_fields), strict=True)
        parse_selections(selections)
        with self._lock_for(scan_id):
            scan = self.get(account_id, scan_id)
            if scan["state"] not in (VALIDATING, VALIDATED):
                raise InvalidStateTransition(
                    f"Cannot apply a scan in state {scan['state']}", scan_id=scan_id, state=scan["state"]
                )
            self._require_transition(scan, VALIDATED, [VALIDATING, VALIDATED], validated_payload=fields)
            if scan["aircraft_id"] is None:
                raise NotFound("Aircraft not found", scan_id=scan_id)
            # RecordStoreWriteFailed leaves the scan validated for a retry
            self.store.apply_validated_fields(
                scan["aircraft_id"],
                scan["document_type"],
                fields,
                scan_id=scan_id,
                selections=selections,
                actor=account_id,
                now=self.clock(),
            )
        logger.info(f"Scan {scan_id} applied")
        return self.store.get_scan(scan_id)

    def reject(self, account_id: str, scan_id: str) -> Dict[str, Any]:
        """Reject a scan. No record write and no quota refund."""
        with self._lock_for(scan_id):
            scan = self.get(account_id, scan_id)
            self._require_transition(scan, REJECTED, NON_TERMINAL)
        logger.info(f"Scan {scan_id} rejected")
        return self.store.get_scan(scan_id)

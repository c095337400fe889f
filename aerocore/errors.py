from typing import Any, Dict, Optional


class AerocoreError(Exception):
    code = "error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"detail": self.message, "code": self.code, "retryable": self.retryable}
        if self.context:
            out["context"] = self.context
        return out


class InvalidInput(AerocoreError):
    """Malformed request, rejected before any quota reservation."""
    code = "invalid_input"
    status_code = 400


class NotFound(AerocoreError):
    code = "not_found"
    status_code = 404


class QuotaExceeded(AerocoreError):
    """No retry until the current quota period ends."""
    code = "quota_exceeded"
    status_code = 403

    def __init__(self, message: str, period_end: Optional[str] = None, **context: Any):
        super().__init__(message, period_end=period_end, **context)
        self.period_end = period_end


class ExtractionFailed(AerocoreError):
    """Retryable with a new submission; the reservation has been released."""
    code = "extraction_failed"
    status_code = 502
    retryable = True


class InvalidStateTransition(AerocoreError):
    code = "invalid_state_transition"
    status_code = 409


class RecordStoreWriteFailed(AerocoreError):
    """The scan stays validated; apply may be retried."""
    code = "record_store_write_failed"
    status_code = 503
    retryable = True

from typing import Dict, Optional
from fastapi import status


class RfqWorkflowError(Exception):
    """
    Base class for every failure the RFQ workflow surfaces to a caller.

    Each subclass carries the HTTP status it maps to and whether the caller
    may safely retry. `fields` holds field-level detail for validation errors,
    e.g. {"items[0].quantity": "Quantity must be greater than zero."}.
    """
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "rfq_error"
    retryable: bool = False

    def __init__(self, detail: str, fields: Optional[Dict[str, str]] = None):
        super().__init__(detail)
        self.detail = detail
        self.fields = fields or {}


class ValidationError(RfqWorkflowError):
    """Malformed input: empty item list, non-positive price or quantity, unknown material."""
    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    code = "validation_error"


class NotAuthorizedError(RfqWorkflowError):
    """The actor is not entitled to act on this RFQ."""
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_authorized"


class NotFoundError(RfqWorkflowError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ConflictError(RfqWorkflowError):
    """The RFQ or quote is no longer in the expected state. Refresh and retry."""
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class RfqExpiredError(RfqWorkflowError):
    status_code = status.HTTP_410_GONE
    code = "rfq_expired"


class AcceptanceFailedError(RfqWorkflowError):
    """The acceptance transaction was rolled back. Nothing was applied."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "acceptance_failed"
    retryable = True


class TransientError(RfqWorkflowError):
    """Storage or network timeout. Retry with backoff."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "transient_error"
    retryable = True

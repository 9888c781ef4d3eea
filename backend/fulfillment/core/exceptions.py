"""
Fulfillment Exception Hierarchy

Structured exception classes for the claim lifecycle, label generation and
the clone saga. All exceptions include code, message, and details for audit
trail and debugging, plus the HTTP status they map to.

Exception Hierarchy:
    FulfillmentError
    ├── NotFoundError
    ├── InvalidStateError
    ├── ForbiddenError
    ├── UnauthorizedError
    ├── NothingClaimedError
    ├── LabelNotReadyError
    ├── NoServiceableCarrierError
    ├── RemoteError
    │   ├── ShipwayAPIError
    │   ├── MalformedCarrierResponseError
    │   └── RemoteUnconfirmedError
    └── SagaStepExhaustedError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class FulfillmentError(Exception):
    """
    Base exception for all fulfillment errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        status_code: HTTP status the API layer responds with
        retryable: Whether the saga retry helper may attempt the step again
    """

    default_code: str = "FULFILLMENT_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# LOCAL VALIDATION ERRORS (never retried)
# =============================================================================

class NotFoundError(FulfillmentError):
    """No order line / order matches the given id."""
    default_code = "NOT_FOUND"
    status_code = 404


class InvalidStateError(FulfillmentError):
    """The line is not in the status the requested transition starts from."""
    default_code = "INVALID_STATE"
    status_code = 400

    def __init__(
        self,
        message: str,
        unique_id: Optional[str] = None,
        current_status: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "unique_id": unique_id,
            "current_status": current_status,
        })
        super().__init__(message, details=details, **kwargs)


class ForbiddenError(FulfillmentError):
    """The line is owned by a different vendor."""
    default_code = "FORBIDDEN"
    status_code = 403


class UnauthorizedError(FulfillmentError):
    """Missing, unknown or inactive vendor session."""
    default_code = "UNAUTHORIZED"
    status_code = 401


class NothingClaimedError(FulfillmentError):
    """The vendor owns none of the order's lines."""
    default_code = "NOTHING_CLAIMED"
    status_code = 400


class LabelNotReadyError(FulfillmentError):
    """Mark-ready requested before every owned line has a downloaded label."""
    default_code = "LABEL_NOT_READY"
    status_code = 400

    def __init__(
        self,
        message: str,
        order_id: Optional[str] = None,
        pending_unique_ids: Optional[list] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "order_id": order_id,
            "pending_unique_ids": pending_unique_ids or [],
        })
        super().__init__(message, details=details, **kwargs)


class NoServiceableCarrierError(FulfillmentError):
    """No active carrier services the pincode for the payment type."""
    default_code = "NO_SERVICEABLE_CARRIER"
    status_code = 400

    def __init__(
        self,
        message: str,
        pincode: Optional[str] = None,
        payment_type: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "pincode": pincode,
            "payment_type": payment_type,
        })
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# REMOTE ERRORS (retried inside the saga)
# =============================================================================

class RemoteError(FulfillmentError):
    """Base exception for failures talking to the order-management network."""
    default_code = "REMOTE_ERROR"
    status_code = 500
    retryable = True


class ShipwayAPIError(RemoteError):
    """HTTP error, network error or unsuccessful response body."""
    default_code = "SHIPWAY_API_ERROR"

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        endpoint: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "http_status": http_status,
            "endpoint": endpoint,
        })
        super().__init__(message, details=details, **kwargs)


class MalformedCarrierResponseError(RemoteError):
    """Label response carried neither a shipping URL nor an AWB."""
    default_code = "MALFORMED_CARRIER_RESPONSE"


class RemoteUnconfirmedError(RemoteError):
    """A create/update was accepted but re-querying did not confirm it."""
    default_code = "REMOTE_UNCONFIRMED"

    def __init__(
        self,
        message: str,
        order_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["order_id"] = order_id
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# SAGA ERRORS
# =============================================================================

class SagaStepExhaustedError(FulfillmentError):
    """Every attempt of a saga step failed; the remaining steps are aborted."""
    default_code = "SAGA_STEP_EXHAUSTED"
    status_code = 500

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        attempts: Optional[int] = None,
        last_error: Optional[BaseException] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "step": step,
            "attempts": attempts,
            "last_error": str(last_error) if last_error else None,
            "last_error_code": getattr(last_error, "code", None),
        })
        super().__init__(message, details=details, **kwargs)
        self.step = step
        self.last_error = last_error

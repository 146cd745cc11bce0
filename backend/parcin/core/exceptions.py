"""
Parcin Exception Hierarchy

All domain exceptions carry a code, message, and details so routers and
logs render them the same way.

Exception Hierarchy:
    ParcinError
    ├── NotFoundError
    ├── InvalidStateError
    │   └── ArrivalWindowExpired
    ├── LotUnavailableError
    │   └── NoCapacityError
    ├── ValidationError
    ├── SubscriptionRequiredError
    │   └── PlanLimitReached
    └── UpstreamFailure
        ├── PaymentProviderError
        └── VehicleCatalogError
"""
from typing import Optional, Dict, Any


class ParcinError(Exception):
    """
    Base exception for all Parcin custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        status_code: HTTP status the API layer renders this error with
    """

    default_code: str = "PARCIN_ERROR"
    status_code: int = 500

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
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class NotFoundError(ParcinError):
    """Reservation or lot id could not be resolved."""
    default_code = "NOT_FOUND"
    status_code = 404


class InvalidStateError(ParcinError):
    """Transition attempted from a state that does not permit it."""
    default_code = "INVALID_STATE"
    status_code = 400

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        event: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "current_state": current_state,
            "event": event,
        })
        super().__init__(message, details=details, **kwargs)


class ArrivalWindowExpired(InvalidStateError):
    """Check-in attempted after the arrival window; reservation is now NO_SHOW."""
    default_code = "ARRIVAL_WINDOW_EXPIRED"


class LotUnavailableError(ParcinError):
    """Lot is inactive or cannot take a booking right now."""
    default_code = "LOT_UNAVAILABLE"
    status_code = 400


class NoCapacityError(LotUnavailableError):
    """Lot has no free spots."""
    default_code = "NO_CAPACITY"


class ValidationError(ParcinError):
    """Malformed input that passed schema parsing but fails business rules."""
    default_code = "VALIDATION_ERROR"
    status_code = 400


class SubscriptionRequiredError(ParcinError):
    """Operator has no active or trialing plan."""
    default_code = "SUBSCRIPTION_REQUIRED"
    status_code = 403

    def __init__(
        self,
        message: str,
        subscription_status: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["subscription_status"] = subscription_status
        super().__init__(message, details=details, **kwargs)


class PlanLimitReached(SubscriptionRequiredError):
    """Operator's plan does not allow another lot."""
    default_code = "PLAN_LIMIT_REACHED"


class UpstreamFailure(ParcinError):
    """A third-party provider call failed."""
    default_code = "UPSTREAM_FAILURE"
    status_code = 502


class PaymentProviderError(UpstreamFailure):
    """Stripe call failed."""
    default_code = "PAYMENT_PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        provider_code: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["provider_code"] = provider_code
        super().__init__(message, details=details, **kwargs)


class VehicleCatalogError(UpstreamFailure):
    """Vehicle brand/model lookup failed."""
    default_code = "VEHICLE_CATALOG_ERROR"

# campus_eats/exceptions.py
from typing import Any, Dict, Optional


class CampusEatsError(Exception):
    """Base class for errors surfaced to callers of the services"""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"success": False, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CampusEatsError):
    """Bad input: missing item, zero quantity, mismatched cafeteria"""


class StockError(CampusEatsError):
    """Requested quantity exceeds available stock"""


class InvalidStateTransition(CampusEatsError):
    """Illegal order status change"""

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot move order from '{current}' to '{requested}'",
            {"current": current, "requested": requested}
        )


class InvalidOrderState(CampusEatsError):
    """Operation not allowed in the order's current payment state"""


class NotFound(CampusEatsError):
    status_code = 404


class PaymentGatewayError(CampusEatsError):
    """The mobile-money gateway rejected or failed the request"""

    status_code = 502


class ConcurrencyConflict(CampusEatsError):
    """Lost a race on a limited resource"""

    status_code = 409

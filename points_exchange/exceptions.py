"""
Custom exception hierarchy for the points-exchange client.

All exceptions inherit from PointsExchangeError so callers (the CLI, a UI
layer) can catch one type at the boundary.

Exception Hierarchy:
    PointsExchangeError (base)
    ├── ServiceError
    │   └── AuthenticationError
    ├── InvalidRequest
    └── FlowError
        ├── IneligibleProduct
        ├── InvalidQuantity
        ├── MonthlyLimitReached
        ├── QuantityExceedsLimit
        ├── InsufficientPoints
        ├── InsufficientStock
        ├── CodeCooldownActive
        ├── CodeSendFailed
        ├── MissingVerificationCode
        ├── CancelNotAllowed
        └── InvalidTransition

Usage:
    from points_exchange.exceptions import ServiceError, FlowError

    try:
        controller.request_exchange()
    except FlowError as e:
        print(e.message)
"""

from typing import Any, Dict, Optional


class PointsExchangeError(Exception):
    """
    Base exception for all client errors.

    Attributes:
        message: Human-readable error message
        detail: Optional dict with additional error context
        status_code: HTTP status associated with the error, if any
    """

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for JSON serialization."""
        result: Dict[str, Any] = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.detail:
            result["detail"] = self.detail
        return result


class ServiceError(PointsExchangeError):
    """
    Raised when a backend call fails: transport error, timeout, non-JSON body,
    non-2xx status or an envelope whose code is not 200.

    The server message is kept verbatim in ``message``; it is the reason the
    exchange error classifier works from.

    Examples:
        raise ServiceError("积分不足", status_code=200, code=500)
        raise ServiceError("HTTP error: 502", status_code=502)
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
        detail: Optional[Dict[str, Any]] = None,
    ):
        if code is not None:
            detail = dict(detail or {}, code=code)
        super().__init__(message, detail=detail, status_code=status_code)
        self.code = code

    @property
    def reason(self) -> str:
        return self.message


class AuthenticationError(ServiceError):
    """
    Raised when the backend signals an expired or missing credential.

    The session has already been cleared by the time this propagates.
    """


class InvalidRequest(PointsExchangeError, ValueError):
    """
    Raised before any network call when caller-supplied input cannot be sent
    (negative stock, unknown status, a product draft that fails validation).
    """


class FlowError(PointsExchangeError):
    """Base class for exchange-flow rule violations detected locally."""


class IneligibleProduct(FlowError):
    def __init__(self, product_id: str, *, remaining: int, stock: int):
        super().__init__(
            f"Product {product_id} cannot be exchanged right now",
            detail={"product_id": product_id, "remaining": remaining, "stock": stock},
        )
        self.product_id = product_id


class InvalidQuantity(FlowError):
    def __init__(self, quantity: Any, *, remaining: int):
        super().__init__(
            f"Quantity must be between 1 and {remaining}",
            detail={"quantity": quantity, "remaining": remaining},
        )
        self.quantity = quantity
        self.remaining = remaining


class MonthlyLimitReached(FlowError):
    def __init__(self) -> None:
        super().__init__(
            "No exchanges left for this product this month; "
            "check back after the monthly reset"
        )


class QuantityExceedsLimit(FlowError):
    def __init__(self, remaining: int):
        super().__init__(
            f"At most {remaining} more exchange(s) allowed this month",
            detail={"remaining": remaining},
        )
        self.remaining = remaining


class InsufficientPoints(FlowError):
    def __init__(self, *, balance: int, required: int):
        super().__init__(
            "Your points balance is too low for this exchange",
            detail={"balance": balance, "required": required},
        )
        self.balance = balance
        self.required = required


class InsufficientStock(FlowError):
    def __init__(self, stock: int, *, requested: int):
        super().__init__(
            f"Only {stock} in stock, {requested} requested",
            detail={"stock": stock, "requested": requested},
        )
        self.stock = stock
        self.requested = requested


class CodeCooldownActive(FlowError):
    def __init__(self, seconds_left: int):
        super().__init__(
            f"Please wait {seconds_left}s before requesting a new code",
            detail={"seconds_left": seconds_left},
        )
        self.seconds_left = seconds_left


class CodeSendFailed(FlowError):
    def __init__(self, reason: str):
        super().__init__(f"Failed to send verification code: {reason}", detail={"reason": reason})
        self.reason = reason


class MissingVerificationCode(FlowError):
    def __init__(self) -> None:
        super().__init__("Please enter the verification code")


class CancelNotAllowed(FlowError):
    def __init__(self) -> None:
        super().__init__("An exchange is being submitted and cannot be cancelled")


class InvalidTransition(FlowError):
    def __init__(self, operation: str, state: str):
        super().__init__(
            f"Cannot {operation} while {state}",
            detail={"operation": operation, "state": state},
        )
        self.operation = operation
        self.state = state

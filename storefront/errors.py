"""
Storefront errors
=================

Every failure the commerce core reports to a caller is a ``StorefrontError``.
Each class carries the HTTP status it maps to and a stable ``code`` that the
API returns alongside the message.
"""

from typing import Any, Dict, Iterable, Optional


class StorefrontError(Exception):
    """Base class for all storefront errors"""

    status_code = 500
    code = "error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(StorefrontError):
    """Malformed input, reported with field-level detail"""

    status_code = 422
    code = "validation_error"

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message, {"errors": errors or []})


class InvalidCart(ValidationError):
    code = "invalid_cart"


class InvalidSignature(ValidationError):
    status_code = 400
    code = "invalid_signature"

    def __init__(self, message: str = "invalid webhook signature"):
        super().__init__(message)


class Unauthenticated(StorefrontError):
    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "not authenticated"):
        super().__init__(message)


class InvalidCredentials(Unauthenticated):
    code = "invalid_credentials"

    def __init__(self, message: str = "invalid credentials"):
        super().__init__(message)


class Forbidden(StorefrontError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "not authorized"):
        super().__init__(message)


class NotFound(StorefrontError):
    status_code = 404
    code = "not_found"


class ProductNotFound(NotFound):
    code = "product_not_found"

    def __init__(self, product_ids: Iterable[int]):
        self.product_ids = sorted(product_ids)
        ids = ", ".join(str(i) for i in self.product_ids)
        super().__init__(f"product not found: {ids}", {"product_ids": self.product_ids})


class OrderNotFound(NotFound):
    code = "order_not_found"

    def __init__(self, order_id: Any):
        super().__init__("order not found", {"order_id": order_id})


class Conflict(StorefrontError):
    status_code = 409
    code = "conflict"


class DuplicateUsername(Conflict):
    status_code = 400
    code = "duplicate_username"

    def __init__(self, username: str):
        super().__init__("username already registered", {"field": "username"})


class DuplicateEmail(Conflict):
    status_code = 400
    code = "duplicate_email"

    def __init__(self, email: str):
        super().__init__("email already registered", {"field": "email"})


class DuplicateSession(Conflict):
    code = "duplicate_session"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("an order already exists for this checkout session")


class InvalidTransition(Conflict):
    code = "invalid_transition"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            f"cannot move order from {current} to {requested}",
            {"current": current, "requested": requested},
        )


class ProductInUse(Conflict):
    code = "product_in_use"

    def __init__(self, product_id: int):
        super().__init__("product is referenced by existing orders", {"product_id": product_id})


class PaymentGatewayError(StorefrontError):
    status_code = 502
    code = "payment_gateway_error"


class InternalError(StorefrontError):
    status_code = 500
    code = "internal_error"

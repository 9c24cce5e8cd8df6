"""
Error taxonomy shared by every service.

Each error knows its HTTP status, a stable machine-readable code and,
optionally, the request field it refers to. The FastAPI handlers in
shared.error_handlers render them as {"error": {...}}.
"""


class AppError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        field: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.field = field

    def to_payload(self) -> dict:
        return error_payload(self.status_code, self.code, self.message, self.field)


def error_payload(status: int, code: str, message: str, field: str | None = None) -> dict:
    return {"error": {"status": status, "code": code, "message": message, "field": field}}


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_MISSING_FIELD"


class CartEmptyError(ValidationError):
    code = "CART_EMPTY"

    def __init__(self, cart_id: str):
        super().__init__(f"Cart {cart_id} has no items to check out", field="cart_id")
        self.cart_id = cart_id


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class AlreadyCapturedError(ConflictError):
    code = "ALREADY_CAPTURED"

    def __init__(self, order_id: int, status: str):
        super().__init__(f"Order {order_id} is already {status}", field="order_id")
        self.order_id = order_id
        self.order_status = status


class TransactionError(AppError):
    """The atomic commit failed and was rolled back; safe to retry."""

    status_code = 503
    code = "TRANSACTION_FAILED"


class PaymentError(AppError):
    """The gateway rejected or never answered the charge; the order is unchanged."""

    status_code = 402
    code = "PAYMENT_DECLINED"


class AuthError(AppError):
    status_code = 401
    code = "AUTH_INVALID_CREDENTIAL"


class ForbiddenError(AppError):
    status_code = 403
    code = "AUTH_FORBIDDEN"

# cartlock/domain/errors.py


class CartError(Exception):
    """
    Base error for the cart engine.
    `kind` is a stable machine-readable tag, `message` is shown to the shopper as is.
    """

    kind = "cart_error"
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": self.kind}


class ValidationError(CartError):
    kind = "validation"
    status_code = 422


class NotFoundError(CartError):
    kind = "not_found"
    status_code = 404


class ConflictError(CartError):
    kind = "conflict"
    status_code = 409


class NetworkError(CartError):
    kind = "network"
    status_code = 502


class UnauthorizedError(CartError):
    kind = "unauthorized"
    status_code = 401


class CheckoutBlockedError(CartError):
    """
    Checkout attempted while the cart is not in a checkout-ready state.
    `view` carries the pending reconciliation, if any, so one rejection reports both blockers.
    """

    kind = "checkout_blocked"
    status_code = 409

    def __init__(self, message: str, view=None):
        super().__init__(message)
        self.view = view


class LockExpiredError(CheckoutBlockedError):
    kind = "lock_expired"


class ReconciliationRequiredError(CheckoutBlockedError):
    kind = "reconciliation_required"


def error_for_status(status_code: int, message: str) -> CartError:
    if status_code in (400, 422):
        return ValidationError(message, status_code)
    if status_code in (401, 403):
        return UnauthorizedError(message, status_code)
    if status_code == 404:
        return NotFoundError(message)
    if status_code == 409:
        return ConflictError(message)
    if status_code >= 500:
        return NetworkError(message, status_code)
    return CartError(message, status_code)

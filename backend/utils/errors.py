"""Domain errors raised by the pricing and order core.

Routes translate these into HTTPException responses.
"""


class errmsg:
    """Error message constants."""

    PRODUCT_NAME_REQUIRED = "Product name is required"
    PRODUCT_PRICE_REQUIRED = "Product price is required"
    CART_EMPTY = "Cart is empty"
    CART_NO_STORE = "Select a store before checking out"
    CART_CHANGED = "Cart was modified concurrently, reload and retry"
    CART_CLOSED = "Cart was checked out, changes go to a new cart"
    ORDER_NOT_FOUND = "Order not found"
    ORDER_NOT_RECORDED = "Payment captured but order not recorded"
    ORDER_UPDATE_FAILED = "Order status could not be saved"
    STATUS_CHANGED = "Order status changed concurrently"


class InvalidCartItemError(ValueError):
    """Malformed product or cart input; the cart is left untouched."""


class CartConflictError(Exception):
    """A newer cart version was saved first."""


class CartClosedError(CartConflictError):
    """Cart was checked out while a change to it was waiting."""


class OrderNotFoundError(LookupError):
    pass


class InvalidTransitionError(Exception):
    """Requested status change is not one of the forward lifecycle steps."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from {current} to {target}")


class TransitionConflictError(Exception):
    """Stored status or version no longer matches what the caller read."""


class OrderPersistenceError(Exception):
    """Order write failed; the previously stored state is unchanged."""


class PaymentCaptureError(Exception):
    """Gateway declined or could not be reached; nothing was charged."""


class OrderNotRecordedError(OrderPersistenceError):
    """Payment went through but the order row could not be inserted.

    Needs compensating action (refund or manual entry), so it is surfaced
    separately from an ordinary persistence failure.
    """

    def __init__(self, payment_ref, cause=None):
        self.payment_ref = payment_ref
        self.cause = cause
        super().__init__(f"{errmsg.ORDER_NOT_RECORDED} (payment {payment_ref})")


class ResyncRequired(Exception):
    """Realtime subscriber fell behind; re-fetch current state."""

"""Business-rule failures raised by the order and inventory services.

Rule violations derive from ValueError so the HTTP layer can keep mapping
``ValueError`` to a 422 response. None of them is retried internally.
"""


class StorefrontError(Exception):
    """Base class for every error raised by the storefront core."""


class OrderError(StorefrontError, ValueError):
    """A request was rejected by a business rule."""


class InsufficientStock(OrderError):
    def __init__(self, sku: str, available: int, requested: int):
        self.sku = sku
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient stock for {sku}. Available: {available}, requested: {requested}")


class ProductUnavailable(OrderError):
    pass


class IllegalTransition(OrderError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current} to {target}")


class NotCancellable(OrderError):
    def __init__(self, order_number: str, status: str):
        self.order_number = order_number
        self.status = status
        super().__init__(f"Order {order_number} cannot be cancelled in {status} status")


class OrderValidationError(OrderError):
    pass


class NotFound(StorefrontError, LookupError):
    pass


class ConcurrentUpdateError(StorefrontError, RuntimeError):
    """A SKU row kept changing underneath a write after every retry."""

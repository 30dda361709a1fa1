"""Exceptions for django-stockroom."""


class StockroomError(Exception):
    """Base exception for stockroom errors."""

    status_code = 500


class NotFoundError(StockroomError):
    """A product, variant, user, order or order item does not exist."""

    status_code = 404

    def __init__(self, kind: str, identifier=None):
        self.kind = kind
        self.identifier = identifier
        if identifier is None:
            super().__init__(f"{kind} not found")
        else:
            super().__init__(f"{kind} not found: {identifier}")


class ValidationError(StockroomError):
    """Request is malformed or the target is in the wrong state."""

    status_code = 400


class VariantRequiredError(ValidationError):
    """Product has variants but no variant was given."""

    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(
            f"Product {product_id} has variants; a variant id is required"
        )


class InsufficientStockError(StockroomError):
    """Fewer free stock items than requested. Nothing was claimed."""

    status_code = 409

    def __init__(self, available: int, requested: int, product_id=None, variant_id=None):
        self.available = available
        self.requested = requested
        self.product_id = product_id
        self.variant_id = variant_id
        super().__init__(
            f"Insufficient stock: available={available}, requested={requested}"
        )


class AlreadyProcessedError(StockroomError):
    """Order was already fulfilled. Callers treat this as success."""

    status_code = 200

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} already processed")


class UpstreamPaymentError(StockroomError):
    """Error from the payment provider API."""

    status_code = 502

    def __init__(self, message: str, provider: str = "mercadopago", original_error: Exception = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(f"[{provider}] {message}")

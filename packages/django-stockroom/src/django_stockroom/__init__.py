"""Django Stockroom - Serial-code stock ledger and order fulfillment for Django."""

__version__ = "0.1.0"

__all__ = [
    # Models
    "Product",
    "Variant",
    "StockItem",
    "Order",
    "OrderItem",
    # Services
    "assign_stock",
    "bulk_import_stock",
    "fulfill_order",
    "handle_payment_notification",
    # Values
    "AssignedBy",
    "FulfillmentPolicy",
    # Exceptions
    "StockroomError",
    "NotFoundError",
    "ValidationError",
    "InsufficientStockError",
    "AlreadyProcessedError",
    "UpstreamPaymentError",
]


def __getattr__(name):
    """Lazy import to avoid AppRegistryNotReady errors."""
    if name in ("Product", "Variant", "StockItem", "Order", "OrderItem"):
        from django_stockroom import models
        return getattr(models, name)
    if name == "assign_stock":
        from django_stockroom.services import assignment
        return assignment.assign_stock
    if name == "bulk_import_stock":
        from django_stockroom.services import stock
        return stock.bulk_import_stock
    if name == "fulfill_order":
        from django_stockroom.services import fulfillment
        return fulfillment.fulfill_order
    if name == "handle_payment_notification":
        from django_stockroom.services import payments
        return payments.handle_payment_notification
    if name in ("AssignedBy", "FulfillmentPolicy"):
        from django_stockroom import values
        return getattr(values, name)
    if name in (
        "StockroomError",
        "NotFoundError",
        "ValidationError",
        "InsufficientStockError",
        "AlreadyProcessedError",
        "UpstreamPaymentError",
    ):
        from django_stockroom import exceptions
        return getattr(exceptions, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

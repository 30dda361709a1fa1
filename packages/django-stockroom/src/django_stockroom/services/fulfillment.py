"""Order fulfillment coordinator.

Drives an order from confirmed payment to delivered stock:

    pending --confirm_payment()--> paid/processing --fulfill_order()--> completed

Both steps are safe to repeat. confirm_payment() is a single conditional
UPDATE, so only one caller wins the transition. fulfill_order() holds the
order row lock for the whole run and short-circuits once product_assigned
is set.
"""

import logging
from dataclasses import dataclass, field

from django.db import transaction
from django.utils import timezone

from django_stockroom.conf import get_setting, is_discord_enabled
from django_stockroom.exceptions import (
    AlreadyProcessedError,
    InsufficientStockError,
    NotFoundError,
    StockroomError,
    ValidationError,
)
from django_stockroom.models import DeliveryType, Order, OrderItem, ProductOwnership
from django_stockroom.providers.discord import DiscordNotifier
from django_stockroom.services.assignment import assign_stock
from django_stockroom.services.stock import parse_pk
from django_stockroom.values import AssignedBy, FulfillmentPolicy

logger = logging.getLogger(__name__)


SYSTEM_FULFILLMENT = "system:fulfillment"


@dataclass
class LineFailure:
    """An order line that could not be fulfilled in this run."""

    item_id: object
    product_id: object
    variant_id: object
    reason: str
    available: int | None = None
    requested: int | None = None


@dataclass
class FulfillmentResult:
    """Outcome of fulfill_order().

    success is True once every automatic line has been delivered.
    """

    success: bool
    order_status: str
    already_processed: bool = False
    assigned: int = 0
    failures: list[LineFailure] = field(default_factory=list)


def notify_new_sale(order, notifier=None) -> None:
    """Send the order summary to Discord. Never raises."""
    if notifier is None:
        if not is_discord_enabled():
            return
        notifier = DiscordNotifier()
    try:
        notifier.send_order_summary(order)
    except Exception as e:
        logger.warning(f"Failed to send sale notification for order {order.pk}: {e}")


def confirm_payment(
    order: Order,
    snapshot: dict | None = None,
    changed_by: str = "system:webhook",
    notifier=None,
) -> bool:
    """Move a pending order to paid/processing.

    The transition is one conditional UPDATE on ``payment_status='pending'``,
    so concurrent deliveries of the same payment cannot both win. Only the
    winner appends the history entry and sends the sale notification.

    Args:
        order: The order to confirm
        snapshot: Provider status response, stored in order.metadata
        changed_by: Actor recorded in the status history

    Returns:
        True if this call performed the transition
    """
    now = timezone.now()
    metadata = dict(order.metadata or {})
    if snapshot is not None:
        metadata["payment_status_response"] = snapshot
    metadata["payment_confirmed_at"] = now.isoformat()

    won = (
        Order.objects.filter(pk=order.pk, payment_status=Order.PaymentStatus.PENDING).update(
            payment_status=Order.PaymentStatus.PAID,
            order_status=Order.OrderStatus.PROCESSING,
            paid_at=now,
            metadata=metadata,
            updated_at=now,
        )
        == 1
    )
    order.refresh_from_db()
    if not won:
        logger.info(f"Order {order.pk} payment already confirmed (status {order.payment_status})")
        return False

    order.record_status(Order.PaymentStatus.PAID, changed_by, reason="Payment approved")
    logger.info(f"Order {order.pk} payment confirmed by {changed_by}")
    notify_new_sale(order, notifier)
    return True


def _fulfill_line(order: Order, line: OrderItem, cache=None) -> int:
    result = assign_stock(
        line.product_id,
        line.variant_id,
        order.user_id,
        line.quantity,
        order_id=order.pk,
        assigned_by=AssignedBy.system(),
        cache=cache,
    )
    now = timezone.now()
    OrderItem.objects.filter(pk=line.pk).update(delivered=True, delivered_at=now, updated_at=now)
    ProductOwnership.objects.get_or_create(
        user_id=order.user_id,
        product_id=line.product_id,
        defaults={"order": order},
    )
    return result.assigned_count


def _line_failure(line: OrderItem, error: StockroomError) -> LineFailure:
    failure = LineFailure(
        item_id=line.pk,
        product_id=line.product_id,
        variant_id=line.variant_id,
        reason=str(error),
    )
    if isinstance(error, InsufficientStockError):
        failure.available = error.available
        failure.requested = error.requested
    logger.warning(
        f"Could not fulfill line {line.pk} of order {line.order_id} "
        f"(product {line.product_id}, variant {line.variant_id}): {error}"
    )
    return failure


def pending_automatic_lines(order: Order) -> list[OrderItem]:
    """Undelivered lines that are delivered from stock."""
    lines = order.items.filter(delivered=False).select_related("product", "variant")
    return [line for line in lines if line.delivery_type == DeliveryType.AUTOMATIC]


def _run_best_effort(order, lines, cache):
    assigned = 0
    failures = []
    for line in lines:
        try:
            with transaction.atomic():
                assigned += _fulfill_line(order, line, cache)
        except StockroomError as e:
            failures.append(_line_failure(line, e))
    return assigned, failures


def _run_all_or_nothing(order, lines, cache):
    assigned = 0
    current = None
    try:
        with transaction.atomic():
            for line in lines:
                current = line
                assigned += _fulfill_line(order, line, cache)
    except StockroomError as e:
        return 0, [_line_failure(current, e)]
    return assigned, []


def settle_order(order: Order, changed_by: str = SYSTEM_FULFILLMENT) -> None:
    """Recompute product_assigned and completion from the order's lines.

    The order becomes completed once any line has been delivered, and
    product_assigned once no automatic line is left undelivered. The
    completed history entry is appended only on the transition.
    """
    now = timezone.now()
    fields = {
        "product_assigned": not pending_automatic_lines(order),
        "updated_at": now,
    }
    completing = (
        order.order_status != Order.OrderStatus.COMPLETED
        and order.items.filter(delivered=True).exists()
    )
    if completing:
        fields["order_status"] = Order.OrderStatus.COMPLETED
        fields["completed_at"] = now

    Order.objects.filter(pk=order.pk).update(**fields)
    order.refresh_from_db()

    if completing:
        order.record_status(Order.OrderStatus.COMPLETED, changed_by, reason="Products delivered")
        logger.info(f"Order {order.pk} completed")


def fulfill_order(order_id, *, policy=None, cache=None) -> FulfillmentResult:
    """Assign stock for every undelivered automatic line of a paid order.

    Idempotent: an order with product_assigned set returns
    ``already_processed=True`` without touching stock. Lines already
    delivered are never assigned twice. Manual-delivery lines are left for
    deliver_order_item().

    Args:
        order_id: Order primary key
        policy: FulfillmentPolicy, defaults to STOCKROOM_FULFILLMENT_POLICY
        cache: Optional StockroomCache for product lookups

    Raises:
        ValidationError: Malformed id, order not paid or without items
        NotFoundError: Order does not exist
    """
    policy = FulfillmentPolicy.from_setting(policy or get_setting("FULFILLMENT_POLICY"))
    order_pk = parse_pk(Order, order_id)

    try:
        with transaction.atomic():
            order = Order.objects.select_for_update().filter(pk=order_pk).first()
            if order is None:
                raise NotFoundError("Order", order_id)
            if order.product_assigned:
                raise AlreadyProcessedError(order.pk)
            if not order.is_paid:
                raise ValidationError(
                    f"Order {order.pk} cannot be fulfilled with payment status {order.payment_status}"
                )
            if not order.items.exists():
                raise ValidationError(f"Order {order.pk} has no items")

            lines = pending_automatic_lines(order)
            if policy is FulfillmentPolicy.ALL_OR_NOTHING:
                assigned, failures = _run_all_or_nothing(order, lines, cache)
            else:
                assigned, failures = _run_best_effort(order, lines, cache)

            settle_order(order)
    except AlreadyProcessedError:
        logger.info(f"Order {order_pk} already fulfilled, skipping")
        status = Order.objects.filter(pk=order_pk).values_list("order_status", flat=True).first()
        return FulfillmentResult(success=True, order_status=status, already_processed=True)

    logger.info(
        f"Fulfillment run for order {order.pk} ({policy.value}): "
        f"{assigned} item(s) assigned, {len(failures)} line(s) failed"
    )
    return FulfillmentResult(
        success=order.product_assigned,
        order_status=order.order_status,
        assigned=assigned,
        failures=failures,
    )

"""Admin delivery of single order lines."""

import logging

from django.db import transaction
from django.utils import timezone

from django_stockroom.exceptions import NotFoundError, ValidationError
from django_stockroom.models import DeliveryType, Order, OrderItem, OrderNote, ProductOwnership
from django_stockroom.services.assignment import assign_stock
from django_stockroom.services.fulfillment import settle_order
from django_stockroom.services.stock import parse_pk
from django_stockroom.values import AssignedBy

logger = logging.getLogger(__name__)


def deliver_order_item(order_id, item_id, admin, note: str = "") -> OrderItem:
    """Deliver one line of a paid order on behalf of an admin.

    Manual-delivery lines are marked delivered. Automatic lines (for example
    ones that failed for lack of stock) are assigned from stock with
    AssignedBy.admin(). Once the last line is delivered the order completes.

    Raises:
        ValidationError: Malformed ids, order not paid, or line already delivered
        NotFoundError: Order or line does not exist
        InsufficientStockError: Automatic line and not enough free stock
    """
    order_pk = parse_pk(Order, order_id)
    item_pk = parse_pk(OrderItem, item_id)
    assigned_by = AssignedBy.admin(admin.pk)

    with transaction.atomic():
        order = Order.objects.select_for_update().filter(pk=order_pk).first()
        if order is None:
            raise NotFoundError("Order", order_id)
        if not order.is_paid:
            raise ValidationError(f"Order {order.pk} is not paid")

        item = order.items.select_related("product", "variant").filter(pk=item_pk).first()
        if item is None:
            raise NotFoundError("Order item", item_id)
        if item.delivered:
            raise ValidationError(f"Item {item.pk} was already delivered")

        if item.delivery_type == DeliveryType.AUTOMATIC:
            assign_stock(
                item.product_id,
                item.variant_id,
                order.user_id,
                item.quantity,
                order_id=order.pk,
                assigned_by=assigned_by,
            )

        now = timezone.now()
        item.delivered = True
        item.delivered_at = now
        item.save(update_fields=["delivered", "delivered_at", "updated_at"])
        ProductOwnership.objects.get_or_create(
            user_id=order.user_id,
            product_id=item.product_id,
            defaults={"order": order},
        )

        deliveries = list((order.metadata or {}).get("deliveries", []))
        deliveries.append(
            {"item": str(item.pk), "at": now.isoformat(), "by": assigned_by.as_metadata()}
        )
        order.metadata = {**(order.metadata or {}), "deliveries": deliveries}
        order.save(update_fields=["metadata", "updated_at"])

        OrderNote.objects.create(
            order=order,
            content=note or f"Delivered {item.quantity}x {item.name}",
            added_by=str(assigned_by),
            added_at=now,
        )
        settle_order(order, changed_by=str(assigned_by))

    logger.info(f"Item {item.pk} of order {order.pk} delivered by {assigned_by}")
    return item

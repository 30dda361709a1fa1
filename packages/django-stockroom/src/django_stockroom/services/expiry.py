"""Closing orders whose payment never arrived."""

import logging
from datetime import timedelta

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from django_stockroom.conf import get_setting
from django_stockroom.models import Order, OrderStatusEvent

logger = logging.getLogger(__name__)


SYSTEM_EXPIRY = "system:expiry"


def close_pending_order(
    order_id,
    payment_status: str,
    order_status: str,
    changed_by: str,
    reason: str = "",
    now=None,
) -> bool:
    """Move an order out of ``pending`` if it is still pending.

    One conditional UPDATE, so a payment confirmed concurrently always wins
    over expiry or cancellation.

    Returns:
        True if this call closed the order
    """
    now = now or timezone.now()
    with transaction.atomic():
        closed = Order.objects.filter(
            pk=order_id, payment_status=Order.PaymentStatus.PENDING
        ).update(
            payment_status=payment_status,
            order_status=order_status,
            updated_at=now,
        )
        if not closed:
            return False

        OrderStatusEvent.objects.create(
            order_id=order_id,
            status=payment_status,
            changed_by=changed_by,
            reason=reason,
            changed_at=now,
        )
    logger.info(f"Order {order_id} closed as {payment_status}/{order_status} by {changed_by}")
    return True


def expirable_orders(now=None):
    """Pending orders past their PIX expiry, or past the payment window."""
    now = now or timezone.now()
    window_start = now - timedelta(minutes=get_setting("PAYMENT_WINDOW_MINUTES"))
    return Order.objects.filter(payment_status=Order.PaymentStatus.PENDING).filter(
        Q(pix_expires_at__lt=now) | Q(pix_expires_at__isnull=True, created_at__lt=window_start)
    )


def expire_pending_orders(now=None) -> list:
    """Expire every pending order whose payment window has elapsed.

    Returns:
        Primary keys of the orders expired by this call
    """
    now = now or timezone.now()
    expired = []
    for order_id in expirable_orders(now).values_list("pk", flat=True):
        if close_pending_order(
            order_id,
            Order.PaymentStatus.EXPIRED,
            Order.OrderStatus.CANCELED,
            SYSTEM_EXPIRY,
            reason="Payment window elapsed",
            now=now,
        ):
            expired.append(order_id)

    if expired:
        logger.info(f"Expired {len(expired)} pending order(s)")
    return expired

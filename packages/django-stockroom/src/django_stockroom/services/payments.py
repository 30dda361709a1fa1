"""Payment status source: webhooks, status polling and PIX charges.

Mercado Pago delivers webhooks at least once, so every path here may run
several times for the same payment. The provider is always asked for the
authoritative status; the webhook body only carries the payment id.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from django.utils import timezone

from django_stockroom.cache import get_default_cache, status_check_key
from django_stockroom.conf import get_setting
from django_stockroom.exceptions import NotFoundError, ValidationError
from django_stockroom.models import Order
from django_stockroom.providers.mercadopago import MercadoPagoClient, PaymentStatus, PixPayment
from django_stockroom.services.expiry import close_pending_order
from django_stockroom.services.fulfillment import FulfillmentResult, confirm_payment, fulfill_order
from django_stockroom.services.stock import parse_pk

logger = logging.getLogger(__name__)


SYSTEM_WEBHOOK = "system:webhook"
SYSTEM_STATUS_CHECK = "system:status-check"

PAYMENT_ACTIONS = ("payment.created", "payment.updated")


@dataclass
class NotificationResult:
    """Outcome of one webhook delivery."""

    handled: bool
    payment_id: str = ""
    order_id: object = None
    payment_status: str = ""
    fulfillment: FulfillmentResult | None = None
    reason: str = ""


@dataclass
class PaymentCheckResult:
    """Outcome of a status poll for one order."""

    order_id: object
    is_paid: bool
    payment_status: str
    order_status: str = ""
    is_expired: bool = False
    rate_limited: bool = False
    wait_seconds: int = 0
    fulfillment: FulfillmentResult | None = None


def parse_notification(payload) -> str | None:
    """Extract the payment id from a webhook payload.

    Accepts ``{"type": "payment", "data": {"id": ...}}`` and
    ``{"action": "payment.updated", "data": {"id": ...}}``. Returns None
    for anything else.
    """
    if not isinstance(payload, dict):
        return None
    if payload.get("type") != "payment" and payload.get("action") not in PAYMENT_ACTIONS:
        return None
    data = payload.get("data")
    if not isinstance(data, dict) or data.get("id") in (None, ""):
        return None
    return str(data["id"])


def find_order_for_payment(payment_id: str, external_reference: str = "") -> Order | None:
    order = Order.objects.filter(payment_id=payment_id).first()
    if order is not None or not external_reference:
        return order

    order = Order.objects.filter(external_reference=external_reference).first()
    if order is not None:
        return order
    try:
        return Order.objects.filter(pk=parse_pk(Order, external_reference)).first()
    except ValidationError:
        return None


def payment_belongs_to(order: Order, status: PaymentStatus, strict: bool = False) -> bool:
    """Whether the provider payment references this order.

    With ``strict`` a payment carrying no external reference is rejected too.
    """
    reference = status.external_reference
    if not reference:
        return not strict
    return reference in {order.external_reference, str(order.pk)} - {""}


def apply_payment_status(
    order: Order,
    status: PaymentStatus,
    changed_by: str,
    policy=None,
    cache=None,
    notifier=None,
    strict: bool = False,
) -> FulfillmentResult | None:
    """Act on the provider status of an order's payment.

    Approved payments confirm the order and run fulfillment; fulfillment
    also runs for orders already paid but not fully delivered, which is how
    redelivered webhooks retry failed lines. Rejected or cancelled payments
    cancel a pending order. A payment referencing another order is ignored.
    """
    if not payment_belongs_to(order, status, strict=strict):
        logger.warning(
            f"Payment {status.id} references {status.external_reference!r}, "
            f"not order {order.pk}; ignoring"
        )
        return None

    if status.is_approved:
        confirm_payment(order, status.raw, changed_by=changed_by, notifier=notifier)
        if not order.is_paid:
            logger.warning(
                f"Payment {status.id} approved but order {order.pk} is {order.payment_status}"
            )
            return None
        return fulfill_order(order.pk, policy=policy, cache=cache)

    if status.is_rejected:
        close_pending_order(
            order.pk,
            Order.PaymentStatus.CANCELED,
            Order.OrderStatus.CANCELED,
            changed_by,
            reason=f"Payment {status.status}",
        )
        order.refresh_from_db()
    return None


def handle_payment_notification(
    payload,
    *,
    client: MercadoPagoClient | None = None,
    policy=None,
    cache=None,
    notifier=None,
) -> NotificationResult:
    """Process one webhook delivery.

    Raises:
        UpstreamPaymentError: The provider could not be reached; the
            delivery should be answered with an error so it is retried
    """
    payment_id = parse_notification(payload)
    if payment_id is None:
        logger.info("Ignoring non-payment notification")
        return NotificationResult(handled=False, reason="ignored")

    client = client or MercadoPagoClient()
    status = client.get_payment_status(payment_id)
    logger.info(f"Payment {payment_id} status from provider: {status.status}")

    order = find_order_for_payment(payment_id, status.external_reference)
    if order is None:
        logger.warning(f"No order found for payment {payment_id}")
        return NotificationResult(
            handled=False,
            payment_id=payment_id,
            payment_status=status.status,
            reason="order not found",
        )

    fulfillment = apply_payment_status(
        order, status, SYSTEM_WEBHOOK, policy=policy, cache=cache, notifier=notifier
    )
    return NotificationResult(
        handled=True,
        payment_id=payment_id,
        order_id=order.pk,
        payment_status=status.status,
        fulfillment=fulfillment,
    )


def _rate_limit_wait(order_pk, cache, now) -> int:
    """Seconds to wait before the next poll, 0 if a poll is allowed now."""
    interval = get_setting("STATUS_CHECK_INTERVAL")
    key = status_check_key(order_pk)
    current = now.timestamp()
    if cache.add(key, current, ttl=interval):
        return 0

    last = cache.get(key)
    if last is None or current - last >= interval:
        cache.set(key, current, ttl=interval)
        return 0
    return max(1, int(interval - (current - last) + 0.999))


def _check_result(order: Order, **kwargs) -> PaymentCheckResult:
    return PaymentCheckResult(
        order_id=order.pk,
        is_paid=order.is_paid,
        payment_status=order.payment_status,
        order_status=order.order_status,
        **kwargs,
    )


def verify_payment(
    order_id,
    payment_id=None,
    *,
    client: MercadoPagoClient | None = None,
    policy=None,
    cache=None,
    notifier=None,
) -> PaymentCheckResult:
    """Poll the provider for an order's payment.

    Checks for the same order are limited to one per
    STOCKROOM_STATUS_CHECK_INTERVAL seconds. A PIX charge past its expiry
    closes the order without asking the provider.

    Raises:
        ValidationError: Malformed order id or no payment id known
        NotFoundError: Order does not exist
        UpstreamPaymentError: The provider could not be reached
    """
    order_pk = parse_pk(Order, order_id)
    cache = cache or get_default_cache()
    now = timezone.now()

    wait = _rate_limit_wait(order_pk, cache, now)
    if wait:
        return PaymentCheckResult(
            order_id=order_pk,
            is_paid=False,
            payment_status="rate_limited",
            rate_limited=True,
            wait_seconds=wait,
        )

    order = Order.objects.filter(pk=order_pk).first()
    if order is None:
        raise NotFoundError("Order", order_id)

    if order.is_paid:
        fulfillment = None
        if not order.product_assigned:
            fulfillment = fulfill_order(order.pk, policy=policy, cache=cache)
            order.refresh_from_db()
        return _check_result(order, fulfillment=fulfillment)

    if order.payment_status != Order.PaymentStatus.PENDING:
        return _check_result(order, is_expired=True)

    if order.pix_expires_at is not None and order.pix_expires_at < now:
        close_pending_order(
            order.pk,
            Order.PaymentStatus.EXPIRED,
            Order.OrderStatus.CANCELED,
            SYSTEM_STATUS_CHECK,
            reason="PIX charge expired",
            now=now,
        )
        order.refresh_from_db()
        return _check_result(order, is_expired=not order.is_paid)

    if payment_id and order.payment_id and str(payment_id) != order.payment_id:
        raise ValidationError(f"Payment {payment_id} does not belong to order {order.pk}")
    # A caller-supplied id must be vouched for by the provider's reference.
    strict = bool(payment_id) and not order.payment_id
    payment_id = payment_id or order.payment_id
    if not payment_id:
        raise ValidationError(f"Order {order.pk} has no payment id")

    client = client or MercadoPagoClient()
    status = client.get_payment_status(payment_id)
    logger.info(f"Payment {payment_id} for order {order.pk} polled: {status.status}")

    fulfillment = apply_payment_status(
        order,
        status,
        SYSTEM_STATUS_CHECK,
        policy=policy,
        cache=cache,
        notifier=notifier,
        strict=strict,
    )
    order.refresh_from_db()
    return _check_result(
        order,
        is_expired=order.payment_status in (Order.PaymentStatus.EXPIRED, Order.PaymentStatus.CANCELED),
        fulfillment=fulfillment,
    )


def create_pix_charge(
    order: Order,
    *,
    client: MercadoPagoClient | None = None,
    payer_cpf: str = "",
    now=None,
) -> PixPayment:
    """Create the PIX charge for a pending order and store its references.

    The order's primary key is the provider external_reference and the
    idempotency key, so retrying the call cannot charge twice.

    Raises:
        ValidationError: Order is not a pending PIX order
        UpstreamPaymentError: The provider rejected or could not take the charge
    """
    if order.payment_method != Order.PaymentMethod.PIX:
        raise ValidationError(f"Order {order.pk} is not a PIX order")
    if order.payment_status != Order.PaymentStatus.PENDING:
        raise ValidationError(f"Order {order.pk} is not awaiting payment")

    now = now or timezone.now()
    expires_at = now + timedelta(minutes=get_setting("PAYMENT_WINDOW_MINUTES"))
    names = ", ".join(item.name for item in order.items.all())
    user = order.user

    client = client or MercadoPagoClient()
    pix = client.create_pix_payment(
        order.total_amount,
        description=names or f"Order {order.pk}",
        external_reference=str(order.pk),
        payer_email=getattr(user, "email", ""),
        payer_first_name=getattr(user, "first_name", ""),
        payer_last_name=getattr(user, "last_name", ""),
        payer_cpf=payer_cpf,
        notification_url=get_setting("NOTIFICATION_URL"),
        expires_at=expires_at,
        idempotency_key=f"order-{order.pk}",
    )

    order.payment_id = pix.id
    order.external_reference = str(order.pk)
    order.pix_expires_at = pix.expires_at or expires_at
    order.metadata = {
        **(order.metadata or {}),
        "pix": {
            "qr_code": pix.qr_code,
            "qr_code_base64": pix.qr_code_base64,
            "ticket_url": pix.ticket_url,
        },
        "payment_created_at": now.isoformat(),
    }
    order.save(
        update_fields=["payment_id", "external_reference", "pix_expires_at", "metadata", "updated_at"]
    )
    logger.info(f"PIX charge {pix.id} created for order {order.pk}")
    return pix

"""Discord webhook notifier for new sales."""

import logging
from decimal import Decimal

import httpx

from django_stockroom.conf import get_setting

from .base import SendResult

logger = logging.getLogger(__name__)


PAYMENT_METHOD_LABELS = {
    "pix": "Pix",
    "credit_card": "Credit card",
}


def format_brl(amount) -> str:
    """Format an amount as Brazilian reais, e.g. ``R$ 1.234,50``."""
    value = Decimal(amount or 0).quantize(Decimal("0.01"))
    integer, _, cents = f"{value:,.2f}".partition(".")
    return f"R$ {integer.replace(',', '.')},{cents}"


class DiscordNotifier:
    """Posts a plain order summary to a Discord webhook.

    Failures are logged and reported in the SendResult; they never raise.
    With no webhook URL configured every send is a no-op failure.
    """

    provider_name = "discord"

    def __init__(self, webhook_url: str | None = None, timeout: float = 5.0):
        if webhook_url is None:
            webhook_url = get_setting("DISCORD_WEBHOOK_URL")
        self.webhook_url = webhook_url
        self.client = httpx.Client(timeout=timeout)

    def build_payload(self, order) -> dict:
        items = list(order.items.all())
        if items:
            products = "\n".join(f"{item.name} ({item.quantity}x)" for item in items)
        else:
            products = "No items"

        fields = [
            {"name": "Order", "value": str(order.pk), "inline": False},
            {"name": "Customer", "value": str(order.user_id), "inline": True},
            {"name": "Items", "value": str(len(items)), "inline": True},
            {"name": "Total", "value": format_brl(order.total_amount), "inline": True},
            {"name": "Products", "value": products},
            {
                "name": "Payment method",
                "value": PAYMENT_METHOD_LABELS.get(order.payment_method, order.payment_method),
            },
        ]
        email = getattr(order.user, "email", "")
        if email:
            fields.append({"name": "Buyer e-mail", "value": email})

        return {
            "username": "Sales",
            "embeds": [{"title": "New sale", "fields": fields}],
        }

    def send_order_summary(self, order) -> SendResult:
        if not self.webhook_url:
            return SendResult.fail(self.provider_name, "Discord webhook not configured")

        try:
            response = self.client.post(self.webhook_url, json=self.build_payload(order))
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Discord notification failed for order {order.pk}: {e}")
            return SendResult.fail(self.provider_name, str(e))

        logger.info(f"Discord notification sent for order {order.pk}")
        return SendResult.ok(self.provider_name)

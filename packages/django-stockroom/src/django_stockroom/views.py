"""JSON endpoints: payment webhook, status polling and the expiry sweep."""

import json
import logging

from django.http import JsonResponse
from django.utils.crypto import constant_time_compare
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from django_stockroom.conf import get_setting
from django_stockroom.exceptions import StockroomError, UpstreamPaymentError
from django_stockroom.services import payments
from django_stockroom.services.expiry import expire_pending_orders

logger = logging.getLogger(__name__)


def error_response(error: StockroomError) -> JsonResponse:
    return JsonResponse({"error": str(error)}, status=error.status_code)


def _json_body(request):
    try:
        return json.loads(request.body or b"{}")
    except ValueError:
        return None


@csrf_exempt
@require_POST
def mercadopago_webhook(request):
    """Receive a Mercado Pago notification.

    Provider failures answer 502 so the notification is delivered again.
    Everything else answers 200, including payloads that are not about a
    payment.
    """
    payload = _json_body(request)
    if payload is None:
        return JsonResponse({"error": "Invalid JSON"}, status=400)

    try:
        result = payments.handle_payment_notification(payload)
    except UpstreamPaymentError as e:
        logger.warning(f"Webhook processing deferred: {e}")
        return error_response(e)
    except StockroomError as e:
        return error_response(e)
    except Exception:
        logger.exception("Unexpected error processing payment webhook")
        return JsonResponse({"error": "Internal error"}, status=500)

    body = {
        "received": True,
        "handled": result.handled,
        "payment_id": result.payment_id,
        "payment_status": result.payment_status,
    }
    if result.order_id is not None:
        body["order_id"] = str(result.order_id)
    if result.fulfillment is not None:
        body["order_status"] = result.fulfillment.order_status
        body["already_processed"] = result.fulfillment.already_processed
    return JsonResponse(body)


@csrf_exempt
@require_POST
def check_payment_status(request):
    """Poll the provider for an order's payment."""
    payload = _json_body(request)
    if not isinstance(payload, dict) or not payload.get("order_id"):
        return JsonResponse({"error": "order_id is required"}, status=400)

    try:
        result = payments.verify_payment(payload["order_id"], payload.get("payment_id"))
    except StockroomError as e:
        return error_response(e)

    body = {
        "order_id": str(result.order_id),
        "is_paid": result.is_paid,
        "payment_status": result.payment_status,
        "order_status": result.order_status,
        "is_expired": result.is_expired,
    }
    if result.rate_limited:
        body["wait_seconds"] = result.wait_seconds
        return JsonResponse(body, status=429)
    return JsonResponse(body)


def _cron_authorized(request) -> bool:
    api_key = get_setting("CRON_API_KEY")
    if not api_key:
        return True
    header = request.headers.get("Authorization", "")
    if constant_time_compare(header, f"Bearer {api_key}"):
        return True
    return constant_time_compare(request.GET.get("key", ""), api_key)


@require_GET
def expire_orders(request):
    """Expire pending orders past their payment window."""
    if not _cron_authorized(request):
        return JsonResponse({"error": "Unauthorized"}, status=401)

    expired = expire_pending_orders()
    return JsonResponse({
        "success": True,
        "expired": len(expired),
        "orders": [str(pk) for pk in expired],
    })

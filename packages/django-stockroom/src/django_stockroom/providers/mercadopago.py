"""Mercado Pago payments API client (PIX charges and status lookups)."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx
from django.utils.dateparse import parse_datetime

from django_stockroom.conf import get_setting
from django_stockroom.exceptions import UpstreamPaymentError

logger = logging.getLogger(__name__)


MINIMUM_AMOUNT = Decimal("0.01")


@dataclass
class PixPayment:
    """A PIX charge created at the provider."""

    id: str
    status: str
    qr_code: str
    qr_code_base64: str
    ticket_url: str
    expires_at: datetime | None
    raw: dict = field(default_factory=dict)


@dataclass
class PaymentStatus:
    """Provider-side status of a payment.

    status is one of the provider values (pending, approved, rejected,
    cancelled, ...) or ``not_found`` when the provider has no such payment.
    """

    id: str
    status: str
    external_reference: str = ""
    raw: dict = field(default_factory=dict)

    APPROVED = ("approved", "paid")
    REJECTED = ("rejected", "cancelled", "canceled")

    @property
    def is_approved(self) -> bool:
        return self.status in self.APPROVED

    @property
    def is_rejected(self) -> bool:
        return self.status in self.REJECTED


class MercadoPagoClient:
    """Thin httpx client for the Mercado Pago v1 payments API.

    Every write carries an ``X-Idempotency-Key`` header so a retried
    request cannot create a second charge.
    """

    provider_name = "mercadopago"

    def __init__(
        self,
        access_token: str | None = None,
        base_url: str | None = None,
        timeout: float = 5.0,
    ):
        if access_token is None:
            access_token = get_setting("MERCADOPAGO_ACCESS_TOKEN")
        self.access_token = access_token
        self.base_url = (base_url or get_setting("MERCADOPAGO_API_URL")).rstrip("/")
        self.client = httpx.Client(timeout=timeout)

    def _headers(self, idempotency_key: str | None = None) -> dict:
        if not self.access_token:
            raise UpstreamPaymentError(
                "Mercado Pago access token is not configured",
                provider=self.provider_name,
            )
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key is not None:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    def _build_pix_request(
        self,
        amount,
        description: str,
        external_reference: str,
        payer_email: str,
        payer_first_name: str = "",
        payer_last_name: str = "",
        payer_cpf: str = "",
        notification_url: str = "",
        expires_at: datetime | None = None,
    ) -> dict:
        value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        if value < MINIMUM_AMOUNT:
            logger.warning(f"PIX amount {amount} below provider minimum, using {MINIMUM_AMOUNT}")
            value = MINIMUM_AMOUNT

        payer: dict[str, Any] = {
            "email": payer_email,
            "first_name": payer_first_name,
            "last_name": payer_last_name,
        }
        cpf = "".join(ch for ch in payer_cpf if ch.isdigit())
        if cpf:
            payer["identification"] = {"type": "CPF", "number": cpf}

        body = {
            "transaction_amount": float(value),
            "description": description,
            "payment_method_id": "pix",
            "external_reference": external_reference,
            "payer": payer,
        }
        if notification_url:
            body["notification_url"] = notification_url
        if expires_at is not None:
            body["date_of_expiration"] = expires_at.isoformat(timespec="milliseconds")
        return body

    def create_pix_payment(
        self,
        amount,
        description: str,
        external_reference: str,
        payer_email: str,
        payer_first_name: str = "",
        payer_last_name: str = "",
        payer_cpf: str = "",
        notification_url: str = "",
        expires_at: datetime | None = None,
        idempotency_key: str | None = None,
    ) -> PixPayment:
        """Create a PIX charge.

        Raises:
            UpstreamPaymentError: On transport errors or non-2xx responses
        """
        payload = self._build_pix_request(
            amount,
            description,
            external_reference,
            payer_email,
            payer_first_name=payer_first_name,
            payer_last_name=payer_last_name,
            payer_cpf=payer_cpf,
            notification_url=notification_url,
            expires_at=expires_at,
        )
        headers = self._headers(idempotency_key or str(uuid.uuid4()))

        try:
            response = self.client.post(
                f"{self.base_url}/v1/payments", headers=headers, json=payload
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamPaymentError(
                f"PIX charge rejected with HTTP {e.response.status_code}",
                provider=self.provider_name,
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamPaymentError(
                f"PIX charge failed: {e}",
                provider=self.provider_name,
                original_error=e,
            ) from e

        data = response.json()
        transaction_data = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        expiration = data.get("date_of_expiration")

        logger.info(f"PIX payment {data.get('id')} created for {external_reference}")
        return PixPayment(
            id=str(data.get("id", "")),
            status=data.get("status") or "pending",
            qr_code=transaction_data.get("qr_code", ""),
            qr_code_base64=transaction_data.get("qr_code_base64", ""),
            ticket_url=transaction_data.get("ticket_url", ""),
            expires_at=parse_datetime(expiration) if expiration else expires_at,
            raw=data,
        )

    def get_payment_status(self, payment_id) -> PaymentStatus:
        """Look up a payment by provider id.

        Returns a ``not_found`` status for unknown ids.

        Raises:
            UpstreamPaymentError: On transport errors and other non-2xx responses
        """
        payment_id = str(payment_id)
        try:
            response = self.client.get(
                f"{self.base_url}/v1/payments/{payment_id}", headers=self._headers()
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (400, 404):
                logger.warning(f"Payment {payment_id} not found at provider")
                return PaymentStatus(id=payment_id, status="not_found")
            raise UpstreamPaymentError(
                f"Status lookup for {payment_id} failed with HTTP {e.response.status_code}",
                provider=self.provider_name,
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamPaymentError(
                f"Status lookup for {payment_id} failed: {e}",
                provider=self.provider_name,
                original_error=e,
            ) from e

        data = response.json()
        return PaymentStatus(
            id=str(data.get("id", payment_id)),
            status=data.get("status") or "pending",
            external_reference=str(data.get("external_reference") or ""),
            raw=data,
        )

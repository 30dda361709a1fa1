"""External service clients: payment provider and order notifications."""

from .discord import DiscordNotifier
from .mercadopago import MercadoPagoClient, PaymentStatus, PixPayment

__all__ = [
    "DiscordNotifier",
    "MercadoPagoClient",
    "PaymentStatus",
    "PixPayment",
]

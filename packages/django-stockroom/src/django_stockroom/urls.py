"""URL patterns for django-stockroom."""

from django.urls import path

from . import views

app_name = "stockroom"

urlpatterns = [
    path("webhooks/mercadopago/", views.mercadopago_webhook, name="mercadopago_webhook"),
    path("payments/check-status/", views.check_payment_status, name="check_payment_status"),
    path("cron/expire-orders/", views.expire_orders, name="expire_orders"),
]

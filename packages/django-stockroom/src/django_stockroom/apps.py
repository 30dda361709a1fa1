"""Django app configuration for django-stockroom."""

from django.apps import AppConfig


class DjangoStockroomConfig(AppConfig):
    """App configuration for django-stockroom."""

    name = "django_stockroom"
    label = "django_stockroom"
    verbose_name = "Stockroom"
    default_auto_field = "django.db.models.BigAutoField"

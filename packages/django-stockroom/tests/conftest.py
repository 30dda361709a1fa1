"""Test settings for django-stockroom.

The suite runs on in-memory SQLite by default:

    pip install -e ".[test]"
    pytest

test_concurrency.py needs row locking and is skipped on SQLite. Run the
full suite against PostgreSQL to exercise it:

    POSTGRES_DB=stockroom_test POSTGRES_USER=postgres POSTGRES_PASSWORD=postgres pytest
"""

import os
from decimal import Decimal

import django
import pytest
from django.conf import settings


def _databases():
    if os.environ.get("POSTGRES_DB"):
        return {
            "default": {
                "ENGINE": "django.db.backends.postgresql",
                "NAME": os.environ["POSTGRES_DB"],
                "USER": os.environ.get("POSTGRES_USER", "postgres"),
                "PASSWORD": os.environ.get("POSTGRES_PASSWORD", "postgres"),
                "HOST": os.environ.get("POSTGRES_HOST", "localhost"),
                "PORT": os.environ.get("POSTGRES_PORT", "5432"),
            }
        }
    return {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": ":memory:",
        }
    }


def pytest_configure():
    if not settings.configured:
        settings.configure(
            DEBUG=True,
            DATABASES=_databases(),
            INSTALLED_APPS=[
                "django.contrib.contenttypes",
                "django.contrib.auth",
                "django_stockroom",
            ],
            CACHES={
                "default": {
                    "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
                    "LOCATION": "stockroom-tests",
                }
            },
            ROOT_URLCONF="django_stockroom.urls",
            MIDDLEWARE=[],
            DEFAULT_AUTO_FIELD="django.db.models.BigAutoField",
            USE_TZ=True,
            SECRET_KEY="test-secret-key-for-stockroom",
            STOCKROOM_MERCADOPAGO_ACCESS_TOKEN="TEST-token",
        )
    django.setup()


@pytest.fixture(autouse=True)
def clear_cache():
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def user(db):
    """Create a test user."""
    from django.contrib.auth import get_user_model
    User = get_user_model()
    return User.objects.create_user(
        username="buyer",
        email="buyer@example.com",
        password="testpass123",
        first_name="Ana",
        last_name="Souza",
    )


@pytest.fixture
def admin_user(db):
    """Create a staff user."""
    from django.contrib.auth import get_user_model
    User = get_user_model()
    return User.objects.create_user(
        username="admin",
        email="admin@example.com",
        password="testpass123",
        is_staff=True,
    )


@pytest.fixture
def product(db):
    """Product without variants."""
    from django_stockroom.models import Product
    return Product.objects.create(name="Gift Card", slug="gift-card", price=Decimal("25.00"))


@pytest.fixture
def variant_product(db):
    """Product with a single variant."""
    from django_stockroom.models import Product
    return Product.objects.create(name="Game Key", slug="game-key", price=Decimal("50.00"))


@pytest.fixture
def variant(variant_product):
    from django_stockroom.models import Variant
    return Variant.objects.create(
        product=variant_product,
        name="Standard",
        price=Decimal("50.00"),
    )


@pytest.fixture
def manual_product(db):
    from django_stockroom.models import DeliveryType, Product
    return Product.objects.create(
        name="Account Setup",
        slug="account-setup",
        price=Decimal("10.00"),
        delivery_type=DeliveryType.MANUAL,
    )


@pytest.fixture
def make_order(user):
    """Factory for orders: make_order((product, variant, quantity), ...)."""
    from django_stockroom.models import Order, OrderItem

    def _make(*lines, payment_status="pending", order_status="pending", **kwargs):
        total = sum(
            ((variant or product).price * quantity for product, variant, quantity in lines),
            Decimal("0"),
        )
        order = Order.objects.create(
            user=kwargs.pop("user", user),
            payment_status=payment_status,
            order_status=order_status,
            total_amount=total,
            **kwargs,
        )
        for product, variant, quantity in lines:
            OrderItem.objects.create(
                order=order,
                product=product,
                variant=variant,
                name=product.name if variant is None else f"{product.name} - {variant.name}",
                price=(variant or product).price,
                quantity=quantity,
            )
        return order

    return _make


@pytest.fixture
def stock(db):
    """Factory adding free codes: stock(product, variant, "A1", "A2")."""
    from django_stockroom.services.stock import bulk_import_stock

    def _stock(product, variant, *codes):
        return bulk_import_stock(product.pk, getattr(variant, "pk", None), list(codes))

    return _stock

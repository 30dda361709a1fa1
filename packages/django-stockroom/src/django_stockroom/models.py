"""Stockroom models: products, serial-code stock and orders.

StockItem is the ledger. Product.stock and Variant.stock are caches of the
number of free StockItems and are only ever written by
services.stock.recount_stock().
"""

import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_stockroom.values import AssignedBy


class DeliveryType(models.TextChoices):
    AUTOMATIC = "automatic", "Automatic"
    MANUAL = "manual", "Manual"


class StockroomModel(models.Model):
    """Abstract base with UUID primary key and timestamps."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class Product(StockroomModel):
    """A sellable product.

    Products without variants keep their free-stock count in ``stock``.
    Products with variants keep it per Variant.
    """

    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255, unique=True)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0"),
    )
    delivery_type = models.CharField(
        max_length=20,
        choices=DeliveryType.choices,
        default=DeliveryType.AUTOMATIC,
    )
    stock = models.PositiveIntegerField(
        default=0,
        help_text="Cached count of free stock items (products without variants)",
    )

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    @property
    def has_variants(self) -> bool:
        return self.variants.exists()


class Variant(StockroomModel):
    """A plan/tier of a product with its own price and stock."""

    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name="variants",
    )
    name = models.CharField(max_length=255)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0"),
    )
    delivery_type = models.CharField(
        max_length=20,
        choices=DeliveryType.choices,
        default=DeliveryType.AUTOMATIC,
    )
    stock = models.PositiveIntegerField(
        default=0,
        help_text="Cached count of free stock items for this variant",
    )

    class Meta:
        ordering = ["product", "name"]

    def __str__(self):
        return f"{self.product.name} - {self.name}"


class StockItem(StockroomModel):
    """One redeemable code.

    Created free by bulk import, claimed exactly once, never deleted.
    """

    class AssignedByKind(models.TextChoices):
        SYSTEM = AssignedBy.SYSTEM, "System"
        ADMIN = AssignedBy.ADMIN, "Admin"

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="stock_items",
    )
    variant = models.ForeignKey(
        Variant,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="stock_items",
        help_text="Null for products without variants",
    )
    code = models.CharField(max_length=500)
    is_used = models.BooleanField(default=False, db_index=True)

    # Assignment
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="stock_items",
    )
    assigned_at = models.DateTimeField(null=True, blank=True)
    order = models.ForeignKey(
        "Order",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="stock_items",
    )
    assigned_by_kind = models.CharField(
        max_length=20,
        choices=AssignedByKind.choices,
        blank=True,
    )
    assigned_by_admin = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["product", "variant", "code"],
                condition=Q(variant__isnull=False),
                name="stockitem_unique_code_per_variant",
            ),
            models.UniqueConstraint(
                fields=["product", "code"],
                condition=Q(variant__isnull=True),
                name="stockitem_unique_code_per_product",
            ),
            models.CheckConstraint(
                condition=(
                    Q(is_used=False, assigned_to__isnull=True)
                    | Q(is_used=True, assigned_to__isnull=False)
                ),
                name="stockitem_used_iff_assigned",
            ),
        ]
        indexes = [
            models.Index(
                fields=["product", "variant", "is_used"],
                name="stockitem_lookup_idx",
            ),
        ]

    def __str__(self):
        state = "used" if self.is_used else "free"
        return f"{self.product_id}/{self.variant_id or '-'} ({state})"

    @property
    def assigned_by(self):
        """AssignedBy for a claimed item, None while free."""
        if self.assigned_by_kind == AssignedBy.ADMIN:
            return AssignedBy.admin(self.assigned_by_admin_id)
        if self.assigned_by_kind == AssignedBy.SYSTEM:
            return AssignedBy.system()
        return None


class Order(StockroomModel):
    """Customer order.

    payment_status tracks the provider side, order_status tracks delivery.
    product_assigned guards against double fulfillment.
    """

    class PaymentMethod(models.TextChoices):
        PIX = "pix", "PIX"
        CREDIT_CARD = "credit_card", "Credit card"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        FAILED = "failed", "Failed"
        EXPIRED = "expired", "Expired"
        CANCELED = "canceled", "Canceled"
        REFUNDED = "refunded", "Refunded"

    class OrderStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        COMPLETED = "completed", "Completed"
        EXPIRED = "expired", "Expired"
        CANCELED = "canceled", "Canceled"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="stockroom_orders",
    )
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.PIX,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
        db_index=True,
    )
    order_status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
        db_index=True,
    )
    product_assigned = models.BooleanField(default=False)

    # Provider references
    payment_id = models.CharField(max_length=100, blank=True, db_index=True)
    external_reference = models.CharField(max_length=100, blank=True, db_index=True)
    pix_expires_at = models.DateTimeField(null=True, blank=True)

    total_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0"),
    )
    currency = models.CharField(max_length=3, default="BRL")

    paid_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Order {self.pk} ({self.payment_status}/{self.order_status})"

    @property
    def is_paid(self) -> bool:
        return self.payment_status == self.PaymentStatus.PAID

    def record_status(self, status: str, changed_by: str, reason: str = "") -> "OrderStatusEvent":
        """Append an entry to the order's status history."""
        return OrderStatusEvent.objects.create(
            order=self,
            status=status,
            changed_by=changed_by,
            reason=reason,
        )


class OrderItem(StockroomModel):
    """Line item on an order."""

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="items",
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="order_items",
    )
    variant = models.ForeignKey(
        Variant,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="order_items",
    )
    name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    quantity = models.PositiveIntegerField(default=1)
    delivered = models.BooleanField(default=False)
    delivered_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gt=0),
                name="stockroom_orderitem_quantity_positive",
            ),
        ]

    def __str__(self):
        return f"{self.quantity}x {self.name}"

    @property
    def delivery_type(self) -> str:
        if self.variant_id is not None:
            return self.variant.delivery_type
        return self.product.delivery_type


class OrderStatusEvent(models.Model):
    """Append-only status history entry."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    status = models.CharField(max_length=50)
    changed_by = models.CharField(max_length=255)
    reason = models.CharField(max_length=255, blank=True)
    changed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["changed_at"]

    def __str__(self):
        return f"{self.status} by {self.changed_by}"


class OrderNote(models.Model):
    """Admin note attached to an order."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="notes",
    )
    content = models.TextField()
    added_by = models.CharField(max_length=255)
    added_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["added_at"]

    def __str__(self):
        return f"Note by {self.added_by}"


class ProductOwnership(models.Model):
    """Products a user owns through fulfilled orders."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="owned_products",
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name="owners",
    )
    order = models.ForeignKey(
        Order,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Order that first granted the product",
    )
    acquired_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["user", "product"],
                name="unique_product_ownership",
            ),
        ]

    def __str__(self):
        return f"{self.user_id} owns {self.product_id}"

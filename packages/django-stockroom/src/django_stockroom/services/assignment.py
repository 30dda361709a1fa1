"""Assignment engine: claim free stock items for a user.

Each item is claimed with a conditional UPDATE (``WHERE is_used = FALSE``),
so two concurrent claims can never take the same row. The whole claim runs
in one transaction; a shortfall rolls every claimed row back.
"""

import logging
from dataclasses import dataclass, field

from django.contrib.auth import get_user_model
from django.db import connection, transaction
from django.utils import timezone

from django_stockroom.exceptions import InsufficientStockError, NotFoundError, ValidationError
from django_stockroom.models import Order, StockItem
from django_stockroom.services.stock import free_items, parse_pk, recount_stock, resolve_target
from django_stockroom.values import AssignedBy

logger = logging.getLogger(__name__)


@dataclass
class AssignmentResult:
    """Outcome of a successful assign_stock() call."""

    assigned_count: int
    remaining_stock: int
    items: list = field(default_factory=list)

    @property
    def codes(self) -> list[str]:
        return [item.code for item in self.items]


def parse_quantity(quantity) -> int:
    """Accept a positive int (or digit string), reject everything else."""
    if isinstance(quantity, str) and quantity.strip().isdigit():
        quantity = int(quantity.strip())
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer")
    return quantity


def claim_item(pk, **fields) -> bool:
    """Claim one item if it is still free. Returns False if the race was lost."""
    return StockItem.objects.filter(pk=pk, is_used=False).update(**fields) == 1


def assign_stock(
    product_id,
    variant_id,
    user_id,
    quantity,
    order_id=None,
    assigned_by: AssignedBy | None = None,
    cache=None,
) -> AssignmentResult:
    """Claim ``quantity`` free items for a user, all or nothing.

    Only StockItem rows and the product/variant counter are touched;
    order bookkeeping is left to the caller.

    Args:
        product_id: Product primary key
        variant_id: Variant primary key, required when the product has variants
            and ignored when it has none
        user_id: Primary key of the user receiving the codes
        quantity: Number of items to claim
        order_id: Optional order the items are claimed for
        assigned_by: AssignedBy.system() (default) or AssignedBy.admin(pk)
        cache: Optional StockroomCache for the product variant lookup

    Returns:
        AssignmentResult with the claimed items and the new free count

    Raises:
        ValidationError: Malformed ids or quantity, missing variant
        NotFoundError: Product, variant, user or order does not exist
        InsufficientStockError: Fewer free items than requested; nothing claimed

    Usage:
        result = assign_stock(product.pk, variant.pk, user.pk, 2, order_id=order.pk)
        result.codes
    """
    if assigned_by is None:
        assigned_by = AssignedBy.system()

    User = get_user_model()
    user_pk = parse_pk(User, user_id)
    order_pk = parse_pk(Order, order_id) if order_id is not None else None
    quantity = parse_quantity(quantity)

    product, variant = resolve_target(product_id, variant_id, cache=cache)

    if not User.objects.filter(pk=user_pk).exists():
        raise NotFoundError("User", user_id)
    if order_pk is not None and not Order.objects.filter(pk=order_pk).exists():
        raise NotFoundError("Order", order_id)

    variant_pk = variant.pk if variant is not None else None

    with transaction.atomic():
        pool = free_items(product, variant)
        available = pool.count()
        if available < quantity:
            raise InsufficientStockError(available, quantity, product.pk, variant_pk)

        candidates = pool.order_by("created_at", "pk")
        if connection.features.has_select_for_update_skip_locked:
            candidates = candidates.select_for_update(skip_locked=True)

        now = timezone.now()
        claimed = []
        tried = set()
        while len(claimed) < quantity:
            batch = list(
                candidates.exclude(pk__in=tried).values_list("pk", flat=True)[
                    : quantity - len(claimed)
                ]
            )
            if not batch:
                break
            for pk in batch:
                tried.add(pk)
                won = claim_item(
                    pk,
                    is_used=True,
                    assigned_to_id=user_pk,
                    assigned_at=now,
                    order_id=order_pk,
                    assigned_by_kind=assigned_by.kind,
                    assigned_by_admin_id=assigned_by.admin_id,
                    metadata={"assigned_by": assigned_by.as_metadata()},
                    updated_at=now,
                )
                if won:
                    claimed.append(pk)
                else:
                    logger.debug(f"Stock item {pk} claimed concurrently, trying next")

        if len(claimed) < quantity:
            # Rolls back the rows claimed so far.
            raise InsufficientStockError(len(claimed), quantity, product.pk, variant_pk)

        remaining = recount_stock(product, variant)
        items = list(StockItem.objects.filter(pk__in=claimed).order_by("created_at", "pk"))

    logger.info(
        f"Assigned {len(items)} item(s) of product {product.pk} variant {variant_pk} "
        f"to user {user_pk} ({assigned_by}), {remaining} left"
    )
    return AssignmentResult(assigned_count=len(items), remaining_stock=remaining, items=items)

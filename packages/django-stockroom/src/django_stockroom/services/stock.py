"""Stock ledger services: import, availability, counters and listings.

Product.stock / Variant.stock are caches of the number of free StockItems.
recount_stock() is the only function that writes them, and it always
recomputes from the ledger.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from django_stockroom.cache import product_variants_key
from django_stockroom.conf import get_setting
from django_stockroom.exceptions import (
    NotFoundError,
    ValidationError,
    VariantRequiredError,
)
from django_stockroom.models import Order, Product, StockItem, Variant

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    """Outcome of a bulk import."""

    total: int
    added: int
    duplicates: int
    current_stock: int


@dataclass
class Availability:
    available: int
    requested: int

    @property
    def is_available(self) -> bool:
        return self.available >= self.requested


@dataclass
class AssignedGroup:
    """A user's codes for one (product, variant) pair."""

    product: Product
    variant: Variant | None
    items: list = field(default_factory=list)

    @property
    def codes(self) -> list[str]:
        return [item.code for item in self.items]


def parse_pk(model, value):
    """Convert an identifier to the model's primary key type.

    Raises:
        ValidationError: If the value cannot be a primary key of ``model``
    """
    if value is None or value == "":
        raise ValidationError("Invalid identifiers")
    try:
        return model._meta.pk.to_python(value)
    except (DjangoValidationError, TypeError, ValueError):
        raise ValidationError("Invalid identifiers")


def product_has_variants(product: Product, cache=None) -> bool:
    """Whether the product has variants, memoized through ``cache`` when given."""
    if cache is None:
        return product.has_variants

    key = product_variants_key(product.pk)
    cached = cache.get(key)
    if cached is None:
        cached = product.has_variants
        cache.set(key, cached, ttl=get_setting("PRODUCT_CACHE_TTL"))
    return cached


def resolve_target(product_id, variant_id=None, cache=None):
    """Resolve the (product, variant) pair a stock operation works on.

    Products without variants resolve to (product, None) whatever
    variant_id is. Products with variants require a variant of their own.

    Raises:
        ValidationError: If an identifier cannot be parsed
        NotFoundError: If the product or variant does not exist
        VariantRequiredError: If the product has variants and none was given
    """
    product_pk = parse_pk(Product, product_id)
    variant_pk = None
    if variant_id not in (None, ""):
        variant_pk = parse_pk(Variant, variant_id)

    product = Product.objects.filter(pk=product_pk).first()
    if product is None:
        raise NotFoundError("Product", product_id)

    if not product_has_variants(product, cache):
        return product, None

    if variant_pk is None:
        raise VariantRequiredError(product.pk)

    variant = Variant.objects.filter(pk=variant_pk, product=product).first()
    if variant is None:
        raise NotFoundError("Variant", variant_id)
    return product, variant


def free_items(product: Product, variant: Variant | None = None):
    """Queryset of unassigned StockItems for a (product, variant) pair."""
    return StockItem.objects.filter(product=product, variant=variant, is_used=False)


def recount_stock(product: Product, variant: Variant | None = None) -> int:
    """Recompute and store the cached free-stock counter.

    The counter row is locked before counting, so the last writer always
    sees every claim committed before it.

    Returns:
        The number of free items
    """
    target = variant if variant is not None else product
    counter = type(target).objects.filter(pk=target.pk)
    with transaction.atomic():
        counter.select_for_update().values_list("pk", flat=True).first()
        count = free_items(product, variant).count()
        counter.update(stock=count)
    target.stock = count
    return count


def check_availability(product_id, variant_id=None, quantity: int = 1) -> Availability:
    """Report whether ``quantity`` free items exist for the product/variant.

    Counts the ledger directly instead of trusting the cached counter.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer")
    product, variant = resolve_target(product_id, variant_id)
    return Availability(available=free_items(product, variant).count(), requested=quantity)


def split_codes(codes) -> list[str]:
    """Normalize an import payload into trimmed, non-blank codes.

    Accepts newline-delimited text or an iterable of strings.
    """
    if isinstance(codes, str):
        codes = codes.splitlines()
    return [line.strip() for line in codes if line and line.strip()]


def _insert_batch(product, variant, batch: list[str]) -> int:
    """Insert one batch, falling back to row-by-row on a uniqueness clash.

    A clash means a concurrent import added some of the same codes; those
    rows are skipped and counted by the caller as duplicates.
    """
    try:
        with transaction.atomic():
            StockItem.objects.bulk_create(
                [StockItem(product=product, variant=variant, code=code) for code in batch]
            )
        return len(batch)
    except IntegrityError:
        logger.warning(
            f"Batch insert for product {product.pk} hit a duplicate, retrying row by row"
        )

    added = 0
    for code in batch:
        try:
            with transaction.atomic():
                StockItem.objects.create(product=product, variant=variant, code=code)
            added += 1
        except IntegrityError:
            continue
    return added


def bulk_import_stock(product_id, variant_id, codes: str | Iterable[str]) -> ImportResult:
    """Add one free StockItem per non-blank line of ``codes``.

    Codes already in the ledger for this product/variant, and repeats
    within the payload, are skipped and reported as duplicates.

    Raises:
        ValidationError: If the payload has no codes or ids are malformed
        VariantRequiredError: If the product has variants and none was given
        NotFoundError: If the product or variant does not exist

    Usage:
        result = bulk_import_stock(product.pk, variant.pk, "CODE-1\\nCODE-2\\n")
        result.added, result.duplicates
    """
    lines = split_codes(codes)
    if not lines:
        raise ValidationError("No codes to import")

    product, variant = resolve_target(product_id, variant_id)
    batch_size = get_setting("IMPORT_BATCH_SIZE")

    with transaction.atomic():
        existing = set(
            StockItem.objects.filter(product=product, variant=variant).values_list(
                "code", flat=True
            )
        )

        new_codes = []
        for code in lines:
            if code in existing:
                continue
            existing.add(code)
            new_codes.append(code)

        added = 0
        for start in range(0, len(new_codes), batch_size):
            added += _insert_batch(product, variant, new_codes[start:start + batch_size])

        current = recount_stock(product, variant)

    result = ImportResult(
        total=len(lines),
        added=added,
        duplicates=len(lines) - added,
        current_stock=current,
    )
    logger.info(
        f"Imported stock for product {product.pk} variant {getattr(variant, 'pk', None)}: "
        f"{result.added} added, {result.duplicates} duplicates"
    )
    return result


def list_assigned_items(user, product_id=None, order_id=None) -> list[AssignedGroup]:
    """A user's claimed codes grouped by (product, variant), newest first."""
    items = (
        StockItem.objects.filter(assigned_to=user, is_used=True)
        .select_related("product", "variant")
        .order_by("-assigned_at", "-created_at")
    )
    if product_id is not None:
        items = items.filter(product_id=parse_pk(Product, product_id))
    if order_id is not None:
        items = items.filter(order_id=parse_pk(Order, order_id))

    groups: dict = {}
    for item in items:
        key = (item.product_id, item.variant_id)
        if key not in groups:
            groups[key] = AssignedGroup(product=item.product, variant=item.variant)
        groups[key].items.append(item)
    return list(groups.values())

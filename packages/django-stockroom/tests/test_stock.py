"""Tests for stock ledger services."""

import uuid
from unittest.mock import patch

import pytest

from django_stockroom.cache import DjangoCache, product_variants_key
from django_stockroom.exceptions import NotFoundError, ValidationError, VariantRequiredError
from django_stockroom.models import Product, StockItem, Variant
from django_stockroom.services.assignment import assign_stock
from django_stockroom.services.stock import (
    _insert_batch,
    bulk_import_stock,
    check_availability,
    list_assigned_items,
    product_has_variants,
    recount_stock,
    split_codes,
)


@pytest.mark.django_db
class TestBulkImportStock:

    def test_import_counts_duplicates(self, product):
        """5 lines with 2 duplicates add 3 items."""
        StockItem.objects.create(product=product, code="OLD-1")

        result = bulk_import_stock(
            product.pk, None, "OLD-1\nNEW-1\nNEW-2\nNEW-2\nNEW-3\n"
        )

        assert result.total == 5
        assert result.added == 3
        assert result.duplicates == 2
        assert result.current_stock == 4
        product.refresh_from_db()
        assert product.stock == 4

    def test_lines_are_trimmed_and_blanks_skipped(self, product):
        result = bulk_import_stock(product.pk, None, "  A1  \n\n   \nA2\r\n")

        assert result.total == 2
        assert set(StockItem.objects.values_list("code", flat=True)) == {"A1", "A2"}

    def test_accepts_iterable_of_codes(self, product):
        result = bulk_import_stock(product.pk, None, ["A1", "A2"])

        assert result.added == 2

    def test_empty_payload_rejected(self, product):
        with pytest.raises(ValidationError):
            bulk_import_stock(product.pk, None, "\n  \n")

        assert StockItem.objects.count() == 0

    def test_variant_required_for_product_with_variants(self, variant_product, variant):
        with pytest.raises(VariantRequiredError):
            bulk_import_stock(variant_product.pk, None, "A1")

    def test_variant_must_belong_to_product(self, variant_product, variant):
        other = Product.objects.create(name="Other", slug="other")
        Variant.objects.create(product=other, name="Only")

        with pytest.raises(NotFoundError):
            bulk_import_stock(other.pk, variant.pk, "A1")

    def test_variant_id_ignored_for_product_without_variants(self, product, variant):
        result = bulk_import_stock(product.pk, variant.pk, "A1")

        assert result.added == 1
        assert StockItem.objects.get(code="A1").variant is None

    def test_import_into_variant_updates_variant_counter(self, variant_product, variant):
        result = bulk_import_stock(variant_product.pk, variant.pk, "A1\nA2")

        variant.refresh_from_db()
        variant_product.refresh_from_db()
        assert result.current_stock == 2
        assert variant.stock == 2
        assert variant_product.stock == 0

    def test_unknown_product(self, db):
        with pytest.raises(NotFoundError):
            bulk_import_stock(uuid.uuid4(), None, "A1")

    def test_malformed_product_id(self, db):
        with pytest.raises(ValidationError):
            bulk_import_stock("not-a-uuid", None, "A1")

    def test_batches_respect_setting(self, product, settings):
        settings.STOCKROOM_IMPORT_BATCH_SIZE = 2

        with patch.object(
            StockItem.objects, "bulk_create", wraps=StockItem.objects.bulk_create
        ) as bulk_create:
            result = bulk_import_stock(product.pk, None, "A1\nA2\nA3\nA4\nA5")

        assert result.added == 5
        assert bulk_create.call_count == 3

    def test_batch_conflict_falls_back_to_row_inserts(self, product):
        """A batch hitting the unique constraint is retried row by row."""
        # A2 committed by a concurrent import after the duplicate check.
        StockItem.objects.create(product=product, code="A2")

        added = _insert_batch(product, None, ["A1", "A2", "A3"])

        assert added == 2
        assert StockItem.objects.filter(code="A2").count() == 1
        assert set(StockItem.objects.values_list("code", flat=True)) == {"A1", "A2", "A3"}


@pytest.mark.django_db
class TestRecountStock:

    def test_recount_matches_free_items(self, product, user, stock):
        stock(product, None, "A1", "A2", "A3")
        assign_stock(product.pk, None, user.pk, 2)

        # Corrupt the cached counter; recount repairs it.
        Product.objects.filter(pk=product.pk).update(stock=99)
        product.refresh_from_db()

        assert recount_stock(product) == 1
        product.refresh_from_db()
        assert product.stock == 1

    def test_counter_consistent_after_mixed_operations(self, variant_product, variant, user, stock):
        stock(variant_product, variant, "A1", "A2")
        assign_stock(variant_product.pk, variant.pk, user.pk, 1)
        stock(variant_product, variant, "A2", "A3", "A4")
        assign_stock(variant_product.pk, variant.pk, user.pk, 2)

        variant.refresh_from_db()
        free = StockItem.objects.filter(variant=variant, is_used=False).count()
        assert variant.stock == free == 1


@pytest.mark.django_db
class TestCheckAvailability:

    def test_available(self, product, stock):
        stock(product, None, "A1", "A2")

        availability = check_availability(product.pk, None, 2)

        assert availability.available == 2
        assert availability.requested == 2
        assert availability.is_available is True

    def test_not_available(self, product, stock):
        stock(product, None, "A1")

        availability = check_availability(product.pk, None, 3)

        assert availability.is_available is False

    def test_counts_ledger_not_cached_counter(self, product, stock):
        stock(product, None, "A1")
        Product.objects.filter(pk=product.pk).update(stock=50)

        assert check_availability(product.pk, None, 2).available == 1

    def test_rejects_bad_quantity(self, product):
        with pytest.raises(ValidationError):
            check_availability(product.pk, None, 0)


@pytest.mark.django_db
class TestListAssignedItems:

    def test_groups_by_product_and_variant(
        self, product, variant_product, variant, user, make_order, stock
    ):
        stock(product, None, "P1", "P2")
        stock(variant_product, variant, "V1")
        assign_stock(product.pk, None, user.pk, 2)
        assign_stock(variant_product.pk, variant.pk, user.pk, 1)

        groups = list_assigned_items(user)

        assert len(groups) == 2
        by_product = {group.product.pk: group for group in groups}
        assert sorted(by_product[product.pk].codes) == ["P1", "P2"]
        assert by_product[variant_product.pk].variant == variant
        assert by_product[variant_product.pk].codes == ["V1"]

    def test_filters(self, product, user, make_order, stock):
        stock(product, None, "P1", "P2")
        order = make_order((product, None, 1))
        assign_stock(product.pk, None, user.pk, 1, order_id=order.pk)
        assign_stock(product.pk, None, user.pk, 1)

        groups = list_assigned_items(user, order_id=order.pk)

        assert len(groups) == 1
        assert len(groups[0].items) == 1
        assert groups[0].items[0].order_id == order.pk
        assert list_assigned_items(user, product_id=uuid.uuid4()) == []

    def test_other_users_items_hidden(self, product, user, admin_user, stock):
        stock(product, None, "P1")
        assign_stock(product.pk, None, admin_user.pk, 1)

        assert list_assigned_items(user) == []


@pytest.mark.django_db
class TestProductHasVariants:

    def test_memoized_through_cache(self, variant_product, variant):
        cache = DjangoCache()

        assert product_has_variants(variant_product, cache) is True
        variant.delete()
        # Cached value survives until invalidated.
        assert product_has_variants(variant_product, cache) is True

        cache.invalidate(product_variants_key(variant_product.pk))
        assert product_has_variants(variant_product, cache) is False

    def test_without_cache_reads_database(self, variant_product, variant):
        assert product_has_variants(variant_product) is True
        variant.delete()
        assert product_has_variants(variant_product) is False


class TestSplitCodes:

    def test_text_payload(self):
        assert split_codes(" a \n\nb\r\n c") == ["a", "b", "c"]

    def test_iterable_payload(self):
        assert split_codes(["a", " ", "", " b "]) == ["a", "b"]

"""Tests for the assignment engine."""

import uuid
from unittest.mock import patch

import pytest

from django_stockroom.exceptions import (
    InsufficientStockError,
    NotFoundError,
    ValidationError,
    VariantRequiredError,
)
from django_stockroom.models import StockItem
from django_stockroom.services import assignment
from django_stockroom.services.assignment import assign_stock, parse_quantity
from django_stockroom.values import AssignedBy


@pytest.mark.django_db
class TestAssignStock:

    def test_variant_scenario(self, variant_product, variant, user, stock):
        """Two codes, assign two: both used, none left."""
        stock(variant_product, variant, "A1", "A2")

        result = assign_stock(variant_product.pk, variant.pk, user.pk, 2)

        assert result.assigned_count == 2
        assert result.remaining_stock == 0
        assert sorted(result.codes) == ["A1", "A2"]
        for item in StockItem.objects.filter(variant=variant):
            assert item.is_used is True
            assert item.assigned_to == user
            assert item.assigned_at is not None
        variant.refresh_from_db()
        assert variant.stock == 0

    def test_product_without_variants(self, product, user, stock):
        stock(product, None, "A1", "A2", "A3")

        result = assign_stock(product.pk, None, user.pk, 1)

        assert result.assigned_count == 1
        assert result.remaining_stock == 2
        product.refresh_from_db()
        assert product.stock == 2

    def test_variant_id_ignored_without_variants(self, product, variant, user, stock):
        stock(product, None, "A1")

        result = assign_stock(product.pk, variant.pk, user.pk, 1)

        assert result.assigned_count == 1

    def test_insufficient_stock_claims_nothing(self, product, user, stock):
        """Pool of 3, request 5: pool stays 3."""
        stock(product, None, "A1", "A2", "A3")

        with pytest.raises(InsufficientStockError) as exc_info:
            assign_stock(product.pk, None, user.pk, 5)

        assert exc_info.value.available == 3
        assert exc_info.value.requested == 5
        assert exc_info.value.status_code == 409
        assert StockItem.objects.filter(product=product, is_used=False).count() == 3
        product.refresh_from_db()
        assert product.stock == 3

    def test_records_order_and_assigner(self, product, user, admin_user, make_order, stock):
        stock(product, None, "A1")
        order = make_order((product, None, 1))

        result = assign_stock(
            product.pk,
            None,
            user.pk,
            1,
            order_id=order.pk,
            assigned_by=AssignedBy.admin(admin_user.pk),
        )

        item = result.items[0]
        assert item.order_id == order.pk
        assert item.assigned_by_kind == AssignedBy.ADMIN
        assert item.assigned_by_admin_id == admin_user.pk
        assert item.assigned_by == AssignedBy.admin(admin_user.pk)
        assert item.metadata == {
            "assigned_by": {"kind": "admin", "admin_id": str(admin_user.pk)}
        }

    def test_defaults_to_system_assigner(self, product, user, stock):
        stock(product, None, "A1")

        result = assign_stock(product.pk, None, user.pk, 1)

        assert result.items[0].assigned_by == AssignedBy.system()
        assert result.items[0].metadata == {"assigned_by": {"kind": "system"}}

    def test_used_items_never_reassigned(self, product, user, admin_user, stock):
        stock(product, None, "A1", "A2")
        first = assign_stock(product.pk, None, user.pk, 1)
        second = assign_stock(product.pk, None, admin_user.pk, 1)

        assert set(first.codes).isdisjoint(second.codes)
        with pytest.raises(InsufficientStockError):
            assign_stock(product.pk, None, user.pk, 1)

    def test_does_not_touch_order(self, product, user, make_order, stock):
        stock(product, None, "A1")
        order = make_order((product, None, 1))

        assign_stock(product.pk, None, user.pk, 1, order_id=order.pk)

        order.refresh_from_db()
        assert order.product_assigned is False
        assert order.items.get().delivered is False


@pytest.mark.django_db
class TestAssignStockValidation:

    def test_variant_required(self, variant_product, variant, user):
        with pytest.raises(VariantRequiredError) as exc_info:
            assign_stock(variant_product.pk, None, user.pk, 1)

        assert isinstance(exc_info.value, ValidationError)

    def test_unknown_product(self, user):
        with pytest.raises(NotFoundError):
            assign_stock(uuid.uuid4(), None, user.pk, 1)

    def test_unknown_user(self, product, stock):
        stock(product, None, "A1")

        with pytest.raises(NotFoundError):
            assign_stock(product.pk, None, 999999, 1)

        assert StockItem.objects.filter(is_used=False).count() == 1

    def test_unknown_order(self, product, user, stock):
        stock(product, None, "A1")

        with pytest.raises(NotFoundError):
            assign_stock(product.pk, None, user.pk, 1, order_id=uuid.uuid4())

    def test_unknown_variant(self, variant_product, variant, user):
        with pytest.raises(NotFoundError):
            assign_stock(variant_product.pk, uuid.uuid4(), user.pk, 1)

    def test_malformed_ids(self, product, user):
        with pytest.raises(ValidationError, match="Invalid identifiers"):
            assign_stock("nope", None, user.pk, 1)
        with pytest.raises(ValidationError, match="Invalid identifiers"):
            assign_stock(product.pk, None, "nope", 1)

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "x", None, True])
    def test_bad_quantity(self, product, user, quantity):
        with pytest.raises(ValidationError):
            assign_stock(product.pk, None, user.pk, quantity)


@pytest.mark.django_db
class TestLostRace:

    def test_moves_on_when_candidate_taken(self, product, user, admin_user, stock):
        """A candidate claimed concurrently is skipped for the next free one."""
        stock(product, None, "A1", "A2", "A3")
        real_claim = assignment.claim_item
        calls = []

        def racing_claim(pk, **fields):
            if not calls:
                # Another request takes this row first.
                StockItem.objects.filter(pk=pk).update(is_used=True, assigned_to=admin_user)
            calls.append(pk)
            return real_claim(pk, **fields)

        with patch.object(assignment, "claim_item", side_effect=racing_claim):
            result = assign_stock(product.pk, None, user.pk, 2)

        assert result.assigned_count == 2
        assert result.remaining_stock == 0
        assert StockItem.objects.filter(assigned_to=user).count() == 2
        assert StockItem.objects.filter(assigned_to=admin_user).count() == 1

    def test_shortfall_after_lost_race_rolls_back(self, product, user, admin_user, stock):
        stock(product, None, "A1", "A2")
        real_claim = assignment.claim_item
        calls = []

        def racing_claim(pk, **fields):
            if len(calls) == 1:
                StockItem.objects.filter(pk=pk).update(is_used=True, assigned_to=admin_user)
            calls.append(pk)
            return real_claim(pk, **fields)

        with patch.object(assignment, "claim_item", side_effect=racing_claim):
            with pytest.raises(InsufficientStockError) as exc_info:
                assign_stock(product.pk, None, user.pk, 2)

        assert exc_info.value.available == 1
        assert exc_info.value.requested == 2
        assert not StockItem.objects.filter(assigned_to=user).exists()


class TestParseQuantity:

    def test_digit_string(self):
        assert parse_quantity(" 3 ") == 3

    def test_int(self):
        assert parse_quantity(2) == 2

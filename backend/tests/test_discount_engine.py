"""Tests for promotional discount allocation."""

from decimal import Decimal

import pytest

from models.deal import DealType
from utils.discount_engine import CartLine, ResolvedDeal, allocate_discounts, rank_deals


def _line(product_id, quantity, price="2.00", name=None):
    return CartLine(product_id=product_id, name=name or f"Product {product_id}",
                    unit_price=Decimal(price), quantity=quantity)


def _deal(code="D1", product_ids=(1,), quantity_required=2, amount="1.00", **kwargs):
    return ResolvedDeal(
        code=code,
        description=f"Deal {code}",
        deal_type=kwargs.pop("deal_type", DealType.FLAT),
        quantity_required=quantity_required,
        product_ids=frozenset(product_ids),
        discount_amount=Decimal(amount) if amount is not None else None,
        **kwargs,
    )


class TestQuantityThreshold:
    @pytest.mark.parametrize("quantity,times", [(2, 0), (3, 1), (5, 1), (6, 2)])
    def test_applications_follow_floor_of_quantity(self, quantity, times):
        deal = _deal(quantity_required=3)
        [line] = allocate_discounts([_line(1, quantity)], [deal])

        assert line.discount_amount == Decimal("1.00") * times
        if times:
            assert line.applied_deal.times_applied == times
            assert line.applied_deal.units_in_deal == times * 3
        else:
            assert line.applied_deal is None

    def test_transaction_limit_caps_applications(self):
        deal = _deal(quantity_required=3, transaction_limit=1)
        [line] = allocate_discounts([_line(1, 9)], [deal])

        assert line.discount_amount == Decimal("1.00")
        assert line.applied_deal.times_applied == 1


class TestDistribution:
    def test_split_is_proportional_to_units_consumed(self):
        deal = _deal(product_ids=(1, 2), quantity_required=3, amount="3.00")
        first, second = allocate_discounts([_line(1, 2), _line(2, 1)], [deal])

        assert first.discount_amount == Decimal("2.00")
        assert second.discount_amount == Decimal("1.00")
        assert first.applied_deal.code == second.applied_deal.code == "D1"

    def test_remainder_goes_to_last_consumed_line(self):
        # 1.00 over 3 units does not divide into cents
        deal = _deal(product_ids=(1, 2, 3), quantity_required=3, amount="1.00")
        lines = allocate_discounts([_line(1, 1), _line(2, 1), _line(3, 1)], [deal])

        assert [l.discount_amount for l in lines] == [Decimal("0.33"), Decimal("0.33"), Decimal("0.34")]
        assert sum(l.discount_amount for l in lines) == Decimal("1.00")

    def test_lines_beyond_units_in_deal_get_nothing(self):
        deal = _deal(product_ids=(1, 2), quantity_required=2, amount="1.00", transaction_limit=1)
        first, second = allocate_discounts([_line(1, 2), _line(2, 3)], [deal])

        assert first.discount_amount == Decimal("1.00")
        assert second.discount_amount == Decimal("0.00")
        assert second.applied_deal is None

    def test_store_override_replaces_chain_amount(self):
        deal = _deal(amount="1.00", store_override_discount=Decimal("1.50"))
        [line] = allocate_discounts([_line(1, 2)], [deal])

        assert line.discount_amount == Decimal("1.50")

    def test_percentage_deal(self):
        deal = _deal(deal_type=DealType.PERCENTAGE, amount=None, discount_percentage=Decimal("0.25"))
        [line] = allocate_discounts([_line(1, 2, price="3.00")], [deal])

        assert line.discount_amount == Decimal("1.50")
        assert line.applied_deal.discount_percentage == Decimal("0.25")

    def test_price_override_deal(self):
        deal = _deal(deal_type=DealType.PRICE_OVERRIDE, amount=None, override_price=Decimal("1.25"),
                     quantity_required=1)
        [line] = allocate_discounts([_line(1, 2, price="2.00")], [deal])

        assert line.discount_amount == Decimal("1.50")

    def test_discount_never_exceeds_line_subtotal(self):
        deal = _deal(amount="10.00")
        [line] = allocate_discounts([_line(1, 2, price="1.00")], [deal])

        assert line.discount_amount == Decimal("2.00")
        assert line.line_subtotal - line.discount_amount >= 0


class TestPriority:
    def test_higher_priority_wins_regardless_of_order(self):
        low = _deal(code="A", priority=1, amount="0.50")
        high = _deal(code="B", priority=5, amount="0.75")

        for deals in ([low, high], [high, low]):
            [line] = allocate_discounts([_line(1, 2)], deals)
            assert line.applied_deal.code == "B"
            assert line.discount_amount == Decimal("0.75")

    def test_equal_priority_breaks_ties_by_code(self):
        zulu = _deal(code="ZULU", priority=3, amount="2.00")
        alpha = _deal(code="ALPHA", priority=3, amount="0.10")

        assert [d.code for d in rank_deals([zulu, alpha])] == ["ALPHA", "ZULU"]
        [line] = allocate_discounts([_line(1, 2)], [zulu, alpha])
        assert line.applied_deal.code == "ALPHA"

    def test_line_in_two_groups_keeps_only_one_deal(self):
        shared = _deal(code="S", product_ids=(1, 2), priority=2, amount="1.00")
        solo = _deal(code="P", product_ids=(1,), quantity_required=1, priority=1, amount="5.00")
        first, second = allocate_discounts([_line(1, 1), _line(2, 1)], [shared, solo])

        assert first.applied_deal.code == "S"
        assert second.applied_deal.code == "S"
        assert first.discount_amount + second.discount_amount == Decimal("1.00")


class TestEdgeCases:
    def test_no_deals_clears_stale_discounts(self):
        stale = CartLine(product_id=1, name="Coffee", unit_price=Decimal("2.00"), quantity=2,
                         discount_amount=Decimal("1.00"))
        [line] = allocate_discounts([stale], [])

        assert line.discount_amount == Decimal("0.00")
        assert line.applied_deal is None

    def test_empty_cart_is_returned_unchanged(self):
        assert allocate_discounts([], [_deal()]) == []

    @pytest.mark.parametrize("deal", [
        _deal(product_ids=()),
        _deal(amount="0.00"),
        _deal(amount=None),
    ])
    def test_inert_deals_are_skipped(self, deal):
        [line] = allocate_discounts([_line(1, 4)], [deal])

        assert line.discount_amount == Decimal("0.00")
        assert line.applied_deal is None

    def test_allocation_is_idempotent(self):
        deals = [_deal(code="A", product_ids=(1, 2), quantity_required=3, amount="1.00"),
                 _deal(code="B", product_ids=(2,), priority=2, amount="0.40")]
        lines = [_line(1, 4), _line(2, 3, price="1.10")]

        once = allocate_discounts(lines, deals)
        twice = allocate_discounts(once, deals)

        assert once == twice

    def test_quantities_and_products_are_preserved(self):
        lines = [_line(1, 4), _line(2, 1)]
        result = allocate_discounts(lines, [_deal()])

        assert [(l.product_id, l.quantity) for l in result] == [(1, 4), (2, 1)]

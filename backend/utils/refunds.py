# backend/utils/refunds.py
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from utils.cart_aggregate import compute_totals
from utils.discount_engine import AppliedDeal, CartLine, ResolvedDeal, allocate_discounts
from utils.money import ZERO, money, to_decimal


@dataclass(frozen=True)
class RefundQuote:
    """What a customer gets back if some items are removed from a paid order.

    Deals are re-evaluated on the remaining items, so removing one item of
    a multi-buy can also take the multi-buy discount away.
    """
    full: bool
    refund_amount: Decimal
    new_subtotal: Decimal
    new_discount: Decimal
    new_tax: Decimal
    new_total: Decimal
    remaining_lines: List[CartLine] = field(default_factory=list)


def lines_from_snapshot(items: Iterable[dict]) -> List[CartLine]:
    return [
        CartLine(
            product_id=item["product_id"],
            name=item.get("name", ""),
            unit_price=to_decimal(item["unit_price"]),
            quantity=int(item["quantity"]),
            discount_amount=to_decimal(item.get("discount_amount")),
            applied_deal=AppliedDeal.from_dict(item.get("applied_deal")),
        )
        for item in items
    ]


def quote_refund(
    items: Sequence[dict],
    original_total,
    remove_product_ids: Iterable[int],
    deals: Sequence[ResolvedDeal],
    tax_rate: Optional[Decimal],
) -> RefundQuote:
    remove = set(remove_product_ids)
    original_total = money(original_total)
    remaining = [l for l in lines_from_snapshot(items) if l.product_id not in remove]

    if not remaining:
        return RefundQuote(
            full=True,
            refund_amount=original_total,
            new_subtotal=ZERO,
            new_discount=ZERO,
            new_tax=ZERO,
            new_total=ZERO,
        )

    repriced = allocate_discounts(remaining, deals)
    totals = compute_totals(repriced, tax_rate)
    return RefundQuote(
        full=False,
        refund_amount=max(ZERO, original_total - totals.total),
        new_subtotal=totals.subtotal,
        new_discount=totals.discount_total,
        new_tax=totals.tax,
        new_total=totals.total,
        remaining_lines=repriced,
    )

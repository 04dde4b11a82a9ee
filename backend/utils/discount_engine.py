# backend/utils/discount_engine.py
"""Promotional discount allocation.

Pure functions over immutable records: given the priced lines of a cart and
the deals active at its store, work out how much each line is discounted and
which deal produced it. Everything is recomputed from scratch on every call,
so repeated calls on the same input give the same output.
"""
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from models.deal import DealType
from utils.money import ZERO, money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedDeal:
    """A deal as it applies at one store on one day."""
    code: str
    description: str
    deal_type: DealType
    quantity_required: int
    product_ids: FrozenSet[int] = frozenset()
    discount_amount: Optional[Decimal] = None
    store_override_discount: Optional[Decimal] = None
    discount_percentage: Optional[Decimal] = None
    override_price: Optional[Decimal] = None
    priority: int = 0
    transaction_limit: Optional[int] = None

    @property
    def per_application_discount(self) -> Decimal:
        # Store override wins over the chain-wide amount
        if self.store_override_discount is not None:
            return self.store_override_discount
        if self.discount_amount is not None:
            return self.discount_amount
        return ZERO


@dataclass(frozen=True)
class AppliedDeal:
    """Which deal discounted a line, and how often it triggered."""
    code: str
    description: str
    deal_type: str
    priority: int
    times_applied: int
    units_in_deal: int
    discount_percentage: Optional[Decimal] = None
    override_price: Optional[Decimal] = None

    def to_dict(self) -> dict:
        data = {
            "code": self.code,
            "description": self.description,
            "deal_type": self.deal_type,
            "priority": self.priority,
            "times_applied": self.times_applied,
            "units_in_deal": self.units_in_deal,
        }
        if self.discount_percentage is not None:
            data["discount_percentage"] = str(self.discount_percentage)
        if self.override_price is not None:
            data["override_price"] = str(self.override_price)
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["AppliedDeal"]:
        if not data:
            return None
        pct = data.get("discount_percentage")
        override = data.get("override_price")
        return cls(
            code=data["code"],
            description=data.get("description", ""),
            deal_type=data.get("deal_type", DealType.FLAT.value),
            priority=int(data.get("priority", 0)),
            times_applied=int(data.get("times_applied", 0)),
            units_in_deal=int(data.get("units_in_deal", 0)),
            discount_percentage=Decimal(pct) if pct is not None else None,
            override_price=Decimal(override) if override is not None else None,
        )


@dataclass(frozen=True)
class CartLine:
    product_id: int
    name: str
    unit_price: Decimal
    quantity: int
    discount_amount: Decimal = ZERO
    applied_deal: Optional[AppliedDeal] = None

    @property
    def line_subtotal(self) -> Decimal:
        return money(self.unit_price * self.quantity)


def _times_applied(deal: ResolvedDeal, total_qty: int) -> int:
    times = total_qty // deal.quantity_required
    if deal.transaction_limit is not None:
        times = min(times, deal.transaction_limit)
    return max(times, 0)


def _has_value(deal: ResolvedDeal) -> bool:
    if deal.deal_type == DealType.PERCENTAGE:
        return bool(deal.discount_percentage) and deal.discount_percentage > 0
    if deal.deal_type == DealType.PRICE_OVERRIDE:
        return deal.override_price is not None
    return deal.per_application_discount > 0


def _distribute(
    deal: ResolvedDeal,
    members: Sequence[CartLine],
    times_applied: int,
    units_in_deal: int,
) -> List[Tuple[CartLine, Decimal]]:
    """Split one triggered deal across its member lines in cart order.

    Each line consumes min(quantity, remaining) units. For flat deals the
    line that exhausts the remaining units takes whatever is left of the
    total, so cent rounding never loses or invents money.
    """
    shares: List[Tuple[CartLine, Decimal]] = []
    remaining = units_in_deal
    total_discount = money(deal.per_application_discount * times_applied)
    allocated = ZERO

    for line in members:
        if remaining <= 0:
            break
        units = min(line.quantity, remaining)
        remaining -= units

        if deal.deal_type == DealType.PERCENTAGE:
            amount = money(line.unit_price * units * deal.discount_percentage)
        elif deal.deal_type == DealType.PRICE_OVERRIDE:
            amount = money(max(ZERO, (line.unit_price - deal.override_price) * units))
        elif remaining == 0:
            amount = max(ZERO, total_discount - allocated)
        else:
            amount = money(total_discount / units_in_deal * units)
        allocated += amount

        # Never discount a line below zero
        amount = min(amount, line.line_subtotal)
        shares.append((line, amount))
    return shares


def rank_deals(deals: Iterable[ResolvedDeal]) -> List[ResolvedDeal]:
    """Highest priority first, equal priority by ascending deal code."""
    return sorted(deals, key=lambda d: (-d.priority, d.code))


def allocate_discounts(lines: Sequence[CartLine], deals: Iterable[ResolvedDeal]) -> List[CartLine]:
    if not lines or all(l.quantity <= 0 for l in lines):
        return list(lines)

    # product id -> (amount, applied deal); the first (highest ranked) write wins
    winners: Dict[int, Tuple[Decimal, AppliedDeal]] = {}

    for deal in rank_deals(deals):
        if deal.quantity_required < 1 or not deal.product_ids or not _has_value(deal):
            continue

        members = [l for l in lines if l.quantity > 0 and l.product_id in deal.product_ids]
        total_qty = sum(l.quantity for l in members)
        if total_qty < deal.quantity_required:
            continue

        times = _times_applied(deal, total_qty)
        if times == 0:
            continue
        units_in_deal = times * deal.quantity_required

        applied = AppliedDeal(
            code=deal.code,
            description=deal.description,
            deal_type=deal.deal_type.value,
            priority=deal.priority,
            times_applied=times,
            units_in_deal=units_in_deal,
            discount_percentage=deal.discount_percentage if deal.deal_type == DealType.PERCENTAGE else None,
            override_price=deal.override_price if deal.deal_type == DealType.PRICE_OVERRIDE else None,
        )
        logger.debug("Deal %s triggered %s time(s) over %s unit(s)", deal.code, times, units_in_deal)

        for line, amount in _distribute(deal, members, times, units_in_deal):
            if line.product_id not in winners:
                winners[line.product_id] = (amount, applied)

    result = []
    for line in lines:
        amount, applied = winners.get(line.product_id, (ZERO, None))
        result.append(replace(line, discount_amount=amount, applied_deal=applied))
    return result

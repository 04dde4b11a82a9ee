# backend/utils/deal_resolver.py
import logging
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional, Set

from sqlalchemy.orm import Session

from models.deal import Deal, DealProduct, DealType, StoreDeal
from models.product import Product, StoreProduct
from utils.discount_engine import ResolvedDeal
from utils.money import to_decimal

logger = logging.getLogger(__name__)


def _optional_decimal(value):
    return to_decimal(value) if value is not None else None


def _to_resolved(deal: Deal, link: StoreDeal, product_ids: Set[int]) -> ResolvedDeal:
    return ResolvedDeal(
        code=deal.code,
        description=deal.description,
        deal_type=DealType(deal.deal_type),
        quantity_required=deal.quantity_required or 1,
        product_ids=frozenset(product_ids),
        discount_amount=_optional_decimal(deal.discount_amount),
        store_override_discount=_optional_decimal(link.discount_override),
        discount_percentage=_optional_decimal(deal.discount_percentage),
        override_price=_optional_decimal(deal.override_price),
        priority=deal.priority or 0,
        transaction_limit=deal.transaction_limit,
    )


def resolve_active_deals(db: Session, store_id: int, as_of: Optional[date] = None) -> List[ResolvedDeal]:
    """Deals running at a store on a given day, with their qualifying products.

    Never raises: promotional pricing must not block a cart or a checkout,
    so any lookup failure is logged and treated as "no deals".
    """
    as_of = as_of or date.today()
    try:
        rows = (
            db.query(Deal, StoreDeal)
            .join(StoreDeal, StoreDeal.deal_code == Deal.code)
            .filter(
                StoreDeal.store_id == store_id,
                StoreDeal.active.is_(True),
                Deal.active.is_(True),
                Deal.start_date <= as_of,
                Deal.end_date >= as_of,
            )
            .all()
        )
        if not rows:
            return []

        codes = [deal.code for deal, _ in rows]
        products_by_deal: Dict[str, Set[int]] = defaultdict(set)
        for code, product_id in (
            db.query(DealProduct.deal_code, DealProduct.product_id)
            .filter(DealProduct.deal_code.in_(codes))
            .all()
        ):
            products_by_deal[code].add(product_id)

        return [_to_resolved(deal, link, products_by_deal.get(deal.code, set())) for deal, link in rows]
    except Exception:
        logger.exception("Deal lookup failed for store %s on %s, pricing without deals", store_id, as_of)
        return []


def describe_deal(deal: ResolvedDeal) -> str:
    """Badge text shown next to a deal on the store front."""
    if deal.deal_type == DealType.PRICE_OVERRIDE and deal.override_price is not None:
        return f"Special Price: ${deal.override_price:.2f}"
    if deal.deal_type == DealType.PERCENTAGE and deal.discount_percentage:
        return f"{deal.discount_percentage * 100:.0f}% off"
    if deal.per_application_discount > 0:
        return f"${deal.per_application_discount:.2f} off"
    return "Special Deal"


def load_deal_products(db: Session, store_id: int, deal: ResolvedDeal) -> List[dict]:
    """Qualifying products of a deal that the store actually sells."""
    if not deal.product_ids:
        return []
    rows = (
        db.query(Product, StoreProduct)
        .join(StoreProduct, StoreProduct.product_id == Product.id)
        .filter(
            StoreProduct.store_id == store_id,
            StoreProduct.available.is_(True),
            Product.id.in_(deal.product_ids),
        )
        .order_by(Product.name.asc())
        .all()
    )
    return [
        {
            "id": product.id,
            "name": product.name,
            "price": to_decimal(sp.price),
            "image_url": product.image_url,
        }
        for product, sp in rows
    ]

from sqlalchemy import Column, Integer, String, Boolean, Date, ForeignKey, Numeric, Enum, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base
import enum

# How a triggered deal turns into money off
class DealType(str, enum.Enum):
    FLAT = "flat"
    PERCENTAGE = "percentage"
    PRICE_OVERRIDE = "price_override"

# Promotional rule: buy quantity_required qualifying items, get a discount
class Deal(Base):
    __tablename__ = "deals"

    code = Column(String, primary_key=True)
    description = Column(String, nullable=False)
    deal_type = Column(Enum(DealType), nullable=False, default=DealType.FLAT)

    quantity_required = Column(Integer, CheckConstraint("quantity_required >= 1"), nullable=False, default=1)
    discount_amount = Column(Numeric(10, 2), nullable=True)
    # Fraction, 0.20 == 20% off
    discount_percentage = Column(Numeric(5, 4), nullable=True)
    override_price = Column(Numeric(10, 2), nullable=True)

    priority = Column(Integer, nullable=False, default=0)
    transaction_limit = Column(Integer, nullable=True)

    # Inclusive on both ends
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    age_restricted = Column(Boolean, nullable=False, default=False)

    stores = relationship("StoreDeal", back_populates="deal", cascade="all, delete-orphan")
    products = relationship("DealProduct", back_populates="deal", cascade="all, delete-orphan")


# Links a deal to a store, optionally overriding the flat discount there
class StoreDeal(Base):
    __tablename__ = "store_deals"

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    deal_code = Column(String, ForeignKey("deals.code"), nullable=False, index=True)
    discount_override = Column(Numeric(10, 2), nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    deal = relationship("Deal", back_populates="stores")

    __table_args__ = (
        UniqueConstraint("store_id", "deal_code", name="uq_storedeal_store_deal"),
    )


# Qualifying product set of a deal
class DealProduct(Base):
    __tablename__ = "deal_products"

    id = Column(Integer, primary_key=True, index=True)
    deal_code = Column(String, ForeignKey("deals.code"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    deal = relationship("Deal", back_populates="products")

    __table_args__ = (
        UniqueConstraint("deal_code", "product_id", name="uq_dealproduct_deal_product"),
    )

# backend/models/product.py
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Numeric, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base

class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)


# Model Product
# Catalog entry shared by every store. Price and availability
# are per store and live on StoreProduct.
class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    image_url = Column(String, nullable=True)
    age_restricted = Column(Boolean, nullable=False, default=False)

    category = relationship("Category")


class StoreProduct(Base):
    __tablename__ = "store_products"

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    price = Column(Numeric(10, 2), CheckConstraint("price >= 0"), nullable=False)
    available = Column(Boolean, nullable=False, default=True)

    product = relationship("Product")

    __table_args__ = (
        UniqueConstraint("store_id", "product_id", name="uq_storeproduct_store_product"),
    )

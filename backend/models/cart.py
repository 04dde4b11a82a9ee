# backend/models/cart.py
from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric, JSON, UniqueConstraint, CheckConstraint, func
from sqlalchemy.orm import relationship
from database import Base

# Represents the user's shopping cart
class Cart(Base):
    __tablename__ = "carts" # Table name

    id = Column(Integer, primary_key=True, index=True) # Primary key
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False) # Foreign key to users
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=True) # Selected pickup store
    status = Column(String, default="open", index=True)  # Cart status
    version = Column(Integer, nullable=False, default=0) # Bumped on every committed mutation
    created_at = Column(DateTime, server_default=func.now()) # Creation timestamp

    # One-to-many relationship with cart items, kept in insertion order
    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan",
                         order_by="CartItem.position")
    store = relationship("Store")


# Represents a single priced line (product + quantity + allocated discount) within a cart
class CartItem(Base):
    __tablename__ = "cart_items" # Table name

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), index=True, nullable=False) # Foreign key to parent cart
    product_id = Column(Integer, ForeignKey("products.id"), index=True, nullable=False) # Foreign key to product
    position = Column(Integer, nullable=False, default=0) # Order the line was added in
    name = Column(String, nullable=False) # Display name at the moment of addition
    qty = Column(Integer, CheckConstraint("qty > 0"), nullable=False, default=1) # Product quantity
    unit_price = Column(Numeric(10, 2), nullable=False) # Store price at the moment of addition
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    applied_deal = Column(JSON, nullable=True) # Deal that produced the discount

    cart = relationship("Cart", back_populates="items") # Relationship back to Cart

    __table_args__ = (
        # Unique constraint to prevent duplicate product entries in the same cart
        UniqueConstraint("cart_id", "product_id", name="uq_cartitem_cart_product"),
    )

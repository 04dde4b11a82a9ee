from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, JSON, Enum, func
from sqlalchemy.orm import relationship
from database import Base
import enum

# Order lifecycle states; see utils/order_lifecycle.py for the legal transitions
class OrderStatus(str, enum.Enum):
    PLACED = "placed"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"

ASAP = "asap"

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    status = Column(Enum(OrderStatus, values_callable=lambda e: [m.value for m in e]),
                    nullable=False, default=OrderStatus.PLACED, index=True)
    # Incremented on every write, lets observers drop out-of-order pushes
    version = Column(Integer, nullable=False, default=1)

    # Payment details, captured before the row is created
    payment_method_id = Column(Integer, ForeignKey("payment_methods.id"), nullable=True)
    payment_ref = Column(String, nullable=True)

    # Write-once snapshot of the priced cart
    items = Column(JSON, nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)

    # "asap" or an ISO 8601 timestamp
    pickup_time = Column(String, nullable=False, default=ASAP)
    special_instructions = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    store = relationship("Store")
    user = relationship("User")

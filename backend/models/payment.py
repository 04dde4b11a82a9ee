from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, func
from database import Base

# Stored card reference; the token itself is owned by the payment gateway
class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    provider_ref = Column(String, nullable=False)
    brand = Column(String, nullable=True)
    last4 = Column(String(4), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

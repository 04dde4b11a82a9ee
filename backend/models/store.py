from sqlalchemy import Column, Integer, String, Boolean, Numeric, CheckConstraint
from database import Base

# Physical store location customers pick up from
class Store(Base):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    # Sales tax as a fraction, 0.0700 == 7%
    tax_rate = Column(Numeric(6, 4), CheckConstraint("tax_rate >= 0"), nullable=False, default=0)
    is_open = Column(Boolean, nullable=False, default=True)

# backend/models/users.py
from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from database import Base

# Represents a user account issued by the identity service
# Roles: "customer", "staff" (bound to one store) and "admin"
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    role = Column(String, nullable=False, default="customer")
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    mobile_number = Column(String, nullable=True)

    # Store a staff member works at
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=True)

    store = relationship("Store")

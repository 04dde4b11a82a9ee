from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import date


# Base configuration for ORM compatibility
class ORMBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class StoreOut(ORMBase):
    id: int
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    tax_rate: float
    is_open: bool


# Product as sold at one store
class StoreProductOut(BaseModel):
    id: int
    name: str
    category: Optional[str] = None
    price: float
    available: bool
    image_url: Optional[str] = None
    age_restricted: bool = False


class StoreProductPage(BaseModel):
    items: List[StoreProductOut]
    total: int
    page: int
    page_size: int


# Deal card for the store front
class DealOut(BaseModel):
    code: str
    description: str
    deal_type: str
    discount: str
    quantity_required: int
    discount_amount: Optional[float] = None
    priority: int
    transaction_limit: Optional[int] = None
    end_date: date
    expires: str
    age_restricted: bool = False


class DealProductOut(BaseModel):
    id: int
    name: str
    price: float
    image_url: Optional[str] = None


# Deal detail: qualifying products plus how far the user's cart is towards it
class DealDetailOut(DealOut):
    products: List[DealProductOut]
    cart_quantity: int
    progress: int
    complete: bool

from pydantic import BaseModel, Field
from typing import List, Optional

# Request schema for adding one unit of a product to the cart
class CartAddItem(BaseModel):
    product_id: int
    store_id: Optional[int] = None  # pricing store while the cart has none yet

# Request schema for a signed quantity change
class CartQuantityChange(BaseModel):
    delta: int = Field(description="Units to add (positive) or take away (negative)")

# Request schema for choosing the pickup store
class CartSelectStore(BaseModel):
    store_id: int

# Deal that produced a line's discount
class AppliedDealOut(BaseModel):
    code: str
    description: str
    deal_type: str
    times_applied: int
    units_in_deal: int

# Response schema for a single cart line item
class CartItemOut(BaseModel):
    product_id: int
    name: str
    qty: int
    unit_price: float
    line_total: float
    discount_amount: float
    applied_deal: Optional[AppliedDealOut] = None

# Response schema for the entire cart summary
class CartOut(BaseModel):
    store_id: Optional[int] = None
    version: int
    items: List[CartItemOut]
    item_count: int
    subtotal: float
    discount_total: float
    tax: float
    total: float

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Literal
from datetime import datetime


# Output schema for an individual order line item
class OrderItemOut(BaseModel):
    product_id: int
    name: str
    quantity: int
    unit_price: float
    discount_amount: float
    line_total: float
    deal_code: Optional[str] = None


# Input schema for confirming the cart as an order
class CheckoutPayload(BaseModel):
    payment_method_id: Optional[int] = None  # falls back to the default method
    pickup_time: str = "asap"
    special_instructions: Optional[str] = Field(default=None, max_length=500)

    @field_validator("pickup_time")
    @classmethod
    def _pickup_time(cls, value: str) -> str:
        if value == "asap":
            return value
        try:
            datetime.fromisoformat(value)
        except ValueError:
            raise ValueError("pickup_time must be 'asap' or an ISO 8601 timestamp")
        return value


# Staff dashboard urgency marker
class TimelinessOut(BaseModel):
    level: str
    label: str
    minutes: int


# Output schema representing the full order details
class OrderResponse(BaseModel):
    id: int
    user_id: int
    store_id: int
    status: str
    version: int
    subtotal: float
    discount: float
    tax: float
    total: float
    pickup_time: str
    special_instructions: Optional[str] = None
    payment_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemOut]
    timeliness: Optional[TimelinessOut] = None


# Schema for paginated order lists
class OrdersPage(BaseModel):
    items: List[OrderResponse]
    total: int
    page: int
    page_size: int


# Schema for updating order status
class OrderStatusPatch(BaseModel):
    status: Literal["placed", "preparing", "ready", "completed"]


# Staff preview of a partial or full refund
class RefundQuoteOut(BaseModel):
    order_id: int
    full: bool
    refund_amount: float
    new_subtotal: float
    new_discount: float
    new_tax: float
    new_total: float
    remaining_items: List[OrderItemOut]

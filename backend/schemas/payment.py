from pydantic import BaseModel, Field
from typing import Optional

# Request schema for saving a gateway-issued card token
class PaymentMethodCreate(BaseModel):
    provider_ref: str = Field(min_length=1)
    brand: Optional[str] = None
    last4: Optional[str] = Field(default=None, min_length=4, max_length=4)
    is_default: bool = False

class PaymentMethodOut(BaseModel):
    id: int
    brand: Optional[str] = None
    last4: Optional[str] = None
    is_default: bool

    class Config:
        from_attributes = True

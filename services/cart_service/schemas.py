from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field


class CartCreatedResponse(BaseModel):
    cart_id: str


class CartItemCreate(BaseModel):
    product_id: int
    attributes: str = Field(default="", max_length=1000)
    quantity: int = Field(gt=0)


class CartItemUpdate(BaseModel):
    quantity: int = Field(gt=0)


class CartLineResponse(BaseModel):
    item_id: int
    cart_id: str
    product_id: int
    attributes: str
    quantity: int

    class Config:
        from_attributes = True


class CartItemView(BaseModel):
    item_id: int
    product_id: int
    name: str
    attributes: str
    quantity: int
    price: Decimal
    subtotal: Decimal


class CartResponse(BaseModel):
    cart_id: str
    items: List[CartItemView] = []
    total_amount: Decimal


class MessageResponse(BaseModel):
    message: str

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import AliasChoices, BaseModel, BeforeValidator, Field

from shared.money import to_major_units

from .models import OrderStatus


def _cents_to_decimal(value):
    if isinstance(value, int):
        return to_major_units(value)
    return value


# Stored as integer cents, rendered as a two-decimal amount ("24.48").
MoneyAmount = Annotated[Decimal, BeforeValidator(_cents_to_decimal)]


class CheckoutRequest(BaseModel):
    cart_id: str = Field(min_length=1, max_length=50)
    shipping_id: int = Field(gt=0)
    tax_id: int = Field(gt=0)


class OrderLineResponse(BaseModel):
    item_id: int
    product_id: int
    attributes: str
    product_name: str
    quantity: int
    unit_cost: MoneyAmount
    subtotal: MoneyAmount

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    order_id: int
    customer_id: int
    tax_id: int
    shipping_id: int
    reference: str
    total_amount: MoneyAmount
    status: OrderStatus
    created_on: Optional[datetime]
    shipped_on: Optional[datetime]
    order_items: List[OrderLineResponse] = Field(
        validation_alias=AliasChoices("lines", "order_items")
    )

    class Config:
        from_attributes = True


class OrderShortResponse(BaseModel):
    order_id: int
    total_amount: MoneyAmount
    status: OrderStatus
    created_on: Optional[datetime]
    shipped_on: Optional[datetime]

    class Config:
        from_attributes = True


class StatusTransitionRequest(BaseModel):
    status: OrderStatus

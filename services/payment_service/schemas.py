from pydantic import AliasChoices, BaseModel, EmailStr, Field


class CaptureRequest(BaseModel):
    order_id: int = Field(gt=0)
    email: EmailStr
    # Older clients post Stripe's field name
    payment_token: str = Field(
        min_length=1, validation_alias=AliasChoices("payment_token", "stripeToken")
    )


class ChargeResponse(BaseModel):
    order_id: int
    charge_id: str
    amount: int
    currency: str
    status: str
    receipt_url: str | None = None

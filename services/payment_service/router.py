from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.config.settings import get_settings
from shared.security import VerifiedIdentity, get_current_customer, limiter

from .schemas import CaptureRequest, ChargeResponse
from .service import PaymentCapture

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_capture(request: Request) -> PaymentCapture:
    return request.app.state.payment_capture


@router.post("/charge", response_model=ChargeResponse)
@limiter.limit(get_settings().capture_rate_limit)
async def capture_payment(
    request: Request,                                          # REQUIRED: slowapi needs this
    payload: CaptureRequest,
    identity: VerifiedIdentity = Depends(get_current_customer),
    capture: PaymentCapture = Depends(get_payment_capture),
    db: AsyncSession = Depends(get_db),
):
    result = await capture.capture(
        db,
        order_id=payload.order_id,
        payer_email=payload.email,
        payment_token=payload.payment_token,
        customer_id=identity.customer_id,
    )
    return ChargeResponse(**vars(result))

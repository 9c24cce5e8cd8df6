from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.config.settings import get_settings
from shared.security import VerifiedIdentity, get_current_customer, limiter, verify_internal_api_key

from .schemas import CheckoutRequest, OrderResponse, OrderShortResponse, StatusTransitionRequest
from .service import OrderService, OrderTransactionManager, RolledBack

router = APIRouter(prefix="/orders", tags=["Orders"])

# Fulfillment hook, only reachable with the internal service key
internal_router = APIRouter(
    prefix="/orders", tags=["Orders"], dependencies=[Depends(verify_internal_api_key)]
)


def get_order_manager(request: Request) -> OrderTransactionManager:
    return request.app.state.order_manager


@router.post("/", response_model=OrderResponse, status_code=201)
@limiter.limit(get_settings().checkout_rate_limit)
async def checkout(
    request: Request,                                          # REQUIRED: slowapi needs this
    payload: CheckoutRequest,
    identity: VerifiedIdentity = Depends(get_current_customer),
    manager: OrderTransactionManager = Depends(get_order_manager),
    db: AsyncSession = Depends(get_db),
):
    result = await manager.create_order(
        db,
        cart_id=payload.cart_id,
        shipping_id=payload.shipping_id,
        tax_id=payload.tax_id,
        customer_id=identity.customer_id,
        auth_code=identity.auth_code,
    )
    if isinstance(result, RolledBack):
        raise result.to_error()
    return result.order


@router.get("/inCustomer", response_model=list[OrderShortResponse])
async def get_customer_orders(
    identity: VerifiedIdentity = Depends(get_current_customer),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.list_customer_orders(db, identity.customer_id)


@router.get("/shortDetail/{order_id}", response_model=OrderShortResponse)
async def get_short_order(
    order_id: int,
    identity: VerifiedIdentity = Depends(get_current_customer),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.get_order_summary(db, order_id, identity.customer_id)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order_summary(
    order_id: int,
    identity: VerifiedIdentity = Depends(get_current_customer),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.get_order_summary(db, order_id, identity.customer_id)


@internal_router.patch("/{order_id}/status", response_model=OrderShortResponse)
async def transition_status(
    order_id: int, payload: StatusTransitionRequest, db: AsyncSession = Depends(get_db)
):
    return await OrderService.transition_status(db, order_id, payload.status)

"""
Cart endpoints. The cart id itself is the capability: carts are anonymous
until checkout, where the bearer credential is required.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db

from .schemas import (
    CartCreatedResponse,
    CartItemCreate,
    CartItemUpdate,
    CartLineResponse,
    CartResponse,
    MessageResponse,
)
from .service import CartService

router = APIRouter(prefix="/cart", tags=["Cart"])


@router.post("/", response_model=CartCreatedResponse)
async def generate_cart_id():
    return CartCreatedResponse(cart_id=CartService.generate_cart_id())


@router.get("/{cart_id}", response_model=CartResponse)
async def get_cart(cart_id: str, db: AsyncSession = Depends(get_db)):
    return await CartService.get_cart(db, cart_id)


@router.post("/{cart_id}/items", response_model=CartLineResponse, status_code=201)
async def add_item(cart_id: str, item: CartItemCreate, db: AsyncSession = Depends(get_db)):
    return await CartService.add_item(db, cart_id, item)


@router.put("/items/{item_id}", response_model=CartLineResponse)
async def update_item(item_id: int, payload: CartItemUpdate, db: AsyncSession = Depends(get_db)):
    return await CartService.update_quantity(db, item_id, payload.quantity)


@router.delete("/{cart_id}/items/{item_id}", response_model=MessageResponse)
async def remove_item(cart_id: str, item_id: int, db: AsyncSession = Depends(get_db)):
    await CartService.remove_item(db, cart_id, item_id)
    return MessageResponse(message="Delete succeeded")


@router.delete("/{cart_id}", response_model=MessageResponse)
async def clear_cart(cart_id: str, db: AsyncSession = Depends(get_db)):
    """Deletes all items in the cart."""
    await CartService.clear_cart(db, cart_id)
    return MessageResponse(message="Cart cleared")

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from .models import CartLine


class CartRepository:
    @staticmethod
    async def add_item(db: AsyncSession, item: CartLine) -> CartLine:
        """Merges into an existing line for the same product and attributes."""
        result = await db.execute(
            select(CartLine)
            .where(CartLine.cart_id == item.cart_id)
            .where(CartLine.product_id == item.product_id)
            .where(CartLine.attributes == item.attributes)
        )
        existing_item = result.scalars().first()

        if existing_item:
            existing_item.quantity += item.quantity
            item = existing_item
        else:
            db.add(item)

        await db.commit()
        await db.refresh(item)
        return item

    @staticmethod
    async def get_item(db: AsyncSession, item_id: int) -> Optional[CartLine]:
        result = await db.execute(select(CartLine).where(CartLine.item_id == item_id))
        return result.scalars().first()

    @staticmethod
    async def update_quantity(db: AsyncSession, item: CartLine, quantity: int) -> CartLine:
        item.quantity = quantity
        await db.commit()
        await db.refresh(item)
        return item

    @staticmethod
    async def remove_item(db: AsyncSession, item: CartLine):
        await db.delete(item)
        await db.commit()

    @staticmethod
    async def delete_lines(db: AsyncSession, cart_id: str) -> int:
        """Deletes every line of the cart inside the caller's transaction (no commit)."""
        result = await db.execute(delete(CartLine).where(CartLine.cart_id == cart_id))
        return result.rowcount

    @staticmethod
    async def clear_cart(db: AsyncSession, cart_id: str) -> int:
        """Deletes all items for the cart and commits."""
        deleted = await CartRepository.delete_lines(db, cart_id)
        await db.commit()
        return deleted

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, text, update
from .models import Order, OrderLine, OrderStatus


class OrderRepository:
    """
    Persistence for orders. Nothing here commits: callers own the
    transaction boundary.
    """

    @staticmethod
    async def acquire_cart_lock(db: AsyncSession, cart_id: str):
        """Transaction-scoped advisory lock so other processes queue on the same cart."""
        if db.bind.dialect.name == "postgresql":
            await db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": f"checkout:{cart_id}"},
            )

    @staticmethod
    async def insert_order(db: AsyncSession, order: Order) -> Order:
        db.add(order)
        await db.flush()
        return order

    @staticmethod
    async def add_line(db: AsyncSession, line: OrderLine) -> OrderLine:
        db.add(line)
        await db.flush()
        return line

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_order_for_update(db: AsyncSession, order_id: int) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.order_id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def list_customer_orders(db: AsyncSession, customer_id: int) -> list[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.customer_id == customer_id)
            .order_by(Order.created_on.desc(), Order.order_id.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def transition_status(
        db: AsyncSession,
        order_id: int,
        expected: OrderStatus,
        new_status: OrderStatus,
        shipped_on: datetime | None = None,
    ) -> bool:
        """
        Compare-and-swap on Order.status. Returns False when the row was not in
        the expected state, so concurrent transitions cannot both win.
        """
        values = {"status": new_status}
        if shipped_on is not None:
            values["shipped_on"] = shipped_on

        result = await db.execute(
            update(Order)
            .where(Order.order_id == order_id)
            .where(Order.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

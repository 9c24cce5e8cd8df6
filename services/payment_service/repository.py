from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from .models import Payment


class PaymentRepository:
    @staticmethod
    async def record_attempt(db: AsyncSession, payment: Payment) -> Payment:
        """Adds the attempt to the caller's transaction."""
        db.add(payment)
        await db.flush()
        return payment

    @staticmethod
    async def list_for_order(db: AsyncSession, order_id: int) -> list[Payment]:
        result = await db.execute(
            select(Payment).where(Payment.order_id == order_id).order_by(Payment.id)
        )
        return list(result.scalars().all())

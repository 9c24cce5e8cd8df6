"""
Checkout: turns a cart into an Order plus its OrderLines in one transaction.

The commit either happens completely or not at all. Callers get back a
Committed or a RolledBack value instead of having to catch database
exceptions, so a half-written order can never be observed.
"""
import enum
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import AppError, CartEmptyError, ConflictError, NotFoundError, TransactionError, ValidationError
from shared.locks import KeyedLock
from shared.observability import ecomm_checkout_duration_seconds, ecomm_checkout_total
from services.cart_service.repository import CartRepository

from .aggregator import CartAggregator
from .models import Order, OrderLine, OrderStatus
from .repository import OrderRepository

logger = structlog.get_logger(__name__)

_RETRY_REASON = "Order could not be committed; no changes were made. Please retry."


class CheckoutStage(str, enum.Enum):
    VALIDATING = "Validating"
    AGGREGATING = "Aggregating"
    COMMITTING = "Committing"
    COMMITTED = "Committed"
    ROLLED_BACK = "RolledBack"


@dataclass(frozen=True)
class Committed:
    order: Order
    stage: CheckoutStage = CheckoutStage.COMMITTED


@dataclass(frozen=True)
class RolledBack:
    code: str
    reason: str
    failed_in: CheckoutStage
    stage: CheckoutStage = CheckoutStage.ROLLED_BACK

    def to_error(self) -> AppError:
        if self.code == "DUPLICATE_CHECKOUT":
            return ConflictError(self.reason, code=self.code, field="cart_id")
        return TransactionError(self.reason, code=self.code, field="cart_id")


CommitResult = Committed | RolledBack


def _order_not_found(order_id: int) -> NotFoundError:
    return NotFoundError(f"Order {order_id} not found", code="ORDER_NOT_FOUND", field="order_id")


class OrderTransactionManager:
    """
    Single writer of Order and OrderLine rows.

    Checkouts of the same cart queue behind a per-cart lock; the second one
    finds the cart already consumed and fails with CART_EMPTY. On PostgreSQL an
    advisory lock plus the unique Order.reference extend that guarantee across
    processes.
    """

    def __init__(
        self,
        repository=OrderRepository,
        cart_repository=CartRepository,
        aggregator=CartAggregator,
        locks: KeyedLock | None = None,
    ):
        self._repository = repository
        self._cart_repository = cart_repository
        self._aggregator = aggregator
        self._locks = locks if locks is not None else KeyedLock()

    @staticmethod
    def _validate(cart_id: str, shipping_id: int, tax_id: int):
        for field, value in (("cart_id", cart_id), ("shipping_id", shipping_id), ("tax_id", tax_id)):
            if value is None or value == "" or value == 0:
                raise ValidationError(f"The field {field} is required.", field=field)

    async def create_order(
        self,
        db: AsyncSession,
        cart_id: str,
        shipping_id: int,
        tax_id: int,
        customer_id: int,
        auth_code: str,
    ) -> CommitResult:
        log = logger.bind(cart_id=cart_id, customer_id=customer_id)

        with ecomm_checkout_duration_seconds.time():
            try:
                self._validate(cart_id, shipping_id, tax_id)
                async with self._locks.hold(cart_id):
                    result = await self._commit(db, log, cart_id, shipping_id, tax_id, customer_id, auth_code)
            except (ValidationError, NotFoundError):
                ecomm_checkout_total.labels(status="rejected").inc()
                raise

        if isinstance(result, RolledBack):
            ecomm_checkout_total.labels(status="rolled_back").inc()
            log.warning("checkout_rolled_back", code=result.code, failed_in=result.failed_in.value)
            return result

        ecomm_checkout_total.labels(status="committed").inc()
        log.info("checkout_committed", order_id=result.order.order_id, total_amount=result.order.total_amount)
        return result

    async def _commit(self, db, log, cart_id, shipping_id, tax_id, customer_id, auth_code) -> CommitResult:
        stage = CheckoutStage.AGGREGATING
        try:
            async with db.begin():
                await self._repository.acquire_cart_lock(db, cart_id)
                cart = await self._aggregator.aggregate(db, cart_id)
                if cart.is_empty:
                    raise CartEmptyError(cart_id)

                stage = CheckoutStage.COMMITTING
                log.debug("checkout_committing", lines=len(cart.lines), total_amount=cart.total)
                order = await self._repository.insert_order(
                    db,
                    Order(
                        customer_id=customer_id,
                        tax_id=tax_id,
                        shipping_id=shipping_id,
                        reference=cart_id,
                        auth_code=auth_code,
                        total_amount=cart.total,
                        status=OrderStatus.PENDING,
                    ),
                )
                order_id = order.order_id
                for line in cart.lines:
                    await self._repository.add_line(
                        db,
                        OrderLine(
                            order_id=order_id,
                            product_id=line.product_id,
                            attributes=line.attributes,
                            product_name=line.product_name,
                            unit_cost=line.unit_price,
                            quantity=line.quantity,
                        ),
                    )
                await self._cart_repository.delete_lines(db, cart_id)
        except IntegrityError as exc:
            log.error("checkout_transaction_failed", error=repr(exc), failed_in=stage.value)
            if await self._reference_taken(db, cart_id):
                return RolledBack(
                    code="DUPLICATE_CHECKOUT",
                    reason=f"Cart {cart_id} has already been checked out",
                    failed_in=stage,
                )
            return RolledBack(code="TRANSACTION_FAILED", reason=_RETRY_REASON, failed_in=stage)
        except SQLAlchemyError as exc:
            log.error("checkout_transaction_failed", error=repr(exc), failed_in=stage.value)
            return RolledBack(code="TRANSACTION_FAILED", reason=_RETRY_REASON, failed_in=stage)

        order = await self._repository.get_order(db, order_id)
        return Committed(order=order)

    async def _reference_taken(self, db: AsyncSession, cart_id: str) -> bool:
        result = await db.execute(select(Order.order_id).where(Order.reference == cart_id))
        taken = result.first() is not None
        await db.rollback()
        return taken


class OrderService:
    @staticmethod
    async def get_order_summary(db: AsyncSession, order_id: int, customer_id: int) -> Order:
        order = await OrderRepository.get_order(db, order_id)
        if order is None or order.customer_id != customer_id:
            raise _order_not_found(order_id)
        return order

    @staticmethod
    async def list_customer_orders(db: AsyncSession, customer_id: int) -> list[Order]:
        return await OrderRepository.list_customer_orders(db, customer_id)

    @staticmethod
    async def transition_status(db: AsyncSession, order_id: int, new_status: OrderStatus) -> Order:
        """Fulfillment-driven transitions: Pending -> Failed and Paid -> Shipped."""
        if new_status == OrderStatus.PAID:
            raise ConflictError(
                "Orders are marked Paid only by payment capture",
                code="INVALID_STATUS_TRANSITION",
                field="status",
            )

        async with db.begin():
            order = await OrderRepository.get_order_for_update(db, order_id)
            if order is None:
                raise _order_not_found(order_id)

            current = order.status
            if not current.can_transition_to(new_status):
                raise ConflictError(
                    f"Order {order_id} cannot move from {current.value} to {new_status.value}",
                    code="INVALID_STATUS_TRANSITION",
                    field="status",
                )

            shipped_on = datetime.now(timezone.utc) if new_status == OrderStatus.SHIPPED else None
            if not await OrderRepository.transition_status(db, order_id, current, new_status, shipped_on):
                raise ConflictError(
                    f"Order {order_id} changed status concurrently",
                    code="INVALID_STATUS_TRANSITION",
                    field="status",
                )

        logger.info("order_status_changed", order_id=order_id, old=current.value, new=new_status.value)
        return await OrderRepository.get_order(db, order_id)

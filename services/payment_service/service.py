import asyncio
import hashlib
from dataclasses import dataclass

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import AlreadyCapturedError, NotFoundError, PaymentError, TransactionError
from shared.locks import KeyedLock
from shared.money import to_gateway_amount
from shared.observability import ecomm_payment_capture_total
from services.order_service.models import Order, OrderStatus
from services.order_service.repository import OrderRepository

from .gateway import GatewayCharge, PaymentGateway
from .models import Payment
from .repository import PaymentRepository

logger = structlog.get_logger(__name__)

# Stripe charges these currencies in whole units
ZERO_DECIMAL_CURRENCIES = {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}


@dataclass(frozen=True)
class ChargeResult:
    order_id: int
    charge_id: str
    amount: int
    currency: str
    status: str
    receipt_url: str | None = None


def idempotency_key(order_id: int, payment_token: str, step: str) -> str:
    """Same order and token give the same key, so the provider replays instead of charging twice."""
    token_digest = hashlib.sha256(payment_token.encode()).hexdigest()[:32]
    return f"order-{order_id}-{token_digest}-{step}"


class PaymentCapture:
    """
    Charges the gateway for a Pending order and marks it Paid.

    The order row is held FOR UPDATE for the whole attempt and the Paid
    transition is a conditional update, so a retried or concurrent capture
    sees the new status and stops before calling the gateway again. A failed
    charge leaves the order Pending and can be retried.

    Gateway calls are keyed by order and payment token. If a charge lands
    after we gave up on it, or the database write after a successful charge
    fails, the retry gets the original charge back from the provider.
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        currency: str = "usd",
        timeout_seconds: float = 10.0,
        locks: KeyedLock | None = None,
    ):
        self._gateway = gateway
        self._currency = currency.lower()
        self._timeout = timeout_seconds
        self._locks = locks if locks is not None else KeyedLock()

    def charge_amount(self, order: Order) -> int:
        units = 1 if self._currency in ZERO_DECIMAL_CURRENCIES else 100
        return to_gateway_amount(order.total_amount, units)

    async def _with_timeout(self, coro, step: str):
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError:
            raise PaymentError(
                f"Payment gateway did not answer {step} within {self._timeout:g}s",
                code="PAYMENT_GATEWAY_TIMEOUT",
                status_code=504,
            )

    async def _charge(self, order: Order, amount: int, payer_email: str, payment_token: str) -> GatewayCharge:
        gateway_customer = await self._with_timeout(
            self._gateway.create_customer(
                payer_email,
                payment_token,
                order.customer_id,
                idempotency_key=idempotency_key(order.order_id, payment_token, "customer"),
            ),
            "create_customer",
        )
        return await self._with_timeout(
            self._gateway.create_charge(
                amount=amount,
                currency=self._currency,
                customer=gateway_customer,
                description=f"Order {order.order_id}",
                metadata={"order_id": str(order.order_id)},
                idempotency_key=idempotency_key(order.order_id, payment_token, "charge"),
            ),
            "create_charge",
        )

    async def capture(
        self,
        db: AsyncSession,
        order_id: int,
        payer_email: str,
        payment_token: str,
        customer_id: int | None = None,
    ) -> ChargeResult:
        log = logger.bind(order_id=order_id)

        async with self._locks.hold(order_id):
            failure: PaymentError | None = None
            charge: GatewayCharge | None = None

            try:
                async with db.begin():
                    order = await OrderRepository.get_order_for_update(db, order_id)
                    if order is None or (customer_id is not None and order.customer_id != customer_id):
                        raise NotFoundError(
                            f"Order {order_id} not found", code="ORDER_NOT_FOUND", field="order_id"
                        )
                    if order.status != OrderStatus.PENDING:
                        ecomm_payment_capture_total.labels(outcome="already_captured").inc()
                        log.info("capture_skipped", status=order.status.value)
                        raise AlreadyCapturedError(order_id, order.status.value)

                    amount = self.charge_amount(order)
                    try:
                        charge = await self._charge(order, amount, payer_email, payment_token)
                    except PaymentError as exc:
                        failure = exc
                        await PaymentRepository.record_attempt(
                            db,
                            Payment(
                                order_id=order_id,
                                amount=amount,
                                currency=self._currency,
                                status="failed",
                                error_code=exc.code,
                            ),
                        )
                    else:
                        if not await OrderRepository.transition_status(
                            db, order_id, OrderStatus.PENDING, OrderStatus.PAID
                        ):
                            # The row lock makes this unreachable on databases that honour FOR UPDATE.
                            log.critical("capture_lost_race", charge_id=charge.charge_id)
                            raise TransactionError(
                                f"Order {order_id} changed state while charge {charge.charge_id} was taken",
                                code="TRANSACTION_FAILED",
                            )
                        await PaymentRepository.record_attempt(
                            db,
                            Payment(
                                order_id=order_id,
                                amount=charge.amount,
                                currency=charge.currency,
                                status="succeeded",
                                transaction_id=charge.charge_id,
                            ),
                        )
            except SQLAlchemyError as exc:
                ecomm_payment_capture_total.labels(outcome="unrecorded").inc()
                if charge is not None:
                    # Money moved but the order still reads Pending; needs manual reconciliation.
                    log.critical("capture_charged_not_recorded", charge_id=charge.charge_id, error=repr(exc))
                else:
                    log.error("capture_transaction_failed", error=repr(exc))
                raise TransactionError(
                    f"Payment for order {order_id} could not be recorded; retry with the same payment token.",
                    code="TRANSACTION_FAILED",
                    field="order_id",
                ) from exc

        if failure is not None:
            ecomm_payment_capture_total.labels(outcome="failed").inc()
            log.warning("capture_failed", code=failure.code, message=failure.message)
            raise failure

        ecomm_payment_capture_total.labels(outcome="succeeded").inc()
        log.info("capture_succeeded", charge_id=charge.charge_id, amount=charge.amount)
        return ChargeResult(
            order_id=order_id,
            charge_id=charge.charge_id,
            amount=charge.amount,
            currency=charge.currency,
            status=charge.status,
            receipt_url=charge.receipt_url,
        )

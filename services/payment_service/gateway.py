"""
Boundary to the external payment provider.

PaymentCapture only sees the PaymentGateway protocol; the Stripe adapter is
built once at startup with its secret key and handed to the app.

Every call carries an idempotency key. A call that was abandoned on our side
but completed at the provider is replayed, not repeated, when the same key is
sent again.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Protocol

import stripe

from shared.errors import PaymentError

# Share of the caller's deadline given to the HTTP client, so the request is
# abandoned by the socket before the caller reports a timeout.
HTTP_TIMEOUT_RATIO = 0.8


@dataclass(frozen=True)
class GatewayCharge:
    charge_id: str
    amount: int
    currency: str
    status: str
    receipt_url: str | None = None
    metadata: dict = field(default_factory=dict)


class PaymentGateway(Protocol):
    async def create_customer(
        self, email: str, payment_token: str, customer_id: int, idempotency_key: str
    ) -> str: ...

    async def create_charge(
        self,
        amount: int,
        currency: str,
        customer: str,
        description: str,
        metadata: dict,
        idempotency_key: str,
    ) -> GatewayCharge: ...


def payment_error_from_stripe(exc: stripe.StripeError) -> PaymentError:
    """Maps Stripe failures onto PaymentError, keeping the provider's message."""
    message = exc.user_message or str(exc) or "The payment provider rejected the charge"
    if isinstance(exc, stripe.CardError):
        return PaymentError(message, code="PAYMENT_DECLINED", field="payment_token", status_code=402)
    if isinstance(exc, stripe.InvalidRequestError):
        return PaymentError(message, code="PAYMENT_INVALID_REQUEST", field="payment_token", status_code=400)
    if isinstance(exc, stripe.APIConnectionError):
        return PaymentError(message, code="PAYMENT_GATEWAY_UNAVAILABLE", status_code=502)
    return PaymentError(message, code="PAYMENT_FAILED", status_code=502)


class StripePaymentGateway:
    """
    Stripe Customers + Charges. The SDK is synchronous, so calls run in a
    worker thread. The HTTP client times out before the caller's deadline and
    retries are off; a request that still lands late is deduplicated by its
    idempotency key when the capture is retried.
    """

    def __init__(self, api_key: str, timeout_seconds: float = 10.0):
        if not api_key:
            raise ValueError("StripePaymentGateway requires a secret key")
        self.http_timeout_seconds = timeout_seconds * HTTP_TIMEOUT_RATIO
        self._client = stripe.StripeClient(
            api_key,
            http_client=stripe.RequestsClient(timeout=self.http_timeout_seconds),
            max_network_retries=0,
        )

    async def _call(self, fn, params: dict, idempotency_key: str):
        try:
            return await asyncio.to_thread(
                fn, params=params, options={"idempotency_key": idempotency_key}
            )
        except stripe.StripeError as exc:
            raise payment_error_from_stripe(exc) from exc

    async def create_customer(
        self, email: str, payment_token: str, customer_id: int, idempotency_key: str
    ) -> str:
        customer = await self._call(
            self._client.customers.create,
            {
                "email": email,
                "source": payment_token,
                "metadata": {"customer_id": str(customer_id)},
            },
            idempotency_key,
        )
        return customer.id

    async def create_charge(
        self,
        amount: int,
        currency: str,
        customer: str,
        description: str,
        metadata: dict,
        idempotency_key: str,
    ) -> GatewayCharge:
        charge = await self._call(
            self._client.charges.create,
            {
                "amount": amount,
                "currency": currency,
                "customer": customer,
                "description": description,
                "metadata": metadata,
            },
            idempotency_key,
        )
        return GatewayCharge(
            charge_id=charge.id,
            amount=charge.amount,
            currency=charge.currency,
            status=charge.status,
            receipt_url=getattr(charge, "receipt_url", None),
            metadata=dict(charge.metadata or {}),
        )


class UnconfiguredPaymentGateway:
    """Stands in when no provider key is configured; every capture fails cleanly."""

    async def create_customer(self, email, payment_token, customer_id, idempotency_key) -> str:
        raise PaymentError(
            "Payment provider is not configured",
            code="PAYMENT_GATEWAY_UNAVAILABLE",
            status_code=502,
        )

    async def create_charge(
        self, amount, currency, customer, description, metadata, idempotency_key
    ) -> GatewayCharge:
        raise PaymentError(
            "Payment provider is not configured",
            code="PAYMENT_GATEWAY_UNAVAILABLE",
            status_code=502,
        )

import asyncio
import time
from types import SimpleNamespace

import pytest
import pytest_asyncio
import stripe
from sqlalchemy.exc import OperationalError

from shared.errors import PaymentError
from services.order_service.models import Order, OrderStatus
from services.payment_service.gateway import (
    StripePaymentGateway,
    UnconfiguredPaymentGateway,
    payment_error_from_stripe,
)
from services.payment_service.repository import PaymentRepository
from services.payment_service.service import PaymentCapture, idempotency_key


@pytest_asyncio.fixture
async def order_id(client, catalog, auth_headers) -> int:
    await client.post("/cart/c1/items", json={"product_id": 5, "quantity": 2})
    await client.post("/cart/c1/items", json={"product_id": 7, "quantity": 1})
    response = await client.post(
        "/orders/", json={"cart_id": "c1", "shipping_id": 1, "tax_id": 2}, headers=auth_headers(1)
    )
    assert response.status_code == 201
    return response.json()["order_id"]


def _charge_body(order_id: int, **overrides) -> dict:
    body = {"order_id": order_id, "email": "buyer@example.com", "payment_token": "tok_visa"}
    body.update(overrides)
    return body


async def _order_and_payments(session_maker, order_id: int):
    async with session_maker() as sess:
        order = await sess.get(Order, order_id)
        payments = await PaymentRepository.list_for_order(sess, order_id)
        return order, payments


async def test_capture_marks_order_paid(client, order_id, gateway, session_maker, auth_headers):
    response = await client.post("/payments/charge", json=_charge_body(order_id), headers=auth_headers(1))

    assert response.status_code == 200
    body = response.json()
    assert body["order_id"] == order_id
    assert body["charge_id"] == "ch_1"
    assert body["amount"] == 2448
    assert body["currency"] == "usd"
    assert body["status"] == "succeeded"

    assert gateway.customers == [{"email": "buyer@example.com", "source": "tok_visa", "customer_id": 1}]
    assert gateway.charges[0]["amount"] == 2448
    assert gateway.charges[0]["metadata"] == {"order_id": str(order_id)}

    order, payments = await _order_and_payments(session_maker, order_id)
    assert order.status == OrderStatus.PAID
    assert [(p.status, p.transaction_id, p.amount) for p in payments] == [("succeeded", "ch_1", 2448)]


async def test_second_capture_does_not_charge_again(client, order_id, gateway, auth_headers):
    first = await client.post("/payments/charge", json=_charge_body(order_id), headers=auth_headers(1))
    second = await client.post("/payments/charge", json=_charge_body(order_id), headers=auth_headers(1))

    assert first.status_code == 200
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "ALREADY_CAPTURED"
    assert len(gateway.charges) == 1


async def test_concurrent_captures_charge_once(client, order_id, gateway, auth_headers):
    gateway.delay = 0.05

    responses = await asyncio.gather(
        client.post("/payments/charge", json=_charge_body(order_id), headers=auth_headers(1)),
        client.post("/payments/charge", json=_charge_body(order_id), headers=auth_headers(1)),
    )

    assert sorted(r.status_code for r in responses) == [200, 409]
    assert len(gateway.charges) == 1


async def test_declined_charge_keeps_order_pending(client, order_id, gateway, session_maker, auth_headers):
    gateway.fail_with = PaymentError("Your card was declined.", code="PAYMENT_DECLINED", field="payment_token")

    response = await client.post("/payments/charge", json=_charge_body(order_id), headers=auth_headers(1))

    assert response.status_code == 402
    assert response.json()["error"]["code"] == "PAYMENT_DECLINED"
    assert response.json()["error"]["message"] == "Your card was declined."

    order, payments = await _order_and_payments(session_maker, order_id)
    assert order.status == OrderStatus.PENDING
    assert [(p.status, p.error_code) for p in payments] == [("failed", "PAYMENT_DECLINED")]

    # a retry with a good card goes through
    gateway.fail_with = None
    retry = await client.post("/payments/charge", json=_charge_body(order_id), headers=auth_headers(1))
    assert retry.status_code == 200


async def test_gateway_timeout(client, order_id, gateway, session_maker, auth_headers):
    gateway.delay = 2

    response = await client.post("/payments/charge", json=_charge_body(order_id), headers=auth_headers(1))

    assert response.status_code == 504
    assert response.json()["error"]["code"] == "PAYMENT_GATEWAY_TIMEOUT"
    assert gateway.charges == []
    order, _ = await _order_and_payments(session_maker, order_id)
    assert order.status == OrderStatus.PENDING


async def test_capture_of_other_customers_order(client, order_id, gateway, auth_headers):
    response = await client.post("/payments/charge", json=_charge_body(order_id), headers=auth_headers(2))

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "ORDER_NOT_FOUND"
    assert gateway.customers == []


async def test_capture_unknown_order(client, gateway, auth_headers):
    response = await client.post("/payments/charge", json=_charge_body(12345), headers=auth_headers(1))

    assert response.status_code == 404
    assert gateway.customers == []


async def test_capture_accepts_stripe_token_field(client, order_id, auth_headers):
    body = {"order_id": order_id, "email": "buyer@example.com", "stripeToken": "tok_visa"}

    response = await client.post("/payments/charge", json=body, headers=auth_headers(1))

    assert response.status_code == 200


async def test_capture_requires_email(client, order_id, auth_headers):
    body = {"order_id": order_id, "payment_token": "tok_visa"}

    response = await client.post("/payments/charge", json=body, headers=auth_headers(1))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_MISSING_FIELD"
    assert response.json()["error"]["field"] == "email"


async def test_capture_requires_credential(client, order_id, gateway):
    response = await client.post("/payments/charge", json=_charge_body(order_id))

    assert response.status_code == 401
    assert gateway.customers == []


async def test_unconfigured_gateway_fails_cleanly(order_id, session_maker):
    capture = PaymentCapture(UnconfiguredPaymentGateway())

    async with session_maker() as sess:
        with pytest.raises(PaymentError) as exc:
            await capture.capture(sess, order_id, "buyer@example.com", "tok_visa", customer_id=1)

    assert exc.value.code == "PAYMENT_GATEWAY_UNAVAILABLE"


def test_zero_decimal_currency_amount():
    capture = PaymentCapture(UnconfiguredPaymentGateway(), currency="JPY")

    assert capture.charge_amount(Order(total_amount=2448)) == 25


async def test_charge_that_cannot_be_recorded_is_not_taken_twice(
    client, order_id, gateway, session_maker, auth_headers, monkeypatch
):
    record_attempt = PaymentRepository.record_attempt
    broken = {"succeeded": True}

    async def record_attempt_once_broken(db, payment):
        if payment.status == "succeeded" and broken.pop("succeeded", False):
            raise OperationalError("INSERT INTO payments", {}, Exception("database is locked"))
        return await record_attempt(db, payment)

    monkeypatch.setattr(PaymentRepository, "record_attempt", staticmethod(record_attempt_once_broken))

    first = await client.post("/payments/charge", json=_charge_body(order_id), headers=auth_headers(1))

    assert first.status_code == 503
    assert first.json()["error"]["code"] == "TRANSACTION_FAILED"
    order, payments = await _order_and_payments(session_maker, order_id)
    assert order.status == OrderStatus.PENDING
    assert payments == []

    retry = await client.post("/payments/charge", json=_charge_body(order_id), headers=auth_headers(1))

    assert retry.status_code == 200
    assert retry.json()["charge_id"] == "ch_1"
    assert len(gateway.charges) == 1
    assert len(gateway.charge_keys) == 2
    assert gateway.charge_keys[0] == gateway.charge_keys[1]
    order, payments = await _order_and_payments(session_maker, order_id)
    assert order.status == OrderStatus.PAID
    assert [(p.status, p.transaction_id) for p in payments] == [("succeeded", "ch_1")]


def test_idempotency_key_is_stable_per_order_and_token():
    key = idempotency_key(7, "tok_visa", "charge")

    assert key == idempotency_key(7, "tok_visa", "charge")
    assert key != idempotency_key(8, "tok_visa", "charge")
    assert key != idempotency_key(7, "tok_mastercard", "charge")
    assert key != idempotency_key(7, "tok_visa", "customer")
    assert "tok_visa" not in key


# =========================================
# Stripe adapter
# =========================================
class FakeStripeResource:
    """Synchronous stand-in for a StripeClient service; replays results per idempotency key."""

    def __init__(self, prefix: str, first_call_delay: float = 0, fail_with: Exception | None = None):
        self.prefix = prefix
        self.first_call_delay = first_call_delay
        self.fail_with = fail_with
        self.calls: list[dict] = []
        self.created: list[SimpleNamespace] = []
        self._replies: dict[str, SimpleNamespace] = {}

    def create(self, params=None, options=None):
        self.calls.append({"params": params, "options": options})
        if len(self.calls) == 1 and self.first_call_delay:
            time.sleep(self.first_call_delay)
        if self.fail_with is not None:
            raise self.fail_with
        key = options["idempotency_key"]
        if key not in self._replies:
            obj = SimpleNamespace(
                id=f"{self.prefix}_{len(self.created) + 1}",
                amount=params.get("amount"),
                currency=params.get("currency"),
                status="succeeded",
                receipt_url=None,
                metadata=params.get("metadata"),
            )
            self.created.append(obj)
            self._replies[key] = obj
        return self._replies[key]


def _stripe_gateway(timeout_seconds: float = 1.0, charge_delay: float = 0, charge_error=None):
    gateway = StripePaymentGateway("sk_test_123", timeout_seconds=timeout_seconds)
    gateway._client = SimpleNamespace(
        customers=FakeStripeResource("cus"),
        charges=FakeStripeResource("ch", first_call_delay=charge_delay, fail_with=charge_error),
    )
    return gateway


async def test_slow_stripe_charge_is_not_taken_twice(order_id, session_maker):
    gateway = _stripe_gateway(timeout_seconds=0.2, charge_delay=0.4)
    charges = gateway._client.charges
    capture = PaymentCapture(gateway, timeout_seconds=0.2)

    async with session_maker() as sess:
        with pytest.raises(PaymentError) as exc:
            await capture.capture(sess, order_id, "buyer@example.com", "tok_visa", customer_id=1)
    assert exc.value.code == "PAYMENT_GATEWAY_TIMEOUT"

    # the abandoned request still completes at the provider
    await asyncio.sleep(0.5)
    assert len(charges.created) == 1

    async with session_maker() as sess:
        result = await capture.capture(sess, order_id, "buyer@example.com", "tok_visa", customer_id=1)

    assert result.charge_id == charges.created[0].id
    assert len(charges.created) == 1
    keys = [call["options"]["idempotency_key"] for call in charges.calls]
    assert len(keys) == 2
    assert keys[0] == keys[1]
    order, _ = await _order_and_payments(session_maker, order_id)
    assert order.status == OrderStatus.PAID


def test_stripe_client_has_no_retries_and_times_out_first(monkeypatch):
    built = {}

    def fake_stripe_client(api_key, **kwargs):
        built.update(api_key=api_key, **kwargs)
        return SimpleNamespace()

    monkeypatch.setattr(stripe, "RequestsClient", lambda timeout: ("requests", timeout))
    monkeypatch.setattr(stripe, "StripeClient", fake_stripe_client)

    gateway = StripePaymentGateway("sk_test_123", timeout_seconds=10)

    assert built["api_key"] == "sk_test_123"
    assert built["max_network_retries"] == 0
    assert built["http_client"] == ("requests", gateway.http_timeout_seconds)
    assert gateway.http_timeout_seconds < 10


def test_stripe_gateway_requires_a_key():
    with pytest.raises(ValueError):
        StripePaymentGateway("")


async def test_stripe_request_parameters():
    gateway = _stripe_gateway()

    customer = await gateway.create_customer("buyer@example.com", "tok_visa", 3, idempotency_key="k-customer")
    charge = await gateway.create_charge(
        amount=2448,
        currency="usd",
        customer=customer,
        description="Order 11",
        metadata={"order_id": "11"},
        idempotency_key="k-charge",
    )

    assert gateway._client.customers.calls == [
        {
            "params": {"email": "buyer@example.com", "source": "tok_visa", "metadata": {"customer_id": "3"}},
            "options": {"idempotency_key": "k-customer"},
        }
    ]
    assert gateway._client.charges.calls == [
        {
            "params": {
                "amount": 2448,
                "currency": "usd",
                "customer": "cus_1",
                "description": "Order 11",
                "metadata": {"order_id": "11"},
            },
            "options": {"idempotency_key": "k-charge"},
        }
    ]
    assert (charge.charge_id, charge.amount, charge.metadata) == ("ch_1", 2448, {"order_id": "11"})


@pytest.mark.parametrize(
    "error, code, status_code",
    [
        (stripe.CardError("Your card was declined.", "source", "card_declined"), "PAYMENT_DECLINED", 402),
        (stripe.InvalidRequestError("No such token: 'tok_nope'", "source"), "PAYMENT_INVALID_REQUEST", 400),
        (stripe.APIConnectionError("Could not connect to Stripe"), "PAYMENT_GATEWAY_UNAVAILABLE", 502),
        (stripe.AuthenticationError("Invalid API Key provided"), "PAYMENT_FAILED", 502),
    ],
)
def test_stripe_errors_map_to_payment_errors(error, code, status_code):
    mapped = payment_error_from_stripe(error)

    assert mapped.code == code
    assert mapped.status_code == status_code
    assert mapped.message == error.user_message


async def test_stripe_decline_surfaces_as_payment_error():
    declined = stripe.CardError("Your card was declined.", "source", "card_declined")
    gateway = _stripe_gateway(charge_error=declined)

    with pytest.raises(PaymentError) as exc:
        await gateway.create_charge(
            amount=100,
            currency="usd",
            customer="cus_1",
            description="Order 1",
            metadata={"order_id": "1"},
            idempotency_key="k",
        )

    assert exc.value.code == "PAYMENT_DECLINED"
    assert exc.value.message == "Your card was declined."
    assert exc.value.__cause__ is declined

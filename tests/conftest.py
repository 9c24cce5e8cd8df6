# tests/conftest.py
import asyncio
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Settings are read once on first import, so the environment must be set before main is loaded
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from main import app  # noqa: E402
from shared.config.database import Base, get_db  # noqa: E402
from shared.errors import PaymentError  # noqa: E402
from shared.security import create_access_token  # noqa: E402
from services.catalog_service.models import Product  # noqa: E402
from services.payment_service.gateway import GatewayCharge  # noqa: E402
from services.payment_service.service import PaymentCapture  # noqa: E402

JWT_SECRET = os.environ["JWT_SECRET_KEY"]
INTERNAL_KEY = os.environ["INTERNAL_API_KEY"]


class FakePaymentGateway:
    """
    Records every call; set fail_with or delay to simulate a bad provider.
    Like Stripe, a repeated idempotency key returns the stored result.
    """

    def __init__(self):
        self.customers: list[dict] = []
        self.charges: list[dict] = []
        self.charge_keys: list[str] = []
        self.fail_with: PaymentError | None = None
        self.delay: float = 0
        self._replies: dict[str, object] = {}

    async def create_customer(self, email: str, payment_token: str, customer_id: int, idempotency_key: str) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        if idempotency_key not in self._replies:
            self.customers.append({"email": email, "source": payment_token, "customer_id": customer_id})
            self._replies[idempotency_key] = f"cus_{len(self.customers)}"
        return self._replies[idempotency_key]

    async def create_charge(
        self, amount, currency, customer, description, metadata, idempotency_key
    ) -> GatewayCharge:
        self.charge_keys.append(idempotency_key)
        if idempotency_key not in self._replies:
            self.charges.append(
                {
                    "amount": amount,
                    "currency": currency,
                    "customer": customer,
                    "description": description,
                    "metadata": metadata,
                }
            )
            self._replies[idempotency_key] = GatewayCharge(
                charge_id=f"ch_{len(self.charges)}",
                amount=amount,
                currency=currency,
                status="succeeded",
                receipt_url=f"https://pay.example/receipts/ch_{len(self.charges)}",
                metadata=metadata,
            )
        return self._replies[idempotency_key]


# =========================================
# Per-test SQLite database
# =========================================
@pytest_asyncio.fixture
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'checkout.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_maker(async_engine: AsyncEngine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as sess:
        yield sess


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest_asyncio.fixture
async def client(session_maker, gateway) -> AsyncGenerator[AsyncClient, None]:
    async def _override_get_db():
        async with session_maker() as sess:
            yield sess

    original_capture = app.state.payment_capture
    app.dependency_overrides[get_db] = _override_get_db
    app.state.payment_capture = PaymentCapture(gateway, currency="usd", timeout_seconds=0.5)

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
        app.state.payment_capture = original_capture


# =========================================
# Helpers
# =========================================
@pytest.fixture
def auth_headers():
    def _headers(customer_id: int = 1) -> dict:
        token = create_access_token({"customer_id": customer_id}, JWT_SECRET)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def internal_headers() -> dict:
    return {"X-Internal-API-Key": INTERNAL_KEY}


@pytest.fixture
def seed_products(session_maker):
    async def _seed(*products: Product) -> None:
        async with session_maker() as sess:
            sess.add_all(products)
            await sess.commit()

    return _seed


@pytest_asyncio.fixture
async def catalog(seed_products):
    """Two products used by the checkout walkthrough: $9.99 and $4.50."""
    await seed_products(
        Product(id=5, name="Arc d'Triomphe", description="Commemorative", price=1499, discounted_price=999),
        Product(id=7, name="Chartres Cathedral", description="Gothic", price=450),
    )

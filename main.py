from fastapi import FastAPI

from shared.config.database import engine, Base
from shared.config.settings import Settings, get_settings
from shared.error_handlers import register_exception_handlers
from shared.observability import setup_observability
from shared.security import IdentityVerifier, JwtIdentityVerifier, limiter

# IMPORTANT: import models so they register with Base
from services.catalog_service import models as catalog_models
from services.cart_service import models as cart_models
from services.order_service import models as order_models
from services.payment_service import models as payment_models

from services.cart_service.router import router as cart_router
from services.order_service.router import router as order_router, internal_router as order_internal_router
from services.order_service.service import OrderTransactionManager
from services.payment_service.gateway import PaymentGateway, StripePaymentGateway, UnconfiguredPaymentGateway
from services.payment_service.router import router as payment_router
from services.payment_service.service import PaymentCapture


def build_payment_gateway(settings: Settings) -> PaymentGateway:
    if not settings.stripe_secret_key:
        return UnconfiguredPaymentGateway()
    return StripePaymentGateway(settings.stripe_secret_key, settings.gateway_timeout_seconds)


def create_app(
    settings: Settings | None = None,
    identity_verifier: IdentityVerifier | None = None,
    payment_gateway: PaymentGateway | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="Ecommerce Checkout", version="1.0.0")

    # Adapters are built once here; handlers reach them through app.state
    app.state.settings = settings
    app.state.identity_verifier = identity_verifier or JwtIdentityVerifier(
        settings.jwt_secret_key, settings.jwt_algorithm
    )
    app.state.payment_gateway = payment_gateway or build_payment_gateway(settings)
    app.state.order_manager = OrderTransactionManager()
    app.state.payment_capture = PaymentCapture(
        app.state.payment_gateway,
        currency=settings.payment_currency,
        timeout_seconds=settings.gateway_timeout_seconds,
    )

    # --- RATE LIMITING ---
    app.state.limiter = limiter

    register_exception_handlers(app)

    # --- OBSERVABILITY BOOTSTRAP ---
    setup_observability(app, settings)

    app.include_router(cart_router)
    app.include_router(order_router)
    app.include_router(order_internal_router)
    app.include_router(payment_router)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "service": settings.service_name}

    @app.on_event("startup")
    async def startup_event():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    return app


app = create_app()

"""
FastAPI Application Entry Point

Restaurant order intake and Stripe payment reconciliation.
Supports both the mock gateway (development) and Stripe (staging/production).

Endpoints:
    - POST /api/orders: Create order
    - POST /api/orders/cash: Create cash order, returns the full order
    - GET /api/orders/{order_id}: Order projection
    - POST /api/stripe/create-checkout-session: Create order + hosted checkout
    - POST /api/stripe/create-payment-intent: Payment intent for an order
    - GET /api/stripe/payment-success: Success redirect callback
    - GET|POST /api/stripe/payment-cancel: Cancel redirect callback
    - POST /api/stripe/webhook: Signed Stripe webhook
    - GET /health: System health check
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

# Internal imports
from restaurant_orders.core.config import get_settings, setup_logging
from restaurant_orders.core.exceptions import (
    BadRequestError,
    NotFoundError,
    OrderServiceError,
)
from restaurant_orders.database import get_db, init_db, engine, unit_of_work
from restaurant_orders.models import OrderStatus
from restaurant_orders.schemas import (
    CheckoutSessionResponse,
    ErrorResponse,
    HealthResponse,
    OrderCreate,
    OrderCreateResponse,
    OrderView,
    PaymentCancelRequest,
    PaymentIntentRequest,
    PaymentIntentResponse,
    WebhookResponse,
)
from restaurant_orders.services.intake import OrderIntake, get_order_intake, snapshot_items
from restaurant_orders.services.payment import BasePaymentService, get_payment_service
from restaurant_orders.services.projector import (
    discount_coupon,
    load_order,
    original_total,
    project_order,
)
from restaurant_orders.services.reconciliation import ReconciliationEngine

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()

    payment_service = get_payment_service()
    logger.info(f"Payment Service: {payment_service.provider_name}")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"Missing production config: {missing}")

    logger.info("Application ready")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Restaurant order intake with transactional persistence and "
        "Stripe payment reconciliation."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES & HELPERS
# =============================================================================

def get_reconciliation_engine(
    gateway: BasePaymentService = Depends(get_payment_service),
) -> ReconciliationEngine:
    return ReconciliationEngine(gateway)


def resolve_frontend_url(origin: Optional[str]) -> str:
    """Configured storefront URL, else the caller's Origin header."""
    if settings.frontend_url:
        return settings.frontend_url
    if origin:
        return origin.rstrip("/")
    raise OrderServiceError(
        "Frontend URL is not configured",
        detail="Set FRONTEND_URL or send an Origin header",
    )


def redirect_urls(frontend_url: str) -> tuple[str, str]:
    """Success and cancel URLs; Stripe substitutes {CHECKOUT_SESSION_ID}."""
    query = "session_id={CHECKOUT_SESSION_ID}&payment_method=stripe"
    return (
        f"{frontend_url}/payment/success?{query}",
        f"{frontend_url}/payment/cancel?{query}",
    )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    gateway: BasePaymentService = Depends(get_payment_service),
) -> HealthResponse:
    """Verify the database and the payment provider are reachable."""

    db_status = "healthy"
    try:
        await db.execute(select(1))
    except SQLAlchemyError as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    payment_status = "healthy" if await gateway.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, payment_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        payment_service=payment_status,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Create Order",
)
async def create_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    intake: OrderIntake = Depends(get_order_intake),
) -> OrderCreateResponse:
    """Create a pending order and return its id and order number."""
    async with unit_of_work(db):
        order = await intake.place_order(db, order_data)

    return OrderCreateResponse(order_id=order.id, order_number=order.order_number)


@app.post(
    "/api/orders/cash",
    response_model=OrderView,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Create Cash Order",
)
async def create_cash_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    intake: OrderIntake = Depends(get_order_intake),
) -> OrderView:
    """Create an order paid on delivery/pickup and return the full order."""
    async with unit_of_work(db):
        order = await intake.place_order(db, order_data)
        view = project_order(await load_order(db, order.id))

    return view


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderView,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Get Order",
)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
) -> OrderView:
    """Get an order with its customer data and line items."""
    order = await load_order(db, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")

    return project_order(order)


# =============================================================================
# STRIPE ENDPOINTS
# =============================================================================

@app.post(
    "/api/stripe/create-checkout-session",
    response_model=CheckoutSessionResponse,
    responses=ERROR_RESPONSES,
    tags=["Stripe"],
    summary="Create Order and Checkout Session",
)
async def create_checkout_session(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    intake: OrderIntake = Depends(get_order_intake),
    gateway: BasePaymentService = Depends(get_payment_service),
    origin: Optional[str] = Header(None),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
) -> CheckoutSessionResponse:
    """
    Create a pending order and a hosted checkout session for it.

    The session is created inside the order's transaction: if the
    provider call fails, the order is rolled back.
    """
    success_url, cancel_url = redirect_urls(resolve_frontend_url(origin))
    items = snapshot_items(order_data)

    async with unit_of_work(db):
        order = await intake.place_order(db, order_data)
        session = await gateway.create_checkout_session(
            order,
            items,
            order_data.customer_info.email,
            success_url,
            cancel_url,
            metadata={
                "hasDiscount": str(discount_coupon(items)),
                "originalTotal": str(original_total(items).quantize(Decimal("0.01"))),
            },
            idempotency_key=idempotency_key or f"checkout-{order.order_number}",
        )

    logger.info(f"Checkout session {session.session_id} opened for order {order.order_number}")

    return CheckoutSessionResponse(
        session_id=session.session_id,
        url=session.url,
        order_id=order.id,
        order_number=order.order_number,
    )


@app.post(
    "/api/stripe/create-payment-intent",
    response_model=PaymentIntentResponse,
    responses=ERROR_RESPONSES,
    tags=["Stripe"],
    summary="Create Payment Intent",
)
async def create_payment_intent(
    intent_request: PaymentIntentRequest,
    db: AsyncSession = Depends(get_db),
    gateway: BasePaymentService = Depends(get_payment_service),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
) -> PaymentIntentResponse:
    """Create a payment intent for the total of an existing pending order."""
    order = await load_order(db, intent_request.order_id)
    if order is None:
        raise NotFoundError(f"Order {intent_request.order_id} not found")
    if order.status is not OrderStatus.PENDING:
        raise BadRequestError(f"Order {order.order_number} is already {order.status.value}")

    intent = await gateway.create_payment_intent(
        order,
        idempotency_key=idempotency_key or f"intent-{order.order_number}",
    )

    return PaymentIntentResponse(client_secret=intent.client_secret)


@app.get(
    "/api/stripe/payment-success",
    response_model=OrderView,
    responses=ERROR_RESPONSES,
    tags=["Stripe"],
    summary="Payment Success Callback",
)
async def payment_success(
    session_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    reconciliation: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> OrderView:
    """Complete the order if its checkout session is paid."""
    return await reconciliation.apply_payment_success(db, session_id)


@app.api_route(
    "/api/stripe/payment-cancel",
    methods=["GET", "POST"],
    response_model=OrderView,
    responses=ERROR_RESPONSES,
    tags=["Stripe"],
    summary="Payment Cancel Callback",
)
async def payment_cancel(
    request: Request,
    session_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    reconciliation: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> OrderView:
    """
    Cancel a pending order.

    The session id comes from the query string or, for POST, from a
    JSON body ``{"sessionId": ...}``.
    """
    if not session_id and request.method == "POST":
        body = await request.body()
        if body:
            try:
                session_id = PaymentCancelRequest.model_validate_json(body).session_id
            except PydanticValidationError as e:
                raise BadRequestError("Malformed cancel request body", detail=str(e)) from e

    return await reconciliation.apply_payment_cancel(db, session_id)


@app.post(
    "/api/stripe/webhook",
    response_model=WebhookResponse,
    responses=ERROR_RESPONSES,
    tags=["Stripe"],
    summary="Stripe Webhook",
)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: BasePaymentService = Depends(get_payment_service),
    reconciliation: ReconciliationEngine = Depends(get_reconciliation_engine),
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> WebhookResponse:
    """
    Handle checkout events pushed by Stripe.

    Events that cannot be correlated to an order are acknowledged so
    Stripe stops redelivering them; provider and database failures are
    not, so Stripe retries those.
    """
    payload = await request.body()
    event = await gateway.verify_webhook(payload, stripe_signature)
    if event is None:
        raise BadRequestError("Invalid webhook payload or signature")

    event_type = event.get("type")

    try:
        view = await reconciliation.handle_webhook_event(db, event)
    except (BadRequestError, NotFoundError) as e:
        logger.warning(f"Webhook {event_type} not applied: {e.message}")
        return WebhookResponse(event_type=event_type)

    if view is None:
        return WebhookResponse(event_type=event_type)

    return WebhookResponse(
        event_type=event_type,
        order_id=view.order_id,
        status=view.status,
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderServiceError)
async def order_service_exception_handler(
    request: Request,
    exc: OrderServiceError,
) -> JSONResponse:
    """Render domain errors with the status code they carry."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error} on {request.method} {request.url.path}: {exc.message}")

    detail = exc.message
    if exc.detail and settings.debug:
        detail = f"{exc.message} ({exc.detail})"

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.error, detail=detail).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )

"""
Payment Gateway Factory

Provides a single entry point for obtaining the payment gateway.
Intake and reconciliation stay agnostic about which implementation is used.

Usage:
    from restaurant_orders.services.payment import get_payment_service

    # Returns MockPaymentService or StripePaymentService based on ENV_MODE
    gateway = get_payment_service()

    session = await gateway.retrieve_session(session_id)

Environment Switching:
    - ENV_MODE=development → MockPaymentService (no API calls)
    - ENV_MODE=staging → StripePaymentService (test keys)
    - ENV_MODE=production → StripePaymentService (live keys)
"""

import logging
from functools import lru_cache

from restaurant_orders.core.config import get_settings
from restaurant_orders.services.payment.base import (
    PAID,
    BasePaymentService,
    CheckoutSessionResult,
    PaymentIntentResult,
    SessionRecord,
    to_minor_units,
)
from restaurant_orders.services.payment.mock import MockPaymentService
from restaurant_orders.services.payment.stripe import StripePaymentService

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_service() -> BasePaymentService:
    """
    Get the configured payment gateway instance.

    The instance is cached so the mock's in-memory sessions survive
    between the request that creates a session and the callback that
    reads it.

    Raises:
        ValueError: If staging/production mode but Stripe key not configured
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Payment Service: Using MockPaymentService (development mode)")
        return MockPaymentService(
            failure_rate=settings.mock_payment_failure_rate,
            min_latency=0.2,
            max_latency=0.8,
        )

    logger.info(
        f"Payment Service: Using StripePaymentService "
        f"({settings.env_mode.value} mode)"
    )
    return StripePaymentService()


def reset_payment_service() -> None:
    """
    Clear the cached payment gateway instance.

    The next call to get_payment_service() will create a new instance.
    """
    get_payment_service.cache_clear()
    logger.debug("Payment service cache cleared")


__all__ = [
    "get_payment_service",
    "reset_payment_service",
    "BasePaymentService",
    "CheckoutSessionResult",
    "PaymentIntentResult",
    "SessionRecord",
    "PAID",
    "to_minor_units",
    "MockPaymentService",
    "StripePaymentService",
]

"""
Stripe Payment Gateway Implementation

Production implementation using the official Stripe Python SDK.
Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - STRIPE_SECRET_KEY must be set in environment
    - STRIPE_WEBHOOK_SECRET for webhook verification

Security Notes:
    - Always verify webhook signatures
    - Every create call carries an idempotency key, so a retried request
      never opens a second session for the same order

SDK calls are blocking; each runs in a worker thread, bounded by
STRIPE_TIMEOUT_SECONDS, with the SDK's own retries disabled.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import stripe

from restaurant_orders.core.config import get_settings
from restaurant_orders.core.exceptions import GatewayError, SessionNotFoundError
from restaurant_orders.models import Order
from restaurant_orders.services.payment.base import (
    BasePaymentService,
    CheckoutSessionResult,
    PaymentIntentResult,
    SessionRecord,
    describe_line_item,
    order_metadata,
    to_minor_units,
)
from restaurant_orders.services.snapshot import ItemSnapshot

logger = logging.getLogger(__name__)


def _plain_dict(obj: Any) -> dict:
    """Turn a StripeObject (or None) into a plain dict."""
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripePaymentService(BasePaymentService):
    """
    Stripe implementation of the payment gateway.

    Configuration:
        Requires STRIPE_SECRET_KEY environment variable.
        Uses STRIPE_WEBHOOK_SECRET for webhook verification.

    Example:
        >>> gateway = StripePaymentService()
        >>> result = await gateway.create_checkout_session(
        ...     order, items, "customer@example.com", success_url, cancel_url,
        ...     idempotency_key=f"checkout-{order.order_number}",
        ... )
    """

    def __init__(self):
        """
        Initialize Stripe with API key from settings.

        Raises:
            ValueError: If STRIPE_SECRET_KEY is not configured
        """
        settings = get_settings()

        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required for staging and production mode. "
                "Set it in your .env file or environment variables."
            )

        # Configure Stripe SDK
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(
            timeout=settings.stripe_timeout_seconds
        )

        self._webhook_secret = settings.stripe_webhook_secret
        self._currency = settings.stripe_currency

        logger.info(
            f"StripePaymentService initialized "
            f"(api_version={stripe.api_version}, "
            f"timeout={settings.stripe_timeout_seconds}s)"
        )

    @property
    def provider_name(self) -> str:
        return "stripe"

    async def _call(self, operation: str, fn, *args, **kwargs):
        """
        Run one blocking SDK call and map provider errors to GatewayError.

        The provider's message is logged here; clients only see the
        opaque GatewayError text.
        """
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)

        except stripe.AuthenticationError as e:
            # API key issues
            logger.critical(f"Stripe: Authentication failed during {operation} - {e}")
            raise GatewayError("Payment service configuration error") from e

        except stripe.APIConnectionError as e:
            # Network issues
            logger.error(f"Stripe: Connection error during {operation} - {e}")
            raise GatewayError("Payment service temporarily unavailable") from e

        except stripe.InvalidRequestError as e:
            logger.error(f"Stripe: Invalid request during {operation} - {e}")
            raise GatewayError("Payment request was rejected") from e

        except stripe.StripeError as e:
            logger.error(f"Stripe: Error during {operation} - {e}")
            raise GatewayError("Payment processing error") from e

    def _line_items(self, items: list[ItemSnapshot]) -> list[dict]:
        line_items = []
        for item in items:
            product_data: dict[str, Any] = {"name": item.name or f"Item {item.id}"}
            description = describe_line_item(item)
            if description:
                product_data["description"] = description

            line_items.append({
                "price_data": {
                    "currency": self._currency,
                    "product_data": product_data,
                    "unit_amount": to_minor_units(item.price),
                },
                "quantity": item.quantity,
            })
        return line_items

    async def create_checkout_session(
        self,
        order: Order,
        items: list[ItemSnapshot],
        customer_email: Optional[str],
        success_url: str,
        cancel_url: str,
        metadata: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSessionResult:
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": self._line_items(items),
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": order_metadata(order, metadata),
        }
        if customer_email:
            params["customer_email"] = customer_email

        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        session = await self._call(
            "checkout session create",
            stripe.checkout.Session.create,
            **params,
        )

        logger.info(
            f"Stripe: Checkout session {session.id} created "
            f"for order {order.order_number}"
        )
        return CheckoutSessionResult(session_id=session.id, url=session.url)

    async def create_payment_intent(
        self,
        order: Order,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntentResult:
        params: dict[str, Any] = {
            "amount": to_minor_units(order.total),
            "currency": self._currency,
            "metadata": order_metadata(order),
            "automatic_payment_methods": {"enabled": True},
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        intent = await self._call(
            "payment intent create",
            stripe.PaymentIntent.create,
            **params,
        )

        logger.debug(f"Stripe: PaymentIntent {intent.id} created for order {order.order_number}")
        return PaymentIntentResult(
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
        )

    async def retrieve_session(self, session_id: str) -> SessionRecord:
        try:
            session = await asyncio.to_thread(stripe.checkout.Session.retrieve, session_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                logger.warning(f"Stripe: Checkout session {session_id} not found")
                raise SessionNotFoundError(
                    f"Checkout session {session_id} not found"
                ) from e
            logger.error(f"Stripe: Invalid session retrieve - {e}")
            raise GatewayError("Payment request was rejected") from e
        except stripe.StripeError as e:
            logger.error(f"Stripe: Session retrieve failed - {e}")
            raise GatewayError("Payment service temporarily unavailable") from e

        return SessionRecord(
            session_id=session.id,
            payment_status=session.payment_status,
            metadata={str(k): str(v) for k, v in _plain_dict(session.metadata).items()},
        )

    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """
        Verify and parse a Stripe webhook event.

        Returns:
            Parsed event dict if valid, None if verification fails
        """
        if not self._webhook_secret:
            logger.warning(
                "Stripe: Webhook secret not configured, skipping verification"
            )
            try:
                event = json.loads(payload)
            except ValueError:
                return None
            return event if isinstance(event, dict) else None

        if not signature:
            logger.warning("Stripe: Webhook received without signature header")
            return None

        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self._webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe: Webhook signature invalid - {e}")
            return None
        except ValueError as e:
            logger.warning(f"Stripe: Webhook payload invalid - {e}")
            return None

        logger.debug(f"Stripe: Webhook verified - {event['type']}")
        return _plain_dict(event)

    async def health_check(self) -> bool:
        """Verify Stripe API connectivity with a lightweight account lookup."""
        try:
            await asyncio.to_thread(stripe.Account.retrieve)
        except stripe.StripeError as e:
            logger.error(f"Stripe: Health check failed - {e}")
            return False
        logger.debug("Stripe: Health check passed")
        return True

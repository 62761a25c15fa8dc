"""
Mock Payment Gateway

Simulates Stripe checkout without making real API calls.
Used in development mode (ENV_MODE=development) and by the test suite to:
    - Run the complete checkout → callback flow locally
    - Load-test reconciliation without incurring costs
    - Develop without internet connectivity

Behavior:
    - Sessions live in memory; only the newest max_sessions are kept
    - A configurable share of sessions end up "unpaid" (simulated declines)
    - Stripe-like ids (cs_mock_xxx, pi_mock_xxx)
    - Repeating an idempotency key returns the original session
"""

import asyncio
import json
import logging
import random
import uuid
from typing import Any, Optional

from restaurant_orders.core.exceptions import GatewayError, SessionNotFoundError
from restaurant_orders.models import Order
from restaurant_orders.services.payment.base import (
    PAID,
    BasePaymentService,
    CheckoutSessionResult,
    PaymentIntentResult,
    SessionRecord,
    order_metadata,
    to_minor_units,
)
from restaurant_orders.services.snapshot import ItemSnapshot

logger = logging.getLogger(__name__)

UNPAID = "unpaid"


def _evict_oldest(store: dict, limit: int) -> None:
    # dicts keep insertion order, so the first key is the oldest
    while len(store) > limit:
        del store[next(iter(store))]


class MockPaymentService(BasePaymentService):
    """
    In-memory implementation of the payment gateway.

    Attributes:
        failure_rate: Probability that a new session ends up unpaid (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds
        max_sessions: Sessions (and idempotency keys) kept before the oldest
            are forgotten

    Example:
        >>> gateway = MockPaymentService(failure_rate=0.0, min_latency=0, max_latency=0)
        >>> result = await gateway.create_checkout_session(order, items, None, ok, ko)
        >>> (await gateway.retrieve_session(result.session_id)).payment_status
        'paid'
    """

    def __init__(
        self,
        failure_rate: float = 0.10,
        min_latency: float = 0.2,
        max_latency: float = 0.8,
        base_url: str = "https://checkout.mock.local",
        max_sessions: int = 10_000,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.base_url = base_url.rstrip("/")
        self.max_sessions = max_sessions

        self._sessions: dict[str, SessionRecord] = {}
        self._idempotent: dict[str, Any] = {}
        # Set to simulate a provider outage on the next create call
        self.fail_next_call: bool = False

        logger.info(
            f"MockPaymentService initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> None:
        if self.max_latency <= 0:
            return
        await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

    def _raise_if_outage(self) -> None:
        if self.fail_next_call:
            self.fail_next_call = False
            logger.warning("Mock: Simulated provider outage")
            raise GatewayError("Payment service temporarily unavailable")

    def _draw_payment_status(self) -> str:
        return UNPAID if random.random() < self.failure_rate else PAID

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
        await self._simulate_latency()
        self._raise_if_outage()

        if idempotency_key and idempotency_key in self._idempotent:
            logger.debug(f"Mock: Replaying checkout session for key {idempotency_key}")
            return self._idempotent[idempotency_key]

        amount = sum(to_minor_units(item.price) * item.quantity for item in items)
        if amount <= 0:
            raise GatewayError("Checkout amount must be greater than 0")

        session_id = f"cs_mock_{uuid.uuid4().hex[:24]}"
        self._sessions[session_id] = SessionRecord(
            session_id=session_id,
            payment_status=self._draw_payment_status(),
            metadata=order_metadata(order, metadata),
        )
        _evict_oldest(self._sessions, self.max_sessions)
        result = CheckoutSessionResult(
            session_id=session_id,
            url=f"{self.base_url}/pay/{session_id}",
        )
        if idempotency_key:
            self._idempotent[idempotency_key] = result
            _evict_oldest(self._idempotent, self.max_sessions)

        logger.info(
            f"Mock: Checkout session {session_id} for order "
            f"{order.order_number} ({amount} minor units)"
        )
        return result

    async def create_payment_intent(
        self,
        order: Order,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntentResult:
        await self._simulate_latency()
        self._raise_if_outage()

        if idempotency_key and idempotency_key in self._idempotent:
            return self._idempotent[idempotency_key]

        if to_minor_units(order.total) <= 0:
            raise GatewayError("Payment amount must be greater than 0")

        payment_intent_id = f"pi_mock_{uuid.uuid4().hex[:24]}"
        result = PaymentIntentResult(
            payment_intent_id=payment_intent_id,
            client_secret=f"{payment_intent_id}_secret_mock",
        )
        if idempotency_key:
            self._idempotent[idempotency_key] = result
            _evict_oldest(self._idempotent, self.max_sessions)

        logger.debug(f"Mock: Created payment intent {payment_intent_id}")
        return result

    async def retrieve_session(self, session_id: str) -> SessionRecord:
        await self._simulate_latency()
        record = self._sessions.get(session_id)
        if record is None:
            raise SessionNotFoundError(f"Checkout session {session_id} not found")
        return record

    def set_payment_status(self, session_id: str, payment_status: str) -> None:
        """Force the outcome of a session (used by tests and the simulator)."""
        record = self._sessions.get(session_id)
        if record is None:
            raise SessionNotFoundError(f"Checkout session {session_id} not found")
        record.payment_status = payment_status

    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """
        Parse a webhook without cryptographic verification.

        Mock mode trusts any well-formed JSON object.
        """
        try:
            event = json.loads(payload)
        except ValueError:
            logger.warning("Mock: Invalid webhook payload")
            return None
        return event if isinstance(event, dict) else None

    async def health_check(self) -> bool:
        logger.debug("Mock: Health check passed")
        return True

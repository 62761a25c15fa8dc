"""
Payment Gateway Abstract Base Class

Defines the interface contract for all payment gateway implementations.
Both MockPaymentService and StripePaymentService implement these methods,
so intake and reconciliation behave identically whichever one is active.

Design Pattern: Strategy Pattern
    - Runtime switching between providers via ENV_MODE
    - Tests drive the full checkout flow against the mock

Error contract:
    - Any provider failure (auth, network, bad request) raises GatewayError
    - An unknown session id raises SessionNotFoundError
    - A failed call never changes order state; callers abort their transaction
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

from restaurant_orders.models import Order
from restaurant_orders.services.snapshot import ItemSnapshot


PAID = "paid"


@dataclass
class CheckoutSessionResult:
    """
    Hosted checkout page created for one order.

    Attributes:
        session_id: Provider session id (Stripe format: cs_xxx)
        url: Page the customer is redirected to
    """
    session_id: str
    url: Optional[str]


@dataclass
class PaymentIntentResult:
    """Payment intent for client-side confirmation (Stripe Elements)."""
    payment_intent_id: str
    client_secret: str


@dataclass
class SessionRecord:
    """
    Provider-side state of a checkout session, as reconciliation reads it.

    Attributes:
        session_id: Provider session id
        payment_status: "paid", "unpaid" or "no_payment_required"
        metadata: String map attached at creation (orderId, orderNumber, ...)
    """
    session_id: str
    payment_status: str
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PAID


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to integer cents, rounding half-up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def describe_line_item(item: ItemSnapshot) -> Optional[str]:
    """Line-item description listing the chosen sub-items, if any."""
    names = [si.name for si in item.selected_items if si.name]
    if not names:
        return None
    return ", ".join(names)


def order_metadata(order: Order, extra: Optional[dict[str, Any]] = None) -> dict[str, str]:
    """
    Metadata attached to every provider object created for an order.

    orderId and orderNumber are applied last so caller-supplied
    metadata can never redirect a callback to another order.
    """
    metadata = {str(k): str(v) for k, v in (extra or {}).items()}
    metadata["orderId"] = str(order.id)
    metadata["orderNumber"] = order.order_number
    return metadata


class BasePaymentService(ABC):
    """
    Abstract base class for payment gateways.

    Example:
        >>> gateway = get_payment_service()  # Mock or Stripe
        >>> result = await gateway.create_checkout_session(
        ...     order, items, "jane@example.com", success_url, cancel_url
        ... )
        >>> result.url
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the payment provider ("mock", "stripe")."""
        pass

    @abstractmethod
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
        """
        Create a hosted checkout session for a persisted order.

        Args:
            order: Flushed order (id and order_number assigned)
            items: Line items as they were snapshotted at intake
            customer_email: Prefills the checkout form and receipt
            success_url: Redirect after payment
            cancel_url: Redirect when the customer backs out
            metadata: Extra string metadata; orderId/orderNumber always win
            idempotency_key: Makes a retried create return the same session

        Raises:
            GatewayError: the provider rejected or never answered the call
        """
        pass

    @abstractmethod
    async def create_payment_intent(
        self,
        order: Order,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntentResult:
        """
        Create a payment intent for Order.total.

        Raises:
            GatewayError: the provider rejected or never answered the call
        """
        pass

    @abstractmethod
    async def retrieve_session(self, session_id: str) -> SessionRecord:
        """
        Fetch the current state of a checkout session.

        Raises:
            SessionNotFoundError: the provider does not know the id
            GatewayError: any other provider failure
        """
        pass

    @abstractmethod
    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """
        Verify and parse a webhook from the payment provider.

        Returns:
            dict: Parsed webhook event if valid, None if invalid
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the provider is reachable and operational."""
        pass

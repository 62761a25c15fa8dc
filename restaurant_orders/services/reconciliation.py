"""
Payment Reconciliation Engine

Aligns Order.status with what the payment provider reports.

State machine (both outcomes are terminal):

    pending ──paid session──▶ completed
    pending ──cancel────────▶ cancelled

Every callback follows the same steps:
    1. Read the provider session (outside any DB transaction)
    2. Correlate it to an order through metadata.orderId
    3. Lock the order row, apply the guarded transition, project
       the result, commit

A callback that finds the order already terminal changes nothing and
returns the current projection, so redirects and webhooks may be
delivered any number of times and in any order.
"""

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from restaurant_orders.core.exceptions import BadRequestError, NotFoundError
from restaurant_orders.database import unit_of_work
from restaurant_orders.models import Order, OrderStatus, utcnow
from restaurant_orders.schemas import OrderView
from restaurant_orders.services.payment import BasePaymentService, SessionRecord
from restaurant_orders.services.projector import load_order, project_order

logger = logging.getLogger(__name__)


SUCCESS_EVENTS = frozenset({
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
})
CANCEL_EVENTS = frozenset({
    "checkout.session.expired",
    "checkout.session.async_payment_failed",
})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Only pending orders move, and only to a terminal status."""
    return current is OrderStatus.PENDING and target.is_terminal


def order_id_from_metadata(record: SessionRecord) -> int:
    """
    Extract the order id a session was created for.

    Raises:
        BadRequestError: metadata.orderId is missing or not an integer
    """
    raw = record.metadata.get("orderId")
    if raw is None or not str(raw).strip():
        raise BadRequestError(
            f"Checkout session {record.session_id} carries no order id"
        )
    try:
        return int(str(raw).strip())
    except ValueError:
        raise BadRequestError(
            f"Checkout session {record.session_id} has an invalid order id: {raw!r}"
        )


class ReconciliationEngine:
    """
    Applies provider outcomes to orders.

    Example:
        >>> engine = ReconciliationEngine(get_payment_service())
        >>> view = await engine.apply_payment_success(db, "cs_test_123")
        >>> view.status
        <OrderStatus.COMPLETED: 'completed'>
    """

    def __init__(self, gateway: BasePaymentService):
        self.gateway = gateway

    async def _session_for(self, session_id: Optional[str]) -> SessionRecord:
        if session_id is None or not session_id.strip():
            raise BadRequestError("Session ID is required")
        return await self.gateway.retrieve_session(session_id.strip())

    async def _transition(
        self,
        db: AsyncSession,
        record: SessionRecord,
        target: OrderStatus,
        allowed: bool,
    ) -> OrderView:
        order_id = order_id_from_metadata(record)

        async with unit_of_work(db):
            order = await load_order(db, order_id, for_update=True)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")

            if allowed and can_transition(order.status, target):
                self._apply(order, target, record)
                await db.flush()
            else:
                logger.info(
                    f"Order {order.order_number}: {target.value} callback for "
                    f"session {record.session_id} left status "
                    f"{order.status.value} (payment_status={record.payment_status})"
                )

            return project_order(order)

    @staticmethod
    def _apply(order: Order, target: OrderStatus, record: SessionRecord) -> None:
        previous = order.status
        order.status = target
        order.updated_at = utcnow()
        logger.info(
            f"Order {order.order_number}: {previous.value} → {target.value} "
            f"(session {record.session_id})"
        )

    async def apply_payment_success(
        self,
        db: AsyncSession,
        session_id: Optional[str],
    ) -> OrderView:
        """
        Complete a pending order whose checkout session is paid.

        Raises:
            BadRequestError: no session id, or no usable orderId in metadata
            NotFoundError: unknown session or order
            GatewayError: the provider could not be reached
        """
        record = await self._session_for(session_id)
        return await self._transition(
            db, record, OrderStatus.COMPLETED, allowed=record.is_paid
        )

    async def apply_payment_cancel(
        self,
        db: AsyncSession,
        session_id: Optional[str],
    ) -> OrderView:
        """
        Cancel a pending order. A completed order stays completed.

        Raises:
            BadRequestError: no session id, or no usable orderId in metadata
            NotFoundError: unknown session or order
            GatewayError: the provider could not be reached
        """
        record = await self._session_for(session_id)
        return await self._transition(
            db, record, OrderStatus.CANCELLED, allowed=True
        )

    async def handle_webhook_event(
        self,
        db: AsyncSession,
        event: dict[str, Any],
    ) -> Optional[OrderView]:
        """
        Dispatch a verified provider event.

        The session is always re-read from the provider rather than
        trusted from the event body.

        Returns:
            The order projection, or None for events that are ignored
        """
        event_type = event.get("type")
        session = (event.get("data") or {}).get("object") or {}
        session_id = session.get("id") if isinstance(session, dict) else None

        if event_type in SUCCESS_EVENTS:
            logger.info(f"Webhook {event_type} for session {session_id}")
            return await self.apply_payment_success(db, session_id)

        if event_type in CANCEL_EVENTS:
            logger.info(f"Webhook {event_type} for session {session_id}")
            return await self.apply_payment_cancel(db, session_id)

        logger.debug(f"Webhook {event_type} acknowledged and ignored")
        return None

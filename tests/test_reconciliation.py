"""
Tests for the payment reconciliation state machine.
"""
import pytest

from restaurant_orders.core.exceptions import (
    BadRequestError,
    NotFoundError,
    SessionNotFoundError,
)
from restaurant_orders.models import OrderStatus
from restaurant_orders.services.payment import SessionRecord
from restaurant_orders.services.projector import load_order
from restaurant_orders.services.reconciliation import (
    ReconciliationEngine,
    can_transition,
    order_id_from_metadata,
)


@pytest.fixture
def engine_(gateway) -> ReconciliationEngine:
    return ReconciliationEngine(gateway)


async def stored_status(session_maker, order_id: int) -> OrderStatus:
    async with session_maker() as session:
        return (await load_order(session, order_id)).status


class TestTransitionGuard:

    @pytest.mark.parametrize("current,target,allowed", [
        (OrderStatus.PENDING, OrderStatus.COMPLETED, True),
        (OrderStatus.PENDING, OrderStatus.CANCELLED, True),
        (OrderStatus.PENDING, OrderStatus.PENDING, False),
        (OrderStatus.COMPLETED, OrderStatus.CANCELLED, False),
        (OrderStatus.CANCELLED, OrderStatus.COMPLETED, False),
        (OrderStatus.COMPLETED, OrderStatus.COMPLETED, False),
    ])
    def test_only_pending_moves(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_order_id_parsed_from_metadata(self):
        record = SessionRecord("cs_1", "paid", {"orderId": " 17 "})

        assert order_id_from_metadata(record) == 17

    @pytest.mark.parametrize("metadata", [{}, {"orderId": ""}, {"orderId": "abc"}])
    def test_unusable_metadata_is_bad_request(self, metadata):
        with pytest.raises(BadRequestError):
            order_id_from_metadata(SessionRecord("cs_1", "paid", metadata))


class TestPaymentSuccess:

    async def test_paid_session_completes_order(self, seeded, place_order, engine_, db, session_maker):
        order, session_id = await place_order()

        view = await engine_.apply_payment_success(db, session_id)

        assert view.status is OrderStatus.COMPLETED
        assert view.order_number == order.order_number
        assert await stored_status(session_maker, order.id) is OrderStatus.COMPLETED

    async def test_unpaid_session_leaves_order_pending(self, seeded, place_order, engine_, gateway, db, session_maker):
        order, session_id = await place_order()
        gateway.set_payment_status(session_id, "unpaid")

        view = await engine_.apply_payment_success(db, session_id)

        assert view.status is OrderStatus.PENDING
        assert await stored_status(session_maker, order.id) is OrderStatus.PENDING

    async def test_repeated_success_is_idempotent(self, seeded, place_order, engine_, db):
        _, session_id = await place_order()

        first = await engine_.apply_payment_success(db, session_id)
        second = await engine_.apply_payment_success(db, session_id)

        assert first.status is OrderStatus.COMPLETED
        assert second.model_dump() == first.model_dump()

    async def test_success_after_cancel_stays_cancelled(self, seeded, place_order, engine_, db):
        _, session_id = await place_order()

        await engine_.apply_payment_cancel(db, session_id)
        view = await engine_.apply_payment_success(db, session_id)

        assert view.status is OrderStatus.CANCELLED

    @pytest.mark.parametrize("session_id", [None, "", "   "])
    async def test_missing_session_id_is_bad_request(self, engine_, db, session_id):
        with pytest.raises(BadRequestError):
            await engine_.apply_payment_success(db, session_id)

    async def test_unknown_session_is_not_found(self, engine_, db):
        with pytest.raises(SessionNotFoundError):
            await engine_.apply_payment_success(db, "cs_mock_unknown")

    async def test_session_without_order_id_is_bad_request(self, engine_, gateway, db):
        gateway._sessions["cs_foreign"] = SessionRecord("cs_foreign", "paid", {})

        with pytest.raises(BadRequestError):
            await engine_.apply_payment_success(db, "cs_foreign")

    async def test_session_for_missing_order_is_not_found(self, engine_, gateway, db):
        gateway._sessions["cs_orphan"] = SessionRecord("cs_orphan", "paid", {"orderId": "404"})

        with pytest.raises(NotFoundError, match="404"):
            await engine_.apply_payment_success(db, "cs_orphan")


class TestPaymentCancel:

    async def test_cancel_pending_order(self, seeded, place_order, engine_, db, session_maker):
        order, session_id = await place_order()

        view = await engine_.apply_payment_cancel(db, session_id)

        assert view.status is OrderStatus.CANCELLED
        assert await stored_status(session_maker, order.id) is OrderStatus.CANCELLED

    async def test_cancel_twice_is_identical(self, seeded, place_order, engine_, db):
        _, session_id = await place_order()

        first = await engine_.apply_payment_cancel(db, session_id)
        second = await engine_.apply_payment_cancel(db, session_id)

        assert first.status is second.status is OrderStatus.CANCELLED
        assert second.model_dump() == first.model_dump()

    async def test_cancel_after_completion_keeps_completed(self, seeded, place_order, engine_, db, session_maker):
        order, session_id = await place_order()

        await engine_.apply_payment_success(db, session_id)
        view = await engine_.apply_payment_cancel(db, session_id)

        assert view.status is OrderStatus.COMPLETED
        assert await stored_status(session_maker, order.id) is OrderStatus.COMPLETED


class TestWebhookDispatch:

    @staticmethod
    def event(event_type: str, session_id: str) -> dict:
        return {"type": event_type, "data": {"object": {"id": session_id}}}

    @pytest.mark.parametrize("event_type,expected", [
        ("checkout.session.completed", OrderStatus.COMPLETED),
        ("checkout.session.async_payment_succeeded", OrderStatus.COMPLETED),
        ("checkout.session.expired", OrderStatus.CANCELLED),
        ("checkout.session.async_payment_failed", OrderStatus.CANCELLED),
    ])
    async def test_checkout_events_drive_transitions(self, seeded, place_order, engine_, db, event_type, expected):
        _, session_id = await place_order()

        view = await engine_.handle_webhook_event(db, self.event(event_type, session_id))

        assert view.status is expected

    async def test_other_events_are_ignored(self, engine_, db):
        view = await engine_.handle_webhook_event(db, self.event("payment_intent.created", "pi_1"))

        assert view is None

"""
Endpoint tests over httpx.AsyncClient with ASGITransport.
"""
import pytest

from restaurant_orders.models import CustomerOrderInfo, Order, OrderDetail
from tests.conftest import FRONTEND, count_rows

ORIGIN = {"Origin": FRONTEND}


async def open_checkout(client, payload, headers=ORIGIN) -> dict:
    response = await client.post("/api/stripe/create-checkout-session", json=payload, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


class TestRootAndHealth:

    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["health"] == "/health"

    async def test_health(self, client):
        response = await client.get("/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "operational"
        assert body["database"] == "healthy"
        assert body["payment_service"] == "healthy"


class TestOrders:

    async def test_create_order(self, client, seeded, order_payload):
        response = await client.post("/api/orders", json=order_payload())

        body = response.json()
        assert response.status_code == 200
        assert isinstance(body["orderId"], int)
        assert len(body["orderNumber"]) == 8

    async def test_validation_error_shape(self, client, seeded, order_payload, session_maker):
        payload = order_payload()
        payload["customerInfo"].pop("house")

        response = await client.post("/api/orders", json=payload)

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Validation Error",
            "detail": "Delivery orders require: house",
        }
        assert await count_rows(session_maker, Order) == 0

    async def test_cash_order_returns_full_projection(self, client, seeded, order_payload):
        response = await client.post("/api/orders/cash", json=order_payload(paymentMethod="cash"))

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "pending"
        assert body["paymentMethod"] == "cash"
        assert body["orderMethod"] == "delivery"
        assert body["total"] == 21.0
        assert body["originalTotal"] == 25.0
        assert body["discountCoupon"] == 1
        assert body["customerInfo"]["postalCode"] == "1010"
        assert body["customerInfo"]["specialNotes"] == "Ring twice"
        assert [i["name"] for i in body["items"]] == ["Pizza", "Lemonade"]
        assert body["items"][0]["selectedItems"][0]["groupName"] == "Size"

    async def test_cash_order_with_unknown_postcode_leaves_nothing(self, client, seeded, order_payload, session_maker):
        payload = order_payload(paymentMethod="cash")
        payload["customerInfo"]["postalCode"] = "9999"

        response = await client.post("/api/orders/cash", json=payload)

        assert response.status_code == 404
        for model in (Order, OrderDetail, CustomerOrderInfo):
            assert await count_rows(session_maker, model) == 0

    async def test_get_order(self, client, seeded, order_payload):
        created = (await client.post("/api/orders", json=order_payload())).json()

        response = await client.get(f"/api/orders/{created['orderId']}")

        assert response.status_code == 200
        assert response.json()["orderNumber"] == created["orderNumber"]

    async def test_get_unknown_order(self, client):
        response = await client.get("/api/orders/999")

        assert response.status_code == 404
        assert response.json()["success"] is False

    async def test_malformed_body_is_rejected_by_schema(self, client):
        response = await client.post("/api/orders", json={"items": []})

        assert response.status_code == 422


class TestCheckout:

    async def test_checkout_creates_order_and_session(self, client, seeded, order_payload, gateway):
        body = await open_checkout(client, order_payload())

        record = await gateway.retrieve_session(body["sessionId"])
        assert body["url"].endswith(body["sessionId"])
        assert record.metadata["orderId"] == str(body["orderId"])
        assert record.metadata["orderNumber"] == body["orderNumber"]
        assert record.metadata["hasDiscount"] == "1"
        assert record.metadata["originalTotal"] == "25.00"

    async def test_gateway_failure_rolls_back_order(self, client, seeded, order_payload, gateway, session_maker):
        gateway.fail_next_call = True

        response = await client.post("/api/stripe/create-checkout-session", json=order_payload(), headers=ORIGIN)

        assert response.status_code == 502
        assert response.json()["error"] == "Payment Gateway Error"
        for model in (Order, OrderDetail, CustomerOrderInfo):
            assert await count_rows(session_maker, model) == 0

    async def test_checkout_without_frontend_url_fails(self, client, seeded, order_payload, session_maker):
        response = await client.post("/api/stripe/create-checkout-session", json=order_payload())

        assert response.status_code == 500
        assert await count_rows(session_maker, Order) == 0

    async def test_payment_intent(self, client, seeded, order_payload):
        created = (await client.post("/api/orders", json=order_payload())).json()

        response = await client.post(
            "/api/stripe/create-payment-intent", json={"orderId": created["orderId"]}
        )

        assert response.status_code == 200
        assert response.json()["clientSecret"].startswith("pi_mock_")

    async def test_payment_intent_for_unknown_order(self, client):
        response = await client.post("/api/stripe/create-payment-intent", json={"orderId": 999})

        assert response.status_code == 404


class TestCallbacks:

    async def test_success_then_cancel_stays_completed(self, client, seeded, order_payload):
        session_id = (await open_checkout(client, order_payload()))["sessionId"]

        success = await client.get("/api/stripe/payment-success", params={"session_id": session_id})
        cancel = await client.post("/api/stripe/payment-cancel", json={"sessionId": session_id})

        assert success.status_code == 200
        assert success.json()["status"] == "completed"
        assert cancel.status_code == 200
        assert cancel.json()["status"] == "completed"

    async def test_cancel_via_query_is_repeatable(self, client, seeded, order_payload):
        session_id = (await open_checkout(client, order_payload()))["sessionId"]

        first = await client.get("/api/stripe/payment-cancel", params={"session_id": session_id})
        second = await client.get("/api/stripe/payment-cancel", params={"session_id": session_id})

        assert first.json()["status"] == "cancelled"
        assert second.json() == first.json()

    async def test_unpaid_session_keeps_order_pending(self, client, seeded, order_payload, gateway):
        session_id = (await open_checkout(client, order_payload()))["sessionId"]
        gateway.set_payment_status(session_id, "unpaid")

        response = await client.get("/api/stripe/payment-success", params={"session_id": session_id})

        assert response.json()["status"] == "pending"

    @pytest.mark.parametrize("path", ["/api/stripe/payment-success", "/api/stripe/payment-cancel"])
    async def test_missing_session_id(self, client, path):
        response = await client.get(path)

        assert response.status_code == 400

    async def test_unknown_session(self, client):
        response = await client.get("/api/stripe/payment-success", params={"session_id": "cs_nope"})

        assert response.status_code == 404

    async def test_malformed_cancel_body(self, client):
        response = await client.post(
            "/api/stripe/payment-cancel",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400


class TestWebhook:

    async def test_completed_event_completes_order(self, client, seeded, order_payload):
        checkout = await open_checkout(client, order_payload())
        event = {"type": "checkout.session.completed", "data": {"object": {"id": checkout["sessionId"]}}}

        response = await client.post("/api/stripe/webhook", json=event)

        body = response.json()
        assert response.status_code == 200
        assert body["received"] is True
        assert body["orderId"] == checkout["orderId"]
        assert body["status"] == "completed"

    async def test_unrelated_event_is_acknowledged(self, client):
        response = await client.post("/api/stripe/webhook", json={"type": "customer.created"})

        assert response.status_code == 200
        assert response.json()["status"] is None

    async def test_event_for_unknown_session_is_acknowledged(self, client):
        event = {"type": "checkout.session.expired", "data": {"object": {"id": "cs_elsewhere"}}}

        response = await client.post("/api/stripe/webhook", json=event)

        assert response.status_code == 200

    async def test_invalid_payload(self, client):
        response = await client.post(
            "/api/stripe/webhook",
            content=b"garbage",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400

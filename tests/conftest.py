"""
Pytest configuration and fixtures.

Every test gets its own in-memory SQLite database (aiosqlite, one shared
connection via StaticPool) and a zero-latency mock payment gateway.
"""
import os
from typing import Any, AsyncGenerator, Callable

# Settings are read at import time; point them at SQLite before importing the app
os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.pop("FRONTEND_URL", None)

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import func, select  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from restaurant_orders.database import (  # noqa: E402
    build_session_maker,
    get_db,
    init_db,
    unit_of_work,
)
from restaurant_orders.main import app  # noqa: E402
from restaurant_orders.models import (  # noqa: E402
    CatalogItem,
    Order,
    Postcode,
    SelectionGroup,
    SelectionOption,
    item_selection_groups,
)
from restaurant_orders.schemas import OrderCreate  # noqa: E402
from restaurant_orders.services.catalog import (  # noqa: E402
    SqlCatalogLookup,
    SqlPostcodeDirectory,
)
from restaurant_orders.services.intake import OrderIntake, snapshot_items  # noqa: E402
from restaurant_orders.services.payment import (  # noqa: E402
    MockPaymentService,
    get_payment_service,
)

PIZZA_ID = 12
SIZE_SMALL, SIZE_LARGE, EXTRA_CHEESE = 1, 2, 3
POSTCODE = "1010"
FRONTEND = "http://shop.test"


# =============================================================================
# DATABASE
# =============================================================================

@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, Any]:
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(bind=engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_maker(engine)


@pytest_asyncio.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, Any]:
    """A session with no transaction started, as handed out by get_db."""
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(session_maker) -> None:
    """
    Reference data:
        postcode 1010
        item 12 "Pizza" with required group "Size" (options 1, 2)
        and optional group "Extras" (option 3)
    """
    async with session_maker() as session:
        async with session.begin():
            session.add(Postcode(code=POSTCODE))
            session.add(CatalogItem(id=PIZZA_ID, name="Pizza"))
            session.add(SelectionGroup(id=1, name="Size", is_required=True))
            session.add(SelectionGroup(id=2, name="Extras", is_required=False))
            await session.flush()
            session.add_all([
                SelectionOption(id=SIZE_SMALL, selection_group_id=1, name="Small"),
                SelectionOption(id=SIZE_LARGE, selection_group_id=1, name="Large"),
                SelectionOption(id=EXTRA_CHEESE, selection_group_id=2, name="Extra cheese"),
            ])
            await session.execute(
                item_selection_groups.insert(),
                [
                    {"item_id": PIZZA_ID, "selection_group_id": 1},
                    {"item_id": PIZZA_ID, "selection_group_id": 2},
                ],
            )


async def count_rows(session_maker, model) -> int:
    async with session_maker() as session:
        return await session.scalar(select(func.count()).select_from(model))


# =============================================================================
# SERVICES
# =============================================================================

@pytest.fixture
def gateway() -> MockPaymentService:
    """Mock gateway: no latency, every session paid unless a test says otherwise."""
    return MockPaymentService(failure_rate=0.0, min_latency=0, max_latency=0)


@pytest.fixture
def intake() -> OrderIntake:
    return OrderIntake(catalog=SqlCatalogLookup(), postcodes=SqlPostcodeDirectory())


@pytest.fixture
def order_payload() -> Callable[..., dict[str, Any]]:
    """Build a camelCase order request; keyword overrides replace top-level keys."""

    def _build(**overrides: Any) -> dict[str, Any]:
        payload = {
            "items": [
                {
                    "id": PIZZA_ID,
                    "name": "Pizza",
                    "quantity": 2,
                    "price": 8.0,
                    "originalPrice": 10.0,
                    "notes": "well done",
                    "selectedOptions": [SIZE_LARGE],
                    "selectedItems": [
                        {
                            "id": SIZE_LARGE,
                            "name": "Large",
                            "groupName": "Size",
                            "type": "option",
                            "price": 0,
                            "quantity": 1,
                        }
                    ],
                    "groupOrder": ["Size", "Extras"],
                    "image": "pizza.png",
                },
                {
                    "id": 99,
                    "name": "Lemonade",
                    "quantity": 1,
                    "price": 5.0,
                    "originalPrice": 5.0,
                },
            ],
            "customerInfo": {
                "firstName": "Jane",
                "lastName": "Doe",
                "email": "jane@example.com",
                "phone": "+43 660 1234567",
                "postalCode": POSTCODE,
                "street": "Ringstrasse",
                "house": "7",
                "door": "3",
            },
            "orderMethod": "delivery",
            "paymentMethod": "stripe",
            "status": "pending",
            "totalAmount": 21.0,
            "specialNotes": "Ring twice",
        }
        payload.update(overrides)
        return payload

    return _build


@pytest.fixture
def place_order(db, intake, gateway, order_payload):
    """Persist an order and open a mock checkout session for it."""

    async def _place(**overrides: Any) -> tuple[Order, str]:
        request = OrderCreate.model_validate(order_payload(**overrides))
        async with unit_of_work(db):
            order = await intake.place_order(db, request)
            session = await gateway.create_checkout_session(
                order,
                snapshot_items(request),
                request.customer_info.email,
                f"{FRONTEND}/payment/success",
                f"{FRONTEND}/payment/cancel",
                idempotency_key=f"checkout-{order.order_number}",
            )
        return order, session.session_id

    return _place


# =============================================================================
# HTTP CLIENT
# =============================================================================

@pytest_asyncio.fixture
async def client(session_maker, gateway) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """HTTP client wired to the test database and the mock gateway."""

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_service] = lambda: gateway

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

"""
Order Intake

Validates an incoming order and persists it, together with one immutable
line-item snapshot per item. The caller owns the transaction:

    async with unit_of_work(db):
        order = await intake.place_order(db, request)

Every check that can reject the request runs before the first write, and
any failure after it (unknown postcode, driver error, cancellation) rolls
back the whole unit, so no order is ever observable half-written.
"""

import logging
import secrets
from decimal import Decimal
from functools import lru_cache

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from restaurant_orders.core.exceptions import (
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from restaurant_orders.models import (
    CustomerOrderInfo,
    DeliveryAddress,
    Order,
    OrderDetail,
    OrderMethod,
    OrderStatus,
)
from restaurant_orders.schemas import CustomerInfoCreate, OrderCreate, OrderItemCreate
from restaurant_orders.services.catalog import (
    CatalogLookup,
    PostcodeDirectory,
    get_catalog_lookup,
    get_postcode_directory,
)
from restaurant_orders.services.snapshot import (
    ItemSnapshot,
    SelectedItemSnapshot,
    encode_item,
)

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5

# Checked in this order; messages use the client-facing field names
DELIVERY_REQUIRED_FIELDS = (
    ("postal_code", "postalCode"),
    ("street", "street"),
    ("house", "house"),
)


def generate_order_number() -> str:
    """8 uppercase hex characters, e.g. ``3FA94C0B``."""
    return secrets.token_hex(4).upper()


def snapshot_item(item: OrderItemCreate) -> ItemSnapshot:
    """Freeze one requested item into its stored form."""
    return ItemSnapshot(
        id=item.id,
        name=item.name,
        quantity=item.quantity,
        price=item.price,
        original_price=item.original_price if item.original_price is not None else item.price,
        note=item.notes or "",
        image=item.image or "",
        selected_items=[
            SelectedItemSnapshot(
                id=si.id,
                name=si.name,
                group_name=si.group_name,
                type=si.type,
                price=si.price,
                quantity=si.quantity,
            )
            for si in (item.selected_items or [])
        ],
        group_order=list(item.group_order or []),
    )


def snapshot_items(request: OrderCreate) -> list[ItemSnapshot]:
    return [snapshot_item(item) for item in request.items]


def _missing_delivery_fields(customer: CustomerInfoCreate) -> list[str]:
    missing = []
    for attr, label in DELIVERY_REQUIRED_FIELDS:
        value = getattr(customer, attr)
        if value is None or not value.strip():
            missing.append(label)
    return missing


class OrderIntake:
    """
    Places new orders.

    Attributes:
        catalog: Source of required/optional selection groups per item
        postcodes: Resolves delivery postal codes
    """

    def __init__(self, catalog: CatalogLookup, postcodes: PostcodeDirectory):
        self.catalog = catalog
        self.postcodes = postcodes

    # =========================================================================
    # VALIDATION
    # =========================================================================

    async def validate(self, db: AsyncSession, request: OrderCreate) -> None:
        """
        Check the request against business rules.

        Raises:
            ValidationError: listing every problem found
        """
        problems: list[str] = []

        if not request.items:
            problems.append("Order must contain at least one item")

        if request.status.strip().lower() != OrderStatus.PENDING.value:
            problems.append(
                f"New orders must start as '{OrderStatus.PENDING.value}', "
                f"got '{request.status}'"
            )

        if request.order_method == OrderMethod.DELIVERY:
            missing = _missing_delivery_fields(request.customer_info)
            if missing:
                problems.append(
                    f"Delivery orders require: {', '.join(missing)}"
                )

        for item in request.items:
            problems.extend(await self._unmet_required_groups(db, item))

        if problems:
            logger.info(f"Order rejected: {'; '.join(problems)}")
            raise ValidationError(problems)

    async def _unmet_required_groups(
        self,
        db: AsyncSession,
        item: OrderItemCreate,
    ) -> list[str]:
        rules = await self.catalog.get_selection_groups(db, item.id)
        selected = set(item.selected_options)
        return [
            f"Item '{item.name}' requires a selection from '{rule.name}'"
            for rule in rules
            if rule.is_required and not rule.is_satisfied_by(selected)
        ]

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def _allocate_order_number(self, db: AsyncSession) -> str:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number()
            taken = await db.scalar(
                select(Order.id).where(Order.order_number == candidate)
            )
            if taken is None:
                return candidate
            logger.warning(f"Order number {candidate} already taken, drawing again")
        raise PersistenceError("Could not allocate a unique order number")

    async def place_order(self, db: AsyncSession, request: OrderCreate) -> Order:
        """
        Validate and persist a new pending order.

        Must run inside ``unit_of_work(db)``.

        Returns:
            The flushed Order (id and order_number assigned)

        Raises:
            ValidationError: request breaks a business rule (nothing written)
            NotFoundError: delivery postal code is not in the directory
            PersistenceError: the store rejected a write
        """
        await self.validate(db, request)

        info = request.customer_info
        is_delivery = request.order_method == OrderMethod.DELIVERY

        postcode = None
        if is_delivery:
            postcode = await self.postcodes.resolve(db, info.postal_code)
            if postcode is None:
                raise NotFoundError(f"Postal code {info.postal_code.strip()} is not served")

        customer = CustomerOrderInfo(
            first_name=info.first_name,
            last_name=info.last_name,
            email=info.email,
            phone=info.phone,
            comment=info.comment,
        )
        db.add(customer)

        address = None
        if is_delivery:
            address = DeliveryAddress(
                postcode_id=postcode.id,
                street=info.street.strip(),
                house=info.house.strip(),
                stairs=info.stairs,
                buzzer=info.buzzer,
                door=info.door,
                bell=info.bell,
            )
            db.add(address)

        await db.flush()

        order = Order(
            order_number=await self._allocate_order_number(db),
            status=OrderStatus.PENDING,
            total=request.total_amount.quantize(Decimal("0.01")),
            payment_method=request.payment_method,
            order_method=request.order_method,
            special_notes=request.special_notes,
            customer_info_id=customer.id,
            delivery_address_id=address.id if address is not None else None,
        )
        db.add(order)
        await db.flush()

        for snapshot in snapshot_items(request):
            db.add(OrderDetail(order_id=order.id, item_details=encode_item(snapshot)))
        await db.flush()

        logger.info(
            f"Order {order.order_number} (#{order.id}) placed - "
            f"{order.order_method.value}, {len(request.items)} item(s), "
            f"total {order.total}"
        )
        return order


@lru_cache()
def get_order_intake() -> OrderIntake:
    """Get the configured intake service."""
    return OrderIntake(
        catalog=get_catalog_lookup(),
        postcodes=get_postcode_directory(),
    )

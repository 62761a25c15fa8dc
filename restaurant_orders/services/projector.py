"""
Order Projector

Rebuilds the client-facing view of an order from its persisted rows.
Projection is a pure function of the loaded graph; ``load_order`` fetches
that graph eagerly so nothing is lazy-loaded while projecting.

One snapshot that no longer decodes is skipped and logged; it never takes
the rest of the order down with it.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from restaurant_orders.core.exceptions import SnapshotDecodeError
from restaurant_orders.models import DeliveryAddress, Order
from restaurant_orders.schemas import (
    CustomerInfoView,
    OrderItemView,
    OrderView,
    SelectedItemView,
)
from restaurant_orders.services.snapshot import ItemSnapshot, decode_item

logger = logging.getLogger(__name__)


async def load_order(
    db: AsyncSession,
    order_id: int,
    for_update: bool = False,
) -> Optional[Order]:
    """
    Load an order with everything the projection reads.

    Args:
        order_id: Primary key
        for_update: Lock the order row until the transaction ends

    Returns:
        The Order, or None if it does not exist
    """
    stmt = (
        select(Order)
        .where(Order.id == order_id)
        .options(
            selectinload(Order.customer_info),
            selectinload(Order.delivery_address).selectinload(DeliveryAddress.postcode),
            selectinload(Order.details),
        )
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update(of=Order)

    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def decode_details(order: Order) -> list[ItemSnapshot]:
    """Decode every line item, skipping the ones that fail."""
    items = []
    for detail in order.details:
        try:
            items.append(decode_item(detail.item_details))
        except SnapshotDecodeError as e:
            logger.warning(
                f"Skipping undecodable order detail #{detail.id} "
                f"of order {order.order_number}: {e.message}"
            )
    return items


def original_total(items: list[ItemSnapshot]) -> Decimal:
    """Sum of originalPrice × quantity over all items."""
    return sum((item.original_line_total for item in items), Decimal("0"))


def discount_coupon(items: list[ItemSnapshot]) -> int:
    """1 if any item sold below its original price, else 0."""
    return 1 if any(item.has_discount for item in items) else 0


def _item_view(item: ItemSnapshot) -> OrderItemView:
    return OrderItemView(
        id=item.id,
        name=item.name,
        quantity=item.quantity,
        price=item.price,
        original_price=item.original_price,
        note=item.note,
        image=item.image,
        selected_items=[
            SelectedItemView(
                id=si.id,
                name=si.name,
                group_name=si.group_name,
                type=si.type,
                price=si.price,
                quantity=si.quantity,
            )
            for si in item.selected_items
        ],
        group_order=list(item.group_order),
    )


def _customer_view(order: Order) -> Optional[CustomerInfoView]:
    customer = order.customer_info
    if customer is None:
        return None

    address = order.delivery_address
    return CustomerInfoView(
        first_name=customer.first_name,
        last_name=customer.last_name,
        email=customer.email,
        phone=customer.phone,
        postal_code=address.postcode.code if address is not None and address.postcode else None,
        street=address.street if address is not None else None,
        house=address.house if address is not None else None,
        stairs=address.stairs if address is not None else None,
        buzzer=address.buzzer if address is not None else None,
        door=address.door if address is not None else None,
        bell=address.bell if address is not None else None,
        special_notes=order.special_notes,
    )


def project_order(order: Order) -> OrderView:
    """Build the OrderView for an order loaded by ``load_order``."""
    items = decode_details(order)

    return OrderView(
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        total=order.total,
        payment_method=order.payment_method,
        order_method=order.order_method,
        created_at=order.created_at,
        customer_info=_customer_view(order),
        items=[_item_view(item) for item in items],
        discount_coupon=discount_coupon(items),
        special_notes=order.special_notes,
        original_total=original_total(items),
    )

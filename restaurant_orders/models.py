"""
SQLAlchemy Database Models

Order side (written by this service):
- Order: lifecycle status, totals, order method
- CustomerOrderInfo / DeliveryAddress: written once at intake
- OrderDetail: one immutable line-item snapshot per ordered item

Reference side (read-only here, maintained by catalog tooling):
- Postcode directory
- Catalog items and their selection groups/options
"""

from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import relationship

from restaurant_orders.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Order status workflow: pending is the only non-terminal state."""
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


class OrderMethod(str, enum.Enum):
    """Order type - Pickup or Delivery."""
    DELIVERY = "delivery"
    PICKUP = "pickup"


# =============================================================================
# ORDER SIDE
# =============================================================================

class CustomerOrderInfo(Base):
    """Customer contact details captured with an order. Never updated."""
    __tablename__ = "customer_order_info"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(30), nullable=True)
    comment = Column(Text, nullable=True)
    create_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<CustomerOrderInfo #{self.id} - {self.first_name} {self.last_name}>"


class DeliveryAddress(Base):
    """Delivery destination; only written for delivery orders."""
    __tablename__ = "delivery_addresses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    postcode_id = Column(Integer, ForeignKey("postcodes.id"), nullable=False)
    street = Column(String(255), nullable=False)
    house = Column(String(50), nullable=False)
    stairs = Column(String(50), nullable=True)
    buzzer = Column(String(50), nullable=True)
    door = Column(String(50), nullable=True)
    bell = Column(String(50), nullable=True)

    postcode = relationship("Postcode", lazy="raise")

    def __repr__(self):
        return f"<DeliveryAddress #{self.id} - {self.street} {self.house}>"


class Order(Base):
    """
    Main Order table.

    Created together with its OrderDetail rows in one transaction; after
    that only ``status`` and ``updated_at`` ever change.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_number = Column(String(8), nullable=False, unique=True, index=True)

    status = Column(
        Enum(OrderStatus, values_callable=lambda e: [m.value for m in e]),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )
    total = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(50), nullable=False)
    order_method = Column(
        Enum(OrderMethod, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    special_notes = Column(Text, nullable=True)

    customer_info_id = Column(Integer, ForeignKey("customer_order_info.id"), nullable=True)
    delivery_address_id = Column(Integer, ForeignKey("delivery_addresses.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    customer_info = relationship("CustomerOrderInfo", lazy="raise")
    delivery_address = relationship("DeliveryAddress", lazy="raise")
    details = relationship(
        "OrderDetail",
        back_populates="order",
        order_by="OrderDetail.id",
        lazy="raise",
    )

    def __repr__(self):
        return f"<Order #{self.id} {self.order_number} - {self.order_method.value} - {self.status.value}>"


class OrderDetail(Base):
    """One ordered line item, frozen as an opaque JSON snapshot."""
    __tablename__ = "order_details"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    item_details = Column(Text, nullable=False)

    order = relationship("Order", back_populates="details", lazy="raise")

    def __repr__(self):
        return f"<OrderDetail #{self.id} of order {self.order_id}>"


# =============================================================================
# REFERENCE SIDE (read-only)
# =============================================================================

class Postcode(Base):
    """Postal code directory entry."""
    __tablename__ = "postcodes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(20), nullable=False, unique=True, index=True)

    def __repr__(self):
        return f"<Postcode {self.code}>"


item_selection_groups = Table(
    "item_selection_groups",
    Base.metadata,
    Column("item_id", Integer, ForeignKey("items.id"), primary_key=True),
    Column("selection_group_id", Integer, ForeignKey("selection_groups.id"), primary_key=True),
)


class CatalogItem(Base):
    """Menu item as configured in the catalog."""
    __tablename__ = "items"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)

    selection_groups = relationship(
        "SelectionGroup",
        secondary=item_selection_groups,
        order_by="SelectionGroup.id",
        lazy="raise",
    )


class SelectionGroup(Base):
    """A customisation group (size, sauce, extras...) attached to items."""
    __tablename__ = "selection_groups"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    is_required = Column(Boolean, default=False, nullable=False)

    options = relationship(
        "SelectionOption",
        back_populates="group",
        order_by="SelectionOption.id",
        lazy="raise",
    )


class SelectionOption(Base):
    """One choosable option inside a selection group."""
    __tablename__ = "selection_options"

    id = Column(Integer, primary_key=True)
    selection_group_id = Column(Integer, ForeignKey("selection_groups.id"), nullable=False)
    name = Column(String(200), nullable=False)

    group = relationship("SelectionGroup", back_populates="options", lazy="raise")

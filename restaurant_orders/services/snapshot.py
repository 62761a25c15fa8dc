"""
Line-Item Snapshot Codec

Each ordered item is frozen into an OrderDetail row as a JSON object so
that later catalog edits never rewrite order history. Rows written years
apart do not share a schema, so decoding is tolerant: every absent field
falls back to a default, and only a blob that is not a JSON object at all
(or holds a value that cannot be coerced) is rejected.

Blob layout (camelCase keys):

    {
        "id": 12, "name": "Pizza Margherita", "quantity": 2,
        "price": 9.5, "originalPrice": 11.0, "note": "", "image": "",
        "selectedItems": [
            {"id": 3, "name": "Extra cheese", "groupName": "Extras",
             "type": "addon", "price": 1.5, "quantity": 1}
        ],
        "groupOrder": ["Size", "Extras"]
    }
"""

import json
from dataclasses import dataclass, field
from decimal import Decimal, DecimalException
from typing import Any, Optional

from restaurant_orders.core.exceptions import SnapshotDecodeError


@dataclass(frozen=True)
class SelectedItemSnapshot:
    """A sub-item (option, add-on) chosen for a line item."""
    id: int = 0
    name: str = ""
    group_name: Optional[str] = None
    type: Optional[str] = None
    price: Decimal = Decimal("0")
    quantity: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "groupName": self.group_name,
            "type": self.type,
            "price": self.price,
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class ItemSnapshot:
    """Point-in-time copy of one ordered line item."""
    id: int = 0
    name: str = ""
    quantity: int = 1
    price: Decimal = Decimal("0")
    original_price: Decimal = Decimal("0")
    note: str = ""
    image: str = ""
    selected_items: list[SelectedItemSnapshot] = field(default_factory=list)
    group_order: list[str] = field(default_factory=list)

    @property
    def has_discount(self) -> bool:
        return self.price < self.original_price

    @property
    def original_line_total(self) -> Decimal:
        return self.original_price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "quantity": self.quantity,
            "price": self.price,
            "originalPrice": self.original_price,
            "note": self.note,
            "image": self.image,
            "selectedItems": [si.to_dict() for si in self.selected_items],
            "groupOrder": list(self.group_order),
        }


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Cannot store non-finite amount {value}")
        # A JSON number when the float holds it exactly, else the decimal text
        as_float = float(value)
        if Decimal(repr(as_float)) == value:
            return as_float
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_item(item: ItemSnapshot) -> str:
    """Serialize one line item into the blob stored in OrderDetail.item_details."""
    return json.dumps(item.to_dict(), default=_json_default, ensure_ascii=False)


# =============================================================================
# DECODING
# =============================================================================

# Ids and quantities are stored in 64-bit columns
_INT_LIMIT = 2 ** 63


def _as_int(raw: dict[str, Any], key: str, default: int) -> int:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, Decimal)):
        raise SnapshotDecodeError(f"'{key}' is not an integer: {value!r}")
    if isinstance(value, Decimal) and (
        not value.is_finite() or value != value.to_integral_value()
    ):
        raise SnapshotDecodeError(f"'{key}' is not an integer: {value!r}")
    if abs(value) >= _INT_LIMIT:
        raise SnapshotDecodeError(f"'{key}' is out of range: {value!r}")
    return int(value)


def _as_decimal(raw: dict[str, Any], key: str, default: Decimal) -> Decimal:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise SnapshotDecodeError(f"'{key}' is not a number: {value!r}")
    try:
        number = Decimal(str(value))
    except DecimalException:
        raise SnapshotDecodeError(f"'{key}' is not a number: {value!r}")
    if not number.is_finite():
        raise SnapshotDecodeError(f"'{key}' is not a finite number: {value!r}")
    return number


def _reject_constant(name: str) -> Any:
    # json accepts the non-standard NaN/Infinity literals unless told otherwise
    raise SnapshotDecodeError(f"Snapshot holds a non-finite number: {name}")


def _as_str(raw: dict[str, Any], key: str, default: Optional[str]) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise SnapshotDecodeError(f"'{key}' is not a string: {value!r}")
    return value


def _decode_selected_items(raw: Any) -> list[SelectedItemSnapshot]:
    if not isinstance(raw, list):
        return []

    selected = []
    for entry in raw:
        # Legacy rows occasionally stored bare ids or nulls here
        if not isinstance(entry, dict):
            continue
        selected.append(
            SelectedItemSnapshot(
                id=_as_int(entry, "id", 0),
                name=_as_str(entry, "name", ""),
                group_name=_as_str(entry, "groupName", None),
                type=_as_str(entry, "type", None),
                price=_as_decimal(entry, "price", Decimal("0")),
                quantity=_as_int(entry, "quantity", 1),
            )
        )
    return selected


def decode_item(blob: Optional[str]) -> ItemSnapshot:
    """
    Rebuild a line item from its stored blob.

    Raises:
        SnapshotDecodeError: the blob is empty, not JSON, not a JSON object,
            or one of its fields holds a value of the wrong kind
    """
    if not blob or not blob.strip():
        raise SnapshotDecodeError("Snapshot is empty")

    try:
        raw = json.loads(blob, parse_float=Decimal, parse_constant=_reject_constant)
    except ValueError as e:
        raise SnapshotDecodeError(f"Snapshot is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise SnapshotDecodeError(
            f"Snapshot must be a JSON object, got {type(raw).__name__}"
        )

    price = _as_decimal(raw, "price", Decimal("0"))
    group_order = raw.get("groupOrder")

    snapshot = ItemSnapshot(
        id=_as_int(raw, "id", 0),
        name=_as_str(raw, "name", ""),
        quantity=_as_int(raw, "quantity", 1),
        price=price,
        # Rows written before originalPrice existed were never discounted
        original_price=_as_decimal(raw, "originalPrice", price),
        note=_as_str(raw, "note", ""),
        image=_as_str(raw, "image", ""),
        selected_items=_decode_selected_items(raw.get("selectedItems")),
        group_order=[
            g for g in group_order if isinstance(g, str)
        ] if isinstance(group_order, list) else [],
    )

    # Totals are summed per order later; amounts that overflow fail here
    try:
        snapshot.original_line_total + snapshot.price * snapshot.quantity
    except (DecimalException, OverflowError) as e:
        raise SnapshotDecodeError(f"Snapshot amounts are out of range: {e!r}") from e

    return snapshot

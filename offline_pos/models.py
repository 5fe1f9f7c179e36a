"""Domain models for the offline POS store."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Mapping

from offline_pos.constant import (
    MONEY_TOLERANCE,
    OrderStatus,
    OrderType,
    PaymentStatus,
    PrintStatus,
    PrintType,
    SyncOperation,
    SyncStatus,
)


def _require_non_negative(name: str, value: float) -> None:
    if value < 0:
        raise ValueError(f"{name} must not be negative (got {value})")


def _opt_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


class _Row:
    """Mixin mapping a dataclass onto a single table row."""

    table: ClassVar[str]

    @classmethod
    def columns(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))  # type: ignore[arg-type]

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if hasattr(value, "value"):
                value = value.value
            elif isinstance(value, bool):
                value = int(value)
            row[f.name] = value
        return row

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready body sent to the remote backend."""
        return _Row.to_row(self)

    def validate(self) -> None:
        """Raise ValueError when the record breaks a table invariant."""


@dataclass
class Category(_Row):
    """A menu category cached from the remote menu service."""

    table: ClassVar[str] = "categories"

    id: str
    name: str
    description: str = ""
    sort_order: int = 0
    active: bool = True
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Category:
        return cls(
            id=str(row["id"]),
            name=row["name"],
            description=row.get("description") or "",
            sort_order=int(row.get("sort_order") or 0),
            active=bool(row.get("active", True)),
            updated_at=row.get("updated_at") or "",
        )

    def validate(self) -> None:
        if not self.name:
            raise ValueError("category name is required")


@dataclass
class MenuItem(_Row):
    """A cached menu item; category_id must point at an existing category."""

    table: ClassVar[str] = "menu_items"

    id: str
    category_id: str
    name: str
    price: float
    description: str = ""
    allergens: list[str] = field(default_factory=list)
    available: bool = True
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> MenuItem:
        allergens = row.get("allergens") or []
        if isinstance(allergens, str):
            allergens = json.loads(allergens)
        return cls(
            id=str(row["id"]),
            category_id=str(row["category_id"]),
            name=row["name"],
            price=float(row["price"]),
            description=row.get("description") or "",
            allergens=list(allergens),
            available=bool(row.get("available", True)),
            updated_at=row.get("updated_at") or "",
        )

    def to_row(self) -> dict[str, Any]:
        row = super().to_row()
        row["allergens"] = json.dumps(self.allergens)
        return row

    def validate(self) -> None:
        if not self.name:
            raise ValueError("menu item name is required")
        _require_non_negative("price", self.price)


@dataclass
class Order(_Row):
    """One customer transaction; never physically deleted by the POS."""

    table: ClassVar[str] = "orders"

    id: str
    order_number: str
    order_type: OrderType
    subtotal: float
    tax_amount: float = 0.0
    discount_amount: float = 0.0
    total_amount: float | None = None
    table_number: int | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    order_status: OrderStatus = OrderStatus.NEW
    synced: bool = False
    sync_error: str | None = None
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        self.order_type = OrderType(self.order_type)
        self.payment_status = PaymentStatus(self.payment_status)
        self.order_status = OrderStatus(self.order_status)
        if self.total_amount is None:
            self.total_amount = round(self.subtotal + self.tax_amount - self.discount_amount, 2)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Order:
        return cls(
            id=str(row["id"]),
            order_number=str(row["order_number"]),
            order_type=row["order_type"],
            subtotal=float(row["subtotal"]),
            tax_amount=float(row.get("tax_amount") or 0.0),
            discount_amount=float(row.get("discount_amount") or 0.0),
            total_amount=None if row.get("total_amount") is None else float(row["total_amount"]),
            table_number=_opt_int(row.get("table_number")),
            customer_name=row.get("customer_name"),
            customer_phone=row.get("customer_phone"),
            payment_status=row.get("payment_status") or PaymentStatus.PENDING,
            order_status=row.get("order_status") or OrderStatus.NEW,
            synced=bool(row.get("synced", False)),
            sync_error=row.get("sync_error"),
            created_at=row.get("created_at") or "",
            updated_at=row.get("updated_at") or "",
        )

    def validate(self) -> None:
        if not self.order_number:
            raise ValueError("order_number is required")
        for name in ("subtotal", "tax_amount", "discount_amount", "total_amount"):
            _require_non_negative(name, getattr(self, name))
        expected = self.subtotal + self.tax_amount - self.discount_amount
        if abs(expected - self.total_amount) > MONEY_TOLERANCE:
            raise ValueError(
                f"total_amount {self.total_amount} does not equal subtotal + tax - discount ({expected:.2f})"
            )


@dataclass
class OrderItem(_Row):
    """One line of an order; removed together with its order."""

    table: ClassVar[str] = "order_items"

    id: str
    order_id: str
    item_name: str
    quantity: int
    unit_price: float
    total_price: float | None = None
    menu_item_id: str | None = None
    special_instructions: str | None = None
    created_at: str = ""

    def __post_init__(self) -> None:
        if self.total_price is None:
            self.total_price = round(self.quantity * self.unit_price, 2)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> OrderItem:
        return cls(
            id=str(row["id"]),
            order_id=str(row["order_id"]),
            item_name=row["item_name"],
            quantity=int(row["quantity"]),
            unit_price=float(row["unit_price"]),
            total_price=None if row.get("total_price") is None else float(row["total_price"]),
            menu_item_id=row.get("menu_item_id"),
            special_instructions=row.get("special_instructions"),
            created_at=row.get("created_at") or "",
        )

    def validate(self) -> None:
        if self.quantity <= 0:
            raise ValueError(f"quantity must be positive (got {self.quantity})")
        _require_non_negative("unit_price", self.unit_price)
        if abs(self.quantity * self.unit_price - self.total_price) > MONEY_TOLERANCE:
            raise ValueError("total_price must equal quantity * unit_price")


@dataclass
class SyncQueueEntry(_Row):
    """A local mutation waiting for remote acknowledgement."""

    table: ClassVar[str] = "sync_queue"

    id: int
    operation_type: SyncOperation
    table_name: str
    record_id: str
    data: dict[str, Any]
    status: SyncStatus = SyncStatus.PENDING
    attempts: int = 0
    last_attempt: str | None = None
    next_attempt_at: str | None = None
    error_message: str | None = None
    created_at: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> SyncQueueEntry:
        data = row.get("data") or {}
        if isinstance(data, str):
            data = json.loads(data)
        return cls(
            id=int(row["id"]),
            operation_type=SyncOperation(row["operation_type"]),
            table_name=row["table_name"],
            record_id=str(row["record_id"]),
            data=data,
            status=SyncStatus(row.get("status") or SyncStatus.PENDING),
            attempts=int(row.get("attempts") or 0),
            last_attempt=row.get("last_attempt"),
            next_attempt_at=row.get("next_attempt_at"),
            error_message=row.get("error_message"),
            created_at=row.get("created_at") or "",
        )

    def to_row(self) -> dict[str, Any]:
        row = super().to_row()
        row["data"] = json.dumps(self.data)
        return row

    @property
    def idempotency_key(self) -> str:
        """Stable key the backend uses to drop repeated deliveries."""
        return f"{self.table_name}:{self.record_id}:{self.id}"


@dataclass
class PrintJob(_Row):
    """A physical ticket waiting for its printer."""

    table: ClassVar[str] = "print_jobs"

    id: str
    print_type: PrintType
    printer_name: str
    content: str
    order_id: str | None = None
    status: PrintStatus = PrintStatus.PENDING
    attempts: int = 0
    error_message: str | None = None
    created_at: str = ""
    printed_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> PrintJob:
        return cls(
            id=str(row["id"]),
            print_type=PrintType(row["print_type"]),
            printer_name=row["printer_name"],
            content=row["content"],
            order_id=row.get("order_id"),
            status=PrintStatus(row.get("status") or PrintStatus.PENDING),
            attempts=int(row.get("attempts") or 0),
            error_message=row.get("error_message"),
            created_at=row.get("created_at") or "",
            printed_at=row.get("printed_at"),
        )


@dataclass
class CartLine:
    """A cart line as captured in a crash snapshot."""

    name: str
    quantity: int
    unit_price: float
    menu_item_id: str | None = None
    instructions: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "menuItemId": self.menu_item_id,
            "name": self.name,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "instructions": self.instructions,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CartLine:
        return cls(
            name=str(data["name"]),
            quantity=int(data["quantity"]),
            unit_price=float(data["unitPrice"]),
            menu_item_id=data.get("menuItemId"),
            instructions=data.get("instructions"),
        )


@dataclass
class CrashState:
    """Live session state persisted so an unclean exit can be recovered."""

    table_number: int | None = None
    order_id: str | None = None
    cart_items: list[CartLine] = field(default_factory=list)
    order_type: OrderType | None = None
    timestamp: int | None = None
    version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tableNumber": self.table_number,
            "orderId": self.order_id,
            "cartItems": [line.to_dict() for line in self.cart_items],
            "orderType": self.order_type.value if self.order_type is not None else None,
            "timestamp": self.timestamp,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CrashState:
        order_type = data.get("orderType")
        return cls(
            table_number=_opt_int(data.get("tableNumber")),
            order_id=data.get("orderId"),
            cart_items=[CartLine.from_dict(line) for line in data.get("cartItems") or []],
            order_type=OrderType(order_type) if order_type else None,
            timestamp=_opt_int(data.get("timestamp")),
            version=data.get("version"),
        )


@dataclass(frozen=True)
class QueueStatus:
    """Queue depth and failure counts for operator-facing banners."""

    unsynced_orders: int = 0
    sync_pending: int = 0
    sync_in_flight: int = 0
    sync_failed: int = 0
    oldest_pending_sync: str | None = None
    print_pending: int = 0
    print_printing: int = 0
    print_failed: int = 0


MODEL_BY_TABLE: dict[str, type] = {
    model.table: model for model in (Category, MenuItem, Order, OrderItem, SyncQueueEntry, PrintJob)
}

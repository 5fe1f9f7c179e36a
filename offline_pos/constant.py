"""Enumerations and static table metadata."""

from __future__ import annotations

from enum import Enum


class OrderType(str, Enum):
    DINE_IN = "DINE_IN"
    COLLECTION = "COLLECTION"
    DELIVERY = "DELIVERY"
    WAITING = "WAITING"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class OrderStatus(str, Enum):
    NEW = "NEW"
    PREPARING = "PREPARING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class SyncOperation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    IN_FLIGHT = "IN_FLIGHT"
    FAILED = "FAILED"


class PrintType(str, Enum):
    RECEIPT = "RECEIPT"
    KITCHEN = "KITCHEN"
    BAR = "BAR"


class PrintStatus(str, Enum):
    PENDING = "PENDING"
    PRINTING = "PRINTING"
    PRINTED = "PRINTED"
    FAILED = "FAILED"


# Writes to these tables are mirrored into sync_queue in the same transaction.
SYNCABLE_TABLES = ("categories", "menu_items", "orders", "order_items")

# Written only through their dedicated queue operations.
MANAGED_TABLES = ("config", "sync_queue", "print_jobs")

ORDER_STATUS_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.NEW: frozenset({OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

MONEY_TOLERANCE = 0.01

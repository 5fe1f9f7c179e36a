"""Order placement and status changes used by the till UI."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence
from uuid import uuid4

from offline_pos.constant import ORDER_STATUS_TRANSITIONS, OrderStatus, OrderType, PaymentStatus, PrintType
from offline_pos.models import CartLine, Order, OrderItem, PrintJob
from offline_pos.persistence import LocalStore, to_iso

logger = logging.getLogger(__name__)

# Status changes that put a physical ticket in the print queue.
_TICKET_ON_STATUS = {OrderStatus.PREPARING: PrintType.KITCHEN}
_DEFAULT_PRINTER = {PrintType.RECEIPT: "receipt", PrintType.BAR: "bar"}


def build_order(
    lines: Sequence[CartLine],
    order_type: OrderType | str,
    *,
    order_number: str,
    tax_rate: float = 0.0,
    discount: float = 0.0,
    table_number: int | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
) -> tuple[Order, list[OrderItem]]:
    """Turn cart lines into an order with computed money fields."""
    if not lines:
        raise ValueError("Cannot place an empty order")

    order_id = uuid4().hex
    items = [
        OrderItem(
            id=uuid4().hex,
            order_id=order_id,
            item_name=line.name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            menu_item_id=line.menu_item_id,
            special_instructions=line.instructions,
        )
        for line in lines
    ]
    subtotal = round(sum(item.total_price for item in items), 2)
    tax = round(subtotal * tax_rate, 2)
    if discount < 0 or discount > subtotal + tax:
        raise ValueError(f"discount must be between 0 and {subtotal + tax:.2f}")

    order = Order(
        id=order_id,
        order_number=order_number,
        order_type=OrderType(order_type),
        subtotal=subtotal,
        tax_amount=tax,
        discount_amount=round(discount, 2),
        table_number=table_number,
        customer_name=customer_name,
        customer_phone=customer_phone,
    )
    return order, items


def next_order_number(store: LocalStore) -> str:
    prefix = store.clock().astimezone().strftime("%y%m%d")
    last = store.last_order_number(f"{prefix}-")
    sequence = int(last.rsplit("-", 1)[1]) + 1 if last else 1
    return f"{prefix}-{sequence:04d}"


def place_order(
    store: LocalStore,
    lines: Sequence[CartLine],
    order_type: OrderType | str,
    *,
    order_number: str | None = None,
    discount: float = 0.0,
    table_number: int | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
) -> tuple[Order, list[OrderItem]]:
    """Finalize a cart: one transaction for the order, its lines and their sync entries."""
    tax_rate = float(store.get_config("tax_rate") or 0.0)
    order, items = build_order(
        lines,
        order_type,
        order_number=order_number or next_order_number(store),
        tax_rate=tax_rate,
        discount=discount,
        table_number=table_number,
        customer_name=customer_name,
        customer_phone=customer_phone,
    )
    return store.create_order(order, items)


def _require_order(store: LocalStore, order_id: str) -> Order:
    order = store.get("orders", order_id)
    if order is None:
        raise ValueError(f"Unknown order {order_id}")
    return order


def _ticket_job(
    store: LocalStore,
    order: Order,
    print_type: PrintType,
    printer_name: str | None = None,
) -> PrintJob:
    items = store.query("order_items", {"order_id": order.id})
    content = render_ticket(order, items, print_type, currency=store.get_config("currency") or "")
    return store.new_print_job(
        print_type,
        content,
        printer_name=printer_name or _DEFAULT_PRINTER.get(print_type),
        order_id=order.id,
    )


def _save_with_ticket(store: LocalStore, order: Order, print_type: PrintType | None) -> None:
    # The status change and its ticket commit together or not at all.
    order.updated_at = to_iso(store.clock())
    jobs = [] if print_type is None else [_ticket_job(store, order, print_type)]
    store.put("orders", order, print_jobs=jobs)


def set_order_status(store: LocalStore, order_id: str, status: OrderStatus | str) -> Order:
    order = _require_order(store, order_id)
    target = OrderStatus(status)
    if target is order.order_status:
        return order
    if target not in ORDER_STATUS_TRANSITIONS[order.order_status]:
        raise ValueError(f"Order {order.order_number} cannot go from {order.order_status.value} to {target.value}")

    order.order_status = target
    _save_with_ticket(store, order, _TICKET_ON_STATUS.get(target))
    logger.info("Order %s -> %s", order.order_number, target.value)
    return order


def set_payment_status(store: LocalStore, order_id: str, status: PaymentStatus | str) -> Order:
    order = _require_order(store, order_id)
    target = PaymentStatus(status)
    if order.payment_status is PaymentStatus.PAID and target is not PaymentStatus.PAID:
        raise ValueError(f"Order {order.order_number} is already paid")
    if target is order.payment_status:
        return order

    order.payment_status = target
    _save_with_ticket(store, order, PrintType.RECEIPT if target is PaymentStatus.PAID else None)
    logger.info("Order %s payment -> %s", order.order_number, target.value)
    return order


def render_ticket(order: Order, items: Sequence[OrderItem], print_type: PrintType, currency: str = "") -> str:
    """Plain-text ticket body; kitchen and bar tickets omit prices."""
    lines = [f"{print_type.value} #{order.order_number}", order.order_type.value.replace("_", " ")]
    if order.table_number is not None:
        lines.append(f"Table {order.table_number}")
    if order.customer_name:
        lines.append(order.customer_name)
    lines.append("")

    for item in items:
        if print_type is PrintType.RECEIPT:
            lines.append(f"{item.quantity} x {item.item_name}  {item.total_price:.2f}")
        else:
            lines.append(f"{item.quantity} x {item.item_name}")
        if item.special_instructions:
            lines.append(f"    {item.special_instructions}")

    if print_type is PrintType.RECEIPT:
        suffix = f" {currency}" if currency else ""
        lines.append("")
        lines.append(f"Subtotal {order.subtotal:.2f}{suffix}")
        lines.append(f"Tax {order.tax_amount:.2f}{suffix}")
        if order.discount_amount:
            lines.append(f"Discount -{order.discount_amount:.2f}{suffix}")
        lines.append(f"Total {order.total_amount:.2f}{suffix}")
    if order.updated_at:
        lines.append(datetime.fromisoformat(order.updated_at).astimezone().strftime("%d/%m %H:%M"))
    return "\n".join(lines).rstrip() + "\n"


def request_ticket(
    store: LocalStore,
    order_id: str,
    print_type: PrintType | str,
    printer_name: str | None = None,
) -> PrintJob:
    job = _ticket_job(store, _require_order(store, order_id), PrintType(print_type), printer_name)
    return store.enqueue_print_job(job.print_type, job.content, printer_name=job.printer_name, order_id=job.order_id)

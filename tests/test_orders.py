import pytest

from offline_pos.constant import OrderStatus, PaymentStatus, PrintType, SyncOperation
from offline_pos.models import CartLine
from offline_pos.orders import (
    build_order,
    place_order,
    render_ticket,
    request_ticket,
    set_order_status,
    set_payment_status,
)


def test_build_order_computes_money_fields(cart):
    order, items = build_order(cart, "DINE_IN", order_number="A-1", tax_rate=0.2, discount=2.0, table_number=12)
    assert [item.total_price for item in items] == [17.0, 6.75, 3.0]
    assert order.subtotal == 26.75
    assert order.tax_amount == 5.35
    assert order.total_amount == pytest.approx(30.10)
    assert all(item.order_id == order.id for item in items)
    order.validate()


def test_build_order_rejects_bad_input(cart):
    with pytest.raises(ValueError):
        build_order([], "COLLECTION", order_number="A-1")
    with pytest.raises(ValueError):
        build_order(cart, "COLLECTION", order_number="A-1", discount=500)
    with pytest.raises(ValueError):
        build_order(cart, "TAKEAWAY", order_number="A-1")


def test_place_order_uses_configured_tax_and_numbers_orders(store, cart):
    first, items = place_order(store, cart, "COLLECTION", customer_name="Sam")
    second, _ = place_order(store, [CartLine(name="Tea", quantity=1, unit_price=1.5)], "WAITING")

    assert first.tax_amount == 5.35
    assert first.order_number.endswith("-0001")
    assert second.order_number.endswith("-0002")
    assert store.get("orders", first.id).customer_name == "Sam"
    assert len(store.query("order_items", {"order_id": first.id})) == len(items) == 3


def test_kitchen_ticket_queued_when_order_starts_preparing(store, cart):
    order, _ = place_order(store, cart, "DINE_IN", table_number=12)

    updated = set_order_status(store, order.id, OrderStatus.PREPARING)

    assert updated.order_status is OrderStatus.PREPARING
    jobs = store.print_jobs()
    assert len(jobs) == 1
    assert jobs[0].print_type is PrintType.KITCHEN
    assert jobs[0].printer_name == "kitchen"
    assert jobs[0].order_id == order.id
    assert "Table 12" in jobs[0].content
    assert "3 x Garlic Naan" in jobs[0].content
    assert "no ice" in jobs[0].content
    assert "8.50" not in jobs[0].content


def test_status_change_marks_order_unsynced_and_queues_update(store, cart):
    order, _ = place_order(store, cart, "COLLECTION")
    for entry in store.sync_entries():
        store.ack_sync_entry(entry)
    assert store.get("orders", order.id).synced is True

    set_order_status(store, order.id, "READY")

    assert store.get("orders", order.id).synced is False
    entries = store.sync_entries()
    assert [(e.table_name, e.operation_type) for e in entries] == [("orders", SyncOperation.UPDATE)]
    assert entries[0].data["order_status"] == "READY"


def test_terminal_order_status_cannot_change(store, cart):
    order, _ = place_order(store, cart, "COLLECTION")
    set_order_status(store, order.id, OrderStatus.COMPLETED)
    with pytest.raises(ValueError):
        set_order_status(store, order.id, OrderStatus.NEW)
    with pytest.raises(ValueError):
        set_order_status(store, "missing", OrderStatus.READY)


def test_payment_queues_receipt_and_is_final(store, cart):
    order, _ = place_order(store, cart, "COLLECTION")

    set_payment_status(store, order.id, PaymentStatus.PAID)

    job = store.print_jobs()[0]
    assert job.print_type is PrintType.RECEIPT
    assert job.printer_name == "receipt"
    assert "Total 32.10 GBP" in job.content
    with pytest.raises(ValueError):
        set_payment_status(store, order.id, PaymentStatus.PENDING)


def test_bar_ticket_goes_to_bar_printer(store, cart):
    order, _ = place_order(store, cart, "DINE_IN")
    job = request_ticket(store, order.id, "BAR")
    assert job.printer_name == "bar"
    assert request_ticket(store, order.id, PrintType.KITCHEN, printer_name="tcp://10.0.0.9").printer_name == (
        "tcp://10.0.0.9"
    )


def test_receipt_lists_discount(cart):
    order, items = build_order(cart, "COLLECTION", order_number="A-7", tax_rate=0.0, discount=1.75)
    text = render_ticket(order, items, PrintType.RECEIPT)
    assert text.startswith("RECEIPT #A-7\nCOLLECTION\n")
    assert "2 x Chicken Tikka  17.00" in text
    assert "Discount -1.75" in text
    assert "Total 25.00" in text


def test_order_numbers_stay_unique_after_a_delete(store, cart):
    first, _ = place_order(store, cart, "COLLECTION")
    second, _ = place_order(store, cart, "COLLECTION")
    assert store.delete("orders", first.id)

    third, _ = place_order(store, cart, "COLLECTION")

    assert second.order_number.endswith("-0002")
    assert third.order_number.endswith("-0003")


def test_status_change_rolls_back_when_ticket_cannot_be_queued(store, cart, monkeypatch):
    order, _ = place_order(store, cart, "DINE_IN", table_number=12)
    entries_before = store.sync_entries()

    def jammed(*args, **kwargs):
        raise RuntimeError("print queue unavailable")

    monkeypatch.setattr(store, "_insert_print_job", jammed)
    with pytest.raises(RuntimeError):
        set_order_status(store, order.id, OrderStatus.PREPARING)
    monkeypatch.undo()

    assert store.get("orders", order.id).order_status is OrderStatus.NEW
    assert store.print_jobs() == []
    assert store.sync_entries() == entries_before

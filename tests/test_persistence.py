import sqlite3

import pytest

from offline_pos.constant import PrintStatus, PrintType, SyncOperation, SyncStatus
from offline_pos.errors import StorageError
from offline_pos.models import Category, MenuItem, Order, OrderItem
from offline_pos.orders import build_order
from offline_pos.persistence import LocalStore


def _category(name="Starters", cat_id="c1"):
    return Category(id=cat_id, name=name)


def test_schema_has_tables_and_indexes(store):
    conn = sqlite3.connect(store.path)
    try:
        names = {row[0] for row in conn.execute("SELECT name FROM sqlite_master")}
        version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    finally:
        conn.close()
    for table in ("config", "categories", "menu_items", "orders", "order_items", "sync_queue", "print_jobs"):
        assert table in names
    assert "idx_sync_queue_record" in names
    assert "idx_order_items_order_id" in names
    assert version == 1


def test_reopening_does_not_rerun_migrations(tmp_path, clock):
    path = tmp_path / "pos.db"
    LocalStore(path, clock=clock).init().close()
    with LocalStore(path, clock=clock) as again:
        assert again.get_config("currency") == "GBP"


def test_config_seeded_and_updatable(store):
    assert store.get_config("tax_rate") == "0.20"
    assert store.get_config("offline_mode") == "false"
    store.set_config("printer_name", "bar")
    assert store.get_config("printer_name") == "bar"
    assert store.get_config("missing", "fallback") == "fallback"
    assert "app_version" in store.all_config()


def test_put_enqueues_create_entry(store):
    store.put("categories", _category())
    entries = store.sync_entries()
    assert len(entries) == 1
    assert entries[0].operation_type is SyncOperation.CREATE
    assert entries[0].table_name == "categories"
    assert entries[0].record_id == "c1"
    assert entries[0].data["name"] == "Starters"


def test_unsent_update_coalesces_into_create(store):
    store.put("categories", _category())
    store.put("categories", _category(name="Small plates"))
    entries = store.sync_entries()
    assert len(entries) == 1
    assert entries[0].operation_type is SyncOperation.CREATE
    assert entries[0].data["name"] == "Small plates"


def test_update_after_attempt_gets_its_own_entry(store):
    store.put("categories", _category())
    first = store.sync_entries()[0]
    assert store.claim_sync_entry(first.id)
    store.fail_sync_entry(first.id, "boom", retry_delay=1.0)
    store.put("categories", _category(name="Small plates"))
    entries = store.sync_entries()
    assert [e.operation_type for e in entries] == [SyncOperation.CREATE, SyncOperation.UPDATE]
    assert entries[0].data["name"] == "Starters"


def test_delete_replaces_pending_entry(store):
    store.put("categories", _category())
    assert store.delete("categories", "c1") is True
    entries = store.sync_entries()
    assert len(entries) == 1
    assert entries[0].operation_type is SyncOperation.DELETE
    assert store.delete("categories", "c1") is False


def test_failed_enqueue_rolls_back_business_write(store, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("power cut")

    monkeypatch.setattr(store, "_enqueue_sync", explode)
    with pytest.raises(RuntimeError):
        store.put("categories", _category())
    monkeypatch.undo()

    assert store.get("categories", "c1") is None
    assert store.sync_entries() == []
    assert not store.halted


def test_order_and_items_written_all_or_nothing(store, cart, monkeypatch):
    order, items = build_order(cart, "COLLECTION", order_number="A-1")
    calls = []
    original = store._enqueue_sync

    def fail_on_third(*args, **kwargs):
        calls.append(args)
        if len(calls) == 3:
            raise RuntimeError("crash mid-order")
        return original(*args, **kwargs)

    monkeypatch.setattr(store, "_enqueue_sync", fail_on_third)
    with pytest.raises(RuntimeError):
        store.create_order(order, items)
    monkeypatch.undo()

    assert store.get("orders", order.id) is None
    assert store.query("order_items") == []
    assert store.sync_entries() == []


def test_storage_failure_halts_writes_until_cleared(store, monkeypatch):
    def disk_error(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "_enqueue_sync", disk_error)
    with pytest.raises(StorageError):
        store.put("categories", _category())
    monkeypatch.undo()

    assert store.halted
    with pytest.raises(StorageError):
        store.put("categories", _category())

    store.clear_fault()
    store.put("categories", _category())
    assert store.get("categories", "c1").name == "Starters"


def test_menu_item_needs_existing_category(store):
    with pytest.raises(ValueError):
        store.put("menu_items", MenuItem(id="m1", category_id="nope", name="Soup", price=4.5))
    assert store.sync_entries() == []

    store.put("categories", _category())
    item = store.put("menu_items", MenuItem(id="m1", category_id="c1", name="Soup", price=4.5, allergens=["celery"]))
    assert store.get("menu_items", "m1").allergens == ["celery"]
    assert item.updated_at


def test_deleting_order_cascades_to_items(store, cart):
    order, _ = store.create_order(*build_order(cart, "DINE_IN", order_number="A-1", table_number=4))
    assert len(store.query("order_items", {"order_id": order.id})) == 3

    assert store.delete("orders", order.id)
    assert store.query("order_items", {"order_id": order.id}) == []
    deletes = [e for e in store.sync_entries() if e.operation_type is SyncOperation.DELETE]
    assert [(e.table_name, e.record_id) for e in deletes] == [("orders", order.id)]


def test_updating_order_keeps_its_items(store, cart):
    order, _ = store.create_order(*build_order(cart, "DINE_IN", order_number="A-1"))
    order.customer_name = "Priya"
    store.put("orders", order)
    assert store.get("orders", order.id).customer_name == "Priya"
    assert len(store.query("order_items", {"order_id": order.id})) == 3


def test_order_money_invariants(store):
    with pytest.raises(ValueError):
        store.put("orders", Order(id="o1", order_number="A-1", order_type="DINE_IN", subtotal=10, total_amount=99))
    with pytest.raises(ValueError):
        store.put("orders", Order(id="o1", order_number="A-1", order_type="DINE_IN", subtotal=-1))
    with pytest.raises(ValueError):
        OrderItem(id="i1", order_id="o1", item_name="Tea", quantity=0, unit_price=1.0).validate()


def test_query_filters(store):
    store.put("categories", Category(id="c1", name="Starters", sort_order=2))
    store.put("categories", Category(id="c2", name="Mains", sort_order=1, active=False))
    assert [c.id for c in store.query("categories", {"active": True})] == ["c1"]
    assert [c.id for c in store.query("categories", order_by="sort_order")] == ["c2", "c1"]
    assert [c.id for c in store.query("categories", lambda c: c.name.startswith("M"))] == ["c2"]
    with pytest.raises(ValueError):
        store.query("categories", {"colour": "red"})
    with pytest.raises(ValueError):
        store.query("categories", order_by="name; DROP TABLE orders")


def test_queue_tables_not_writable_through_put(store):
    with pytest.raises(ValueError):
        store.put("print_jobs", {"id": "p1"})
    with pytest.raises(ValueError):
        store.delete("sync_queue", 1)


def test_init_returns_interrupted_rows_to_pending(tmp_path, clock):
    path = tmp_path / "pos.db"
    store = LocalStore(path, clock=clock).init()
    store.put("categories", _category())
    entry = store.sync_entries()[0]
    job = store.enqueue_print_job(PrintType.KITCHEN, "2 x Soup\n")
    assert store.claim_sync_entry(entry.id)
    assert store.claim_print_job(job.id)
    store.close()

    reopened = LocalStore(path, clock=clock).init()
    try:
        assert reopened.sync_entries()[0].status is SyncStatus.PENDING
        assert reopened.print_jobs()[0].status is PrintStatus.PENDING
    finally:
        reopened.close()


def test_entry_interrupted_mid_send_is_not_merged_into(tmp_path, clock):
    path = tmp_path / "pos.db"
    store = LocalStore(path, clock=clock).init()
    store.put("categories", _category())
    entry = store.sync_entries()[0]
    assert store.claim_sync_entry(entry.id)
    store.close()

    reopened = LocalStore(path, clock=clock).init()
    try:
        reopened.put("categories", _category(name="Small plates"))
        entries = reopened.sync_entries()
        assert [(e.id, e.operation_type) for e in entries] == [
            (entry.id, SyncOperation.CREATE),
            (entry.id + 1, SyncOperation.UPDATE),
        ]
        assert entries[0].data["name"] == "Starters"
        assert entries[0].attempts == 0
        assert entries[1].data["name"] == "Small plates"
    finally:
        reopened.close()


def test_delete_entry_carries_parent_id(store, cart):
    order, items = build_order(cart, "COLLECTION", order_number="A-1")
    store.create_order(order, items)
    assert store.delete("order_items", items[0].id)
    entry = [e for e in store.sync_entries() if e.record_id == items[0].id][0]
    assert entry.operation_type is SyncOperation.DELETE
    assert entry.data["order_id"] == order.id


def test_print_job_defaults_to_configured_printer(store):
    job = store.enqueue_print_job("KITCHEN", "ticket")
    assert job.printer_name == "kitchen"
    assert store.enqueue_print_job("BAR", "ticket", printer_name="bar").printer_name == "bar"


def test_cleanup_removes_old_printed_jobs(store, clock):
    old = store.enqueue_print_job(PrintType.RECEIPT, "old")
    store.mark_printed(old.id)
    clock.advance(4 * 24 * 3600)
    fresh = store.enqueue_print_job(PrintType.RECEIPT, "fresh")
    store.mark_printed(fresh.id)

    assert store.cleanup_printed(3) == 1
    assert [job.id for job in store.print_jobs()] == [fresh.id]


def test_queue_status_counts(store, cart):
    store.create_order(*build_order(cart, "COLLECTION", order_number="A-1"))
    job = store.enqueue_print_job(PrintType.RECEIPT, "r")
    store.fail_print_job(job.id, "paper out", terminal=True)

    status = store.queue_status()
    assert status.unsynced_orders == 1
    assert status.sync_pending == 4
    assert status.print_failed == 1
    assert status.oldest_pending_sync is not None

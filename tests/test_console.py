import asyncio
import sqlite3

import pytest

from conftest import FakePrinter, ScriptedTransport
from offline_pos.console import OperatorConsole
from offline_pos.constant import OrderType, PrintStatus, PrintType, SyncStatus
from offline_pos.crash_recovery import CrashRecoveryManager, RecoveryOffer
from offline_pos.errors import StorageError
from offline_pos.models import CartLine, Category, CrashState, QueueStatus
from offline_pos.persistence import LocalStore
from offline_pos.printer import PrintJobProcessor
from offline_pos.recovery_modal import RecoveryModal, summarize_offer
from offline_pos.rendering import describe_queue_status, format_queue_banner
from offline_pos.runtime import PosRuntime
from offline_pos.sync import SyncQueueProcessor


@pytest.fixture
def runtime(tmp_path, clock):
    store = LocalStore(tmp_path / "pos.db", clock=clock)
    return PosRuntime(
        store=store,
        sync=SyncQueueProcessor(store, ScriptedTransport()),
        printer=PrintJobProcessor(store, FakePrinter()),
        crash=CrashRecoveryManager(tmp_path / "crash.json", clock=clock),
    )


def _session():
    return CrashState(
        table_number=12,
        order_type=OrderType.DINE_IN,
        cart_items=[CartLine(name="Dal", quantity=1, unit_price=6.0), CartLine(name="Roti", quantity=2, unit_price=1.2)],
    )


def test_queue_messages_most_urgent_first():
    status = QueueStatus(unsynced_orders=2, sync_failed=1, print_pending=1, print_failed=3)
    assert describe_queue_status(status) == [
        "3 print jobs failed, check printer",
        "1 sync entry rejected, needs review",
        "2 orders awaiting sync",
        "1 ticket waiting to print",
    ]
    assert format_queue_banner(QueueStatus()).plain == " OK  All queues clear"


def test_summary_describes_recovered_cart():
    state = _session()
    state.timestamp = 1_792_238_400_000
    text = summarize_offer(RecoveryOffer(has_snapshot=True, state=state, stale=True)).plain
    assert "DINE IN" in text
    assert "Table 12" in text
    assert "3 items in cart, 8.40" in text
    assert "discarding is recommended" in text


def test_runtime_shutdown_clears_snapshot_only_when_clean(runtime):
    runtime.crash.save_snapshot(_session())
    offer = runtime.start(background=False)
    assert offer.has_snapshot
    runtime.shutdown(clean=False)
    assert runtime.crash.path.exists()

    runtime.start(background=False)
    runtime.shutdown(clean=True)
    assert not runtime.crash.path.exists()


def test_runtime_start_recovers_and_prunes(runtime, clock):
    runtime.store.init()
    job = runtime.store.enqueue_print_job(PrintType.RECEIPT, "old receipt")
    runtime.store.mark_printed(job.id)
    runtime.store.close()
    clock.advance(5 * 24 * 3600)

    offer = runtime.start(background=False)
    try:
        assert not offer.has_snapshot
        assert runtime.store.print_jobs() == []
    finally:
        runtime.shutdown()


def test_console_restores_session(runtime):
    runtime.crash.save_snapshot(_session())
    runtime.start(background=False)

    async def scenario():
        app = OperatorConsole(runtime)
        async with app.run_test() as pilot:
            await pilot.pause()
            assert isinstance(app.screen, RecoveryModal)
            await pilot.press("r")
            await pilot.pause()
            assert not isinstance(app.screen, RecoveryModal)
        return app

    try:
        app = asyncio.run(scenario())
        assert app.restored_state is not None
        assert app.restored_state.table_number == 12
        assert len(app.restored_state.cart_items) == 2
        assert not runtime.crash.path.exists()
    finally:
        runtime.shutdown()


def test_console_discards_session(runtime):
    runtime.crash.save_snapshot(_session())
    runtime.start(background=False)

    async def scenario():
        app = OperatorConsole(runtime)
        async with app.run_test() as pilot:
            await pilot.pause()
            await pilot.press("d")
            await pilot.pause()
            assert app.system_status == "Previous session discarded"
        return app

    try:
        app = asyncio.run(scenario())
        assert app.restored_state is None
        assert not runtime.crash.path.exists()
    finally:
        runtime.shutdown()


def test_console_requeues_failed_prints(runtime):
    runtime.start(background=False)
    job = runtime.store.enqueue_print_job(PrintType.KITCHEN, "ticket")
    runtime.store.fail_print_job(job.id, "paper out", terminal=True)

    async def scenario():
        app = OperatorConsole(runtime)
        async with app.run_test() as pilot:
            await pilot.pause()
            await pilot.press("p")
            await pilot.pause()
            assert app.system_status == "Re-queued 1 print job"

    try:
        asyncio.run(scenario())
        assert runtime.store.print_jobs()[0].status is PrintStatus.PENDING
    finally:
        runtime.shutdown()


def test_console_shows_storage_fault(runtime, monkeypatch):
    runtime.start(background=False)
    job = runtime.store.enqueue_print_job(PrintType.KITCHEN, "ticket")
    runtime.store.fail_print_job(job.id, "paper out", terminal=True)

    def disk_error(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(runtime.store, "_enqueue_sync", disk_error)
    with pytest.raises(StorageError):
        runtime.store.put("categories", Category(id="c1", name="Starters"))
    monkeypatch.undo()

    async def scenario():
        app = OperatorConsole(runtime)
        async with app.run_test() as pilot:
            await pilot.pause()
            assert "writes halted: disk I/O error" in app.banner_text.plain
            await pilot.press("p")
            await pilot.pause()
            assert app.system_status.startswith("Could not re-queue prints")

    try:
        asyncio.run(scenario())
    finally:
        runtime.shutdown()


def test_console_requeues_and_discards_rejected_sync(runtime):
    runtime.start(background=False)
    runtime.store.put("categories", Category(id="c1", name="Starters"))
    runtime.store.put("categories", Category(id="c2", name="Mains"))
    first, second = runtime.store.sync_entries()
    runtime.store.fail_sync_entry(first.id, "HTTP 422 rejected", retry_delay=None)

    async def scenario():
        app = OperatorConsole(runtime)
        async with app.run_test() as pilot:
            await pilot.pause()
            assert "1 sync entry rejected" in app.banner_text.plain
            await pilot.press("y")
            await pilot.pause()
            assert app.system_status == "Re-queued 1 rejected sync entry"

            runtime.store.fail_sync_entry(second.id, "HTTP 400 rejected", retry_delay=None)
            await pilot.press("x")
            await pilot.pause()
            assert app.system_status == "Discarded 1 rejected sync entry"

    try:
        asyncio.run(scenario())
        assert [(e.record_id, e.status) for e in runtime.store.sync_entries()] == [("c1", SyncStatus.PENDING)]
    finally:
        runtime.shutdown()

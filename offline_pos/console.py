"""Operator console: queue banners, failed tickets and crash recovery."""

from __future__ import annotations

import logging

from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Vertical
from textual.css.query import NoMatches
from textual.widgets import Header, Static

from offline_pos.constant import PrintStatus, SyncStatus
from offline_pos.errors import StorageError
from offline_pos.models import CrashState
from offline_pos.printer import check_printer_dependencies
from offline_pos.recovery_modal import RecoveryModal
from offline_pos.rendering import format_print_job, format_queue_banner, format_storage_fault
from offline_pos.runtime import PosRuntime

logger = logging.getLogger(__name__)


class OperatorConsole(App):
    """A Textual app surfacing sync backlog and printer failures to staff."""

    TITLE = "Offline POS"
    SUB_TITLE = "Sync / Print queues"

    CSS = """
    #banner {
        height: auto;
        min-height: 3;
        padding: 0 2;
        border: tall $warning;
    }

    #status-line {
        height: 1;
        padding: 0 2;
        color: $text-muted;
    }

    #failed-pane {
        height: 1fr;
        padding: 0 1;
        border: round $error;
    }

    .pane-title {
        color: $error;
        text-style: bold underline;
    }
    """

    BINDINGS = [
        ("s", "sync_now", "Sync now"),
        ("p", "retry_prints", "Retry failed prints"),
        ("y", "retry_sync", "Retry rejected sync"),
        ("x", "discard_sync", "Discard rejected sync"),
        ("ctrl+q", "quit", "Quit"),
    ]

    def __init__(self, runtime: PosRuntime, refresh_seconds: float = 2.0) -> None:
        super().__init__()
        self.runtime = runtime
        self.refresh_seconds = refresh_seconds
        self.restored_state: CrashState | None = None
        self.system_status = ""
        self.banner_text = Text()

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static(id="banner")
        yield Static(id="status-line")
        with Vertical(id="failed-pane"):
            yield Static("Failed print jobs", classes="pane-title")
            yield Static("(none)", id="failed-jobs")

    def on_mount(self) -> None:
        self.runtime.printer.subscribe(self._on_terminal_failure)
        self.runtime.sync.subscribe(self._on_terminal_failure)
        _, msg = check_printer_dependencies()
        self.system_status = msg
        self._refresh_all()
        self.set_interval(self.refresh_seconds, self._refresh_all)

        offer = self.runtime.recovery_offer
        if offer.has_snapshot:
            self.push_screen(RecoveryModal(offer), self._on_recovery_decision)

    def _on_recovery_decision(self, restore: bool | None) -> None:
        offer = self.runtime.recovery_offer
        if restore and offer.state is not None:
            self.restored_state = offer.state
            self.system_status = f"Restored session with {len(offer.state.cart_items)} cart lines"
        else:
            self.system_status = "Previous session discarded"
        logger.info("Crash recovery decision: %s", "restore" if restore else "discard")
        self.runtime.crash.clear_snapshot()
        self._refresh_all()

    def _on_terminal_failure(self, record: object, error: Exception) -> None:
        # Processor threads must hop onto the app thread.
        try:
            self.call_from_thread(self.notify, str(error), severity="error", timeout=10)
        except RuntimeError:
            self.notify(str(error), severity="error", timeout=10)

    def action_sync_now(self) -> None:
        self.runtime.sync.wake()
        self.system_status = "Sync requested"
        self._refresh_all()

    def action_retry_prints(self) -> None:
        store = self.runtime.store
        try:
            jobs = store.print_jobs(PrintStatus.FAILED)
            for job in jobs:
                store.retry_print_job(job.id)
        except StorageError as exc:
            self.system_status = f"Could not re-queue prints: {exc}"
        else:
            self.runtime.printer.wake()
            self.system_status = f"Re-queued {len(jobs)} print job{'s' if len(jobs) != 1 else ''}"
        self._refresh_all()

    def action_retry_sync(self) -> None:
        store = self.runtime.store
        try:
            entries = [entry for entry in store.sync_entries(SyncStatus.FAILED) if store.requeue_sync_entry(entry.id)]
        except StorageError as exc:
            self.system_status = f"Could not re-queue sync entries: {exc}"
        else:
            self.runtime.sync.wake()
            self.system_status = f"Re-queued {len(entries)} rejected sync {'entry' if len(entries) == 1 else 'entries'}"
        self._refresh_all()

    def action_discard_sync(self) -> None:
        store = self.runtime.store
        try:
            entries = [entry for entry in store.sync_entries(SyncStatus.FAILED) if store.discard_sync_entry(entry.id)]
        except StorageError as exc:
            self.system_status = f"Could not discard sync entries: {exc}"
        else:
            for entry in entries:
                logger.warning(
                    "Operator discarded sync entry %d (%s %s %s): %s",
                    entry.id,
                    entry.operation_type.value,
                    entry.table_name,
                    entry.record_id,
                    entry.error_message,
                )
            self.runtime.sync.wake()
            self.system_status = f"Discarded {len(entries)} rejected sync {'entry' if len(entries) == 1 else 'entries'}"
        self._refresh_all()

    def _refresh_all(self) -> None:
        try:
            banner = self.query_one("#banner", Static)
            status_line = self.query_one("#status-line", Static)
            failed_widget = self.query_one("#failed-jobs", Static)
        except NoMatches:
            return

        status_line.update(self.system_status or "Ready")
        store = self.runtime.store
        if store.halted:
            self.banner_text = format_storage_fault(store.fault)
            banner.update(self.banner_text)
            return
        try:
            status = store.queue_status()
            failed = store.print_jobs(PrintStatus.FAILED)
        except StorageError as exc:
            self.banner_text = format_storage_fault(exc)
            banner.update(self.banner_text)
            return

        self.banner_text = format_queue_banner(status)
        banner.update(self.banner_text)
        if not failed:
            failed_widget.update("(none)")
            return
        lines = Text()
        for idx, job in enumerate(failed):
            if idx > 0:
                lines.append("\n")
            lines.append_text(format_print_job(job))
        failed_widget.update(lines)

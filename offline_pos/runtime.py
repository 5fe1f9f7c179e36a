"""Wires the store, both queue processors and crash recovery into one process."""

from __future__ import annotations

import logging

from offline_pos.config import (
    CRASH_STATE_PATH,
    DB_PATH,
    PRINTED_JOB_RETENTION_DAYS,
    REMOTE_TIMEOUT_SECONDS,
    SYNC_ENDPOINT_URL,
)
from offline_pos.crash_recovery import CrashRecoveryManager, RecoveryOffer
from offline_pos.persistence import LocalStore
from offline_pos.printer import EscposDispatcher, PrintJobProcessor
from offline_pos.sync import HttpSyncTransport, SyncQueueProcessor

logger = logging.getLogger(__name__)


class PosRuntime:
    """Explicit lifecycle for everything the till process runs in the background."""

    def __init__(
        self,
        store: LocalStore,
        sync: SyncQueueProcessor,
        printer: PrintJobProcessor,
        crash: CrashRecoveryManager,
    ) -> None:
        self.store = store
        self.sync = sync
        self.printer = printer
        self.crash = crash
        self.recovery_offer = RecoveryOffer(has_snapshot=False)

    @classmethod
    def from_config(cls) -> PosRuntime:
        store = LocalStore(DB_PATH)
        transport = HttpSyncTransport(SYNC_ENDPOINT_URL, timeout=REMOTE_TIMEOUT_SECONDS)
        return cls(
            store=store,
            sync=SyncQueueProcessor(store, transport),
            printer=PrintJobProcessor(store, EscposDispatcher()),
            crash=CrashRecoveryManager(CRASH_STATE_PATH),
        )

    def start(self, background: bool = True) -> RecoveryOffer:
        """Open the store, read the crash snapshot once and start both loops."""
        self.store.init()
        self.recovery_offer = self.crash.read_snapshot_on_startup()
        self.store.cleanup_printed(PRINTED_JOB_RETENTION_DAYS)
        if background:
            self.sync.start()
            self.printer.start()
        logger.info("Runtime started (recovery snapshot: %s)", self.recovery_offer.has_snapshot)
        return self.recovery_offer

    def shutdown(self, clean: bool = True) -> None:
        """Stop the loops and close the store; a clean exit also drops the snapshot."""
        self.printer.stop(timeout=5)
        self.sync.stop(timeout=5)
        close = getattr(self.sync.transport, "close", None)
        if close is not None:
            close()
        if clean:
            self.crash.clear_snapshot()
        self.store.close()
        logger.info("Runtime stopped (clean=%s)", clean)

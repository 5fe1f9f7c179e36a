"""Drains sync_queue into the remote restaurant backend."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx

from offline_pos.config import (
    REMOTE_TIMEOUT_SECONDS,
    SYNC_BACKOFF_BASE_SECONDS,
    SYNC_BACKOFF_CAP_SECONDS,
    SYNC_ENDPOINT_URL,
    SYNC_MAX_ATTEMPTS,
    SYNC_POLL_INTERVAL_SECONDS,
    SYNC_WORKERS,
)
from offline_pos.errors import SyncError, SyncTerminalError, SyncTransientError
from offline_pos.models import SyncQueueEntry
from offline_pos.persistence import LocalStore, to_iso
from offline_pos.scheduler import ScheduledTask

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})

# child table -> (column holding the parent id, parent table)
_PARENT_OF = {
    "order_items": ("order_id", "orders"),
    "menu_items": ("category_id", "categories"),
}


def backoff_delay(
    attempts: int,
    base: float = SYNC_BACKOFF_BASE_SECONDS,
    cap: float = SYNC_BACKOFF_CAP_SECONDS,
) -> float:
    """Exponential delay after the given number of failed attempts."""
    if attempts <= 0:
        return 0.0
    return min(cap, base * (2 ** (attempts - 1)))


class SyncTransport(Protocol):
    def send(self, entry: SyncQueueEntry) -> None:
        """Deliver one entry; raise SyncTransientError or SyncTerminalError on failure."""


class HttpSyncTransport:
    """Posts queue entries to the backend sync API."""

    def __init__(
        self,
        base_url: str = SYNC_ENDPOINT_URL,
        timeout: float = REMOTE_TIMEOUT_SECONDS,
        api_key: str | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    def url_for(self, entry: SyncQueueEntry) -> str:
        return f"{self.base_url}/sync/{entry.table_name}/{entry.operation_type.value.lower()}"

    def send(self, entry: SyncQueueEntry) -> None:
        body: dict[str, Any] = {
            "table_name": entry.table_name,
            "operation_type": entry.operation_type.value,
            "record_id": entry.record_id,
            "data": entry.data,
            "idempotency_key": entry.idempotency_key,
            "version": entry.created_at,
        }
        try:
            resp = self._client.post(self.url_for(entry), json=body, headers=self._headers, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            raise SyncTransientError(f"timed out after {self.timeout:.0f}s") from exc
        except httpx.TransportError as exc:
            raise SyncTransientError(f"network error: {exc}") from exc

        status = resp.status_code
        # 409: the backend already applied this idempotency key.
        if 200 <= status < 300 or status == 409:
            return
        if status >= 500 or status in _TRANSIENT_STATUS_CODES:
            raise SyncTransientError(f"HTTP {status} from backend")
        raise SyncTerminalError(f"HTTP {status} rejected: {resp.text[:200]}")

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


@dataclass
class SyncRunResult:
    """Outcome of one drain cycle, by sync_queue id."""

    acknowledged: list[int] = field(default_factory=list)
    retried: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    skipped: bool = False


class SyncQueueProcessor(ScheduledTask):
    """Delivers sync_queue entries with per-record ordering and persisted backoff.

    Entries are grouped by (table_name, record_id). Groups run concurrently on
    a small pool; inside a group entries are sent one at a time in creation
    order and the first failure holds back everything behind it.
    """

    name = "sync"

    def __init__(
        self,
        store: LocalStore,
        transport: SyncTransport,
        *,
        max_attempts: int = SYNC_MAX_ATTEMPTS,
        backoff_base: float = SYNC_BACKOFF_BASE_SECONDS,
        backoff_cap: float = SYNC_BACKOFF_CAP_SECONDS,
        poll_interval: float = SYNC_POLL_INTERVAL_SECONDS,
        workers: int = SYNC_WORKERS,
    ) -> None:
        super().__init__(poll_interval=poll_interval, workers=workers)
        self.store = store
        self.transport = transport
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._run_lock = threading.Lock()

    def _is_due(self, entry: SyncQueueEntry, now_iso: str) -> bool:
        return entry.next_attempt_at is None or entry.next_attempt_at <= now_iso

    @staticmethod
    def parent_key(entry: SyncQueueEntry) -> tuple[str, str] | None:
        """The record an entry depends on: an item's order, a menu item's category."""
        column, table = _PARENT_OF.get(entry.table_name, (None, None))
        if column is None or entry.data.get(column) is None:
            return None
        return table, str(entry.data[column])

    def ready_groups(self) -> list[list[SyncQueueEntry]]:
        """Pending entries grouped per record, FIFO by each group's head.

        A group waits while an older entry for the same record is failed or
        in flight, while its head is backing off, or while the parent record
        still has an older entry queued.
        """
        groups: dict[tuple[str, str], list[SyncQueueEntry]] = {}
        for entry in self.store.pending_sync_entries():
            groups.setdefault((entry.table_name, entry.record_id), []).append(entry)
        heads = self.store.sync_heads()
        now_iso = to_iso(self.store.clock())
        ready = []
        for key, entries in groups.items():
            head = entries[0]
            if heads.get(key, head.id) < head.id or not self._is_due(head, now_iso):
                continue
            parent = self.parent_key(head)
            if parent is not None and heads.get(parent, head.id) < head.id:
                continue
            ready.append(entries)
        return ready

    def run_once(self) -> SyncRunResult:
        if not self._run_lock.acquire(blocking=False):
            return SyncRunResult(skipped=True)
        try:
            if (self.store.get_config("offline_mode") or "").lower() == "true":
                logger.info("Offline mode enabled, skipping sync cycle")
                return SyncRunResult(skipped=True)

            result = SyncRunResult()
            attempted: set[tuple[str, str]] = set()
            # Children become ready once their parent is acknowledged, so keep
            # draining until a pass finds nothing new.
            while True:
                groups = [
                    group
                    for group in self.ready_groups()
                    if (group[0].table_name, group[0].record_id) not in attempted
                ]
                if not groups:
                    return result
                attempted.update((group[0].table_name, group[0].record_id) for group in groups)
                logger.info("Sync pass: %d record groups ready", len(groups))
                futures = [self._pool().submit(self._drain_group, group) for group in groups]
                for future in futures:
                    for entry_id, outcome in future.result():
                        if outcome == "acknowledged":
                            result.acknowledged.append(entry_id)
                        elif outcome == "retried":
                            result.retried.append(entry_id)
                        elif outcome == "failed":
                            result.failed.append(entry_id)
        finally:
            self._run_lock.release()

    def next_delay(self) -> float:
        """Wake early when a backed-off entry becomes due before the next poll."""
        now = self.store.clock()
        delay = self.poll_interval
        for entry in self.store.pending_sync_entries():
            if entry.next_attempt_at is None:
                continue
            due_in = (datetime.fromisoformat(entry.next_attempt_at) - now).total_seconds()
            delay = min(delay, max(0.0, due_in))
        return delay

    def _drain_group(self, entries: list[SyncQueueEntry]) -> list[tuple[int, str]]:
        outcomes: list[tuple[int, str]] = []
        now_iso = to_iso(self.store.clock())
        for entry in entries:
            if not self._is_due(entry, now_iso):
                break
            outcome = self._process(entry)
            outcomes.append((entry.id, outcome))
            if outcome != "acknowledged":
                break
        return outcomes

    def _process(self, entry: SyncQueueEntry) -> str:
        if not self.store.claim_sync_entry(entry.id):
            return "skipped"
        try:
            self.transport.send(entry)
        except SyncTerminalError as exc:
            return self._record_failure(entry, exc, terminal=True)
        except SyncTransientError as exc:
            return self._record_failure(entry, exc, terminal=False)
        except Exception as exc:
            logger.exception("Unexpected error sending sync entry %d", entry.id)
            return self._record_failure(entry, SyncTransientError(str(exc)), terminal=False)

        self.store.ack_sync_entry(entry)
        logger.info(
            "Synced %s %s %s (entry %d)",
            entry.operation_type.value,
            entry.table_name,
            entry.record_id,
            entry.id,
        )
        return "acknowledged"

    def _record_failure(self, entry: SyncQueueEntry, error: SyncError, terminal: bool) -> str:
        attempts = entry.attempts + 1
        if terminal or attempts >= self.max_attempts:
            updated = self.store.fail_sync_entry(entry.id, str(error), retry_delay=None)
            if not isinstance(error, SyncTerminalError):
                error = SyncTerminalError(f"gave up after {attempts} attempts: {error}")
            logger.error(
                "Sync entry %d (%s %s %s) failed terminally: %s",
                entry.id,
                entry.operation_type.value,
                entry.table_name,
                entry.record_id,
                error,
            )
            self._notify(updated or entry, error)
            return "failed"

        delay = backoff_delay(attempts, self.backoff_base, self.backoff_cap)
        self.store.fail_sync_entry(entry.id, str(error), retry_delay=delay)
        logger.warning(
            "Sync entry %d attempt %d/%d failed, retrying in %.1fs: %s",
            entry.id,
            attempts,
            self.max_attempts,
            delay,
            error,
        )
        return "retried"

"""SQLite persistence for orders, the menu cache and the outbound queues."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Mapping
from uuid import uuid4

from offline_pos.config import CONFIG_DEFAULTS, DB_PATH
from offline_pos.constant import (
    MANAGED_TABLES,
    SYNCABLE_TABLES,
    PrintStatus,
    PrintType,
    SyncOperation,
    SyncStatus,
)
from offline_pos.errors import StorageError
from offline_pos.models import MODEL_BY_TABLE, Order, OrderItem, PrintJob, QueueStatus, SyncQueueEntry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Predicate = Mapping[str, Any] | Callable[[Any], bool]

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    sort_order INTEGER NOT NULL DEFAULT 0,
    active INTEGER NOT NULL DEFAULT 1,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS menu_items (
    id TEXT PRIMARY KEY,
    category_id TEXT NOT NULL,
    name TEXT NOT NULL,
    price REAL NOT NULL CHECK (price >= 0),
    description TEXT NOT NULL DEFAULT '',
    allergens TEXT NOT NULL DEFAULT '[]',
    available INTEGER NOT NULL DEFAULT 1,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(category_id) REFERENCES categories(id)
);

CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    order_number TEXT NOT NULL UNIQUE,
    order_type TEXT NOT NULL CHECK (order_type IN ('DINE_IN', 'COLLECTION', 'DELIVERY', 'WAITING')),
    table_number INTEGER,
    customer_name TEXT,
    customer_phone TEXT,
    subtotal REAL NOT NULL CHECK (subtotal >= 0),
    tax_amount REAL NOT NULL DEFAULT 0 CHECK (tax_amount >= 0),
    discount_amount REAL NOT NULL DEFAULT 0 CHECK (discount_amount >= 0),
    total_amount REAL NOT NULL CHECK (total_amount >= 0),
    payment_status TEXT NOT NULL DEFAULT 'PENDING' CHECK (payment_status IN ('PENDING', 'PAID', 'FAILED')),
    order_status TEXT NOT NULL DEFAULT 'NEW'
        CHECK (order_status IN ('NEW', 'PREPARING', 'READY', 'COMPLETED', 'CANCELLED')),
    synced INTEGER NOT NULL DEFAULT 0,
    sync_error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS order_items (
    id TEXT PRIMARY KEY,
    order_id TEXT NOT NULL,
    menu_item_id TEXT,
    item_name TEXT NOT NULL,
    quantity INTEGER NOT NULL CHECK (quantity > 0),
    unit_price REAL NOT NULL CHECK (unit_price >= 0),
    total_price REAL NOT NULL,
    special_instructions TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY(order_id) REFERENCES orders(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS sync_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    operation_type TEXT NOT NULL CHECK (operation_type IN ('CREATE', 'UPDATE', 'DELETE')),
    table_name TEXT NOT NULL,
    record_id TEXT NOT NULL,
    data TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING' CHECK (status IN ('PENDING', 'IN_FLIGHT', 'FAILED')),
    attempts INTEGER NOT NULL DEFAULT 0,
    last_attempt TEXT,
    next_attempt_at TEXT,
    error_message TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS print_jobs (
    id TEXT PRIMARY KEY,
    order_id TEXT,
    print_type TEXT NOT NULL CHECK (print_type IN ('RECEIPT', 'KITCHEN', 'BAR')),
    printer_name TEXT NOT NULL,
    content TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING' CHECK (status IN ('PENDING', 'PRINTING', 'PRINTED', 'FAILED')),
    attempts INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    created_at TEXT NOT NULL,
    printed_at TEXT,
    FOREIGN KEY(order_id) REFERENCES orders(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_orders_order_status ON orders(order_status);
CREATE INDEX IF NOT EXISTS idx_orders_order_type ON orders(order_type);
CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders(created_at);
CREATE INDEX IF NOT EXISTS idx_order_items_order_id ON order_items(order_id);
CREATE INDEX IF NOT EXISTS idx_sync_queue_table_name ON sync_queue(table_name);
CREATE INDEX IF NOT EXISTS idx_sync_queue_record ON sync_queue(table_name, record_id);
CREATE INDEX IF NOT EXISTS idx_print_jobs_status ON print_jobs(status);
"""

# Applied in order; each entry is (version, script).
_MIGRATIONS: tuple[tuple[int, str], ...] = ((1, _SCHEMA_V1),)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _sql_value(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


def _coalesce(existing: SyncOperation, incoming: SyncOperation) -> SyncOperation:
    if incoming is SyncOperation.DELETE:
        return SyncOperation.DELETE
    if existing is SyncOperation.CREATE:
        return SyncOperation.CREATE
    if existing is SyncOperation.DELETE:
        return SyncOperation.UPDATE
    return incoming


class LocalStore:
    """Transactional store shared by the UI layer and both queue processors.

    Every write to a syncable table appends (or coalesces into) a sync_queue
    row inside the same transaction, so a business row never exists without
    its outbound mutation and vice versa.

    After any storage-engine failure the store refuses further writes until
    clear_fault() is called.
    """

    def __init__(self, path: str | Path = DB_PATH, clock: Clock | None = None) -> None:
        self.path = str(path)
        self.clock: Clock = clock or utc_now
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._fault: BaseException | None = None

    # -- lifecycle -------------------------------------------------------

    def init(self) -> LocalStore:
        """Open the database, migrate it and recover rows left mid-flight."""
        with self._lock:
            if self._conn is not None:
                return self
            try:
                if self.path != ":memory:":
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA busy_timeout = 5000")
                conn.execute("PRAGMA synchronous = NORMAL")
                self._migrate(conn)
            except sqlite3.Error as exc:
                logger.error("Failed to open local store at %s: %s", self.path, exc)
                raise StorageError(f"cannot open local store: {exc}") from exc
            self._conn = conn
            logger.info("Local store ready at %s", self.path)

        with self._transaction() as conn:
            now = self._now_iso()
            for key, value in CONFIG_DEFAULTS.items():
                conn.execute(
                    "INSERT OR IGNORE INTO config (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, value, now),
                )
            synced = conn.execute(
                "UPDATE sync_queue SET status = 'PENDING' WHERE status = 'IN_FLIGHT'"
            ).rowcount
            printing = conn.execute(
                "UPDATE print_jobs SET status = 'PENDING' WHERE status = 'PRINTING'"
            ).rowcount
        if synced or printing:
            logger.warning(
                "Recovered %d in-flight sync entries and %d printing jobs from previous run", synced, printing
            )
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
            logger.info("Local store closed")

    def __enter__(self) -> LocalStore:
        return self.init()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def halted(self) -> bool:
        return self._fault is not None

    @property
    def fault(self) -> BaseException | None:
        """The storage error that halted writes, if any."""
        return self._fault

    def clear_fault(self) -> None:
        """Allow writes again once the underlying storage problem is fixed."""
        with self._lock:
            if self._fault is not None:
                logger.warning("Clearing storage fault: %s", self._fault)
            self._fault = None

    def _migrate(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
        row = conn.execute("SELECT MAX(version) AS version FROM schema_version").fetchone()
        current = row["version"] or 0
        for version, script in _MIGRATIONS:
            if version <= current:
                continue
            logger.info("Applying schema migration v%d", version)
            conn.executescript(script)
            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (version, self._now_iso()),
            )

    # -- transaction plumbing ------------------------------------------

    def _now_iso(self) -> str:
        return to_iso(self.clock())

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("local store is not initialised; call init() first")
        return self._conn

    def _rollback(self, conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            logger.error("Rollback failed: %s", exc)

    def _halt(self, exc: sqlite3.Error) -> StorageError:
        self._fault = exc
        logger.error("Storage failure, halting writes: %s", exc)
        return StorageError(str(exc))

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._require_conn()
            if self._fault is not None:
                raise StorageError(f"local store halted after earlier failure: {self._fault}")
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.IntegrityError as exc:
                self._rollback(conn)
                raise ValueError(f"constraint violated: {exc}") from exc
            except sqlite3.Error as exc:
                self._rollback(conn)
                raise self._halt(exc) from exc
            except BaseException:
                self._rollback(conn)
                raise

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._require_conn()
            try:
                yield conn
            except sqlite3.Error as exc:
                raise self._halt(exc) from exc

    # -- generic CRUD --------------------------------------------------

    def _model_for(self, table: str) -> type:
        try:
            return MODEL_BY_TABLE[table]
        except KeyError:
            raise ValueError(f"unknown table: {table}") from None

    def _coerce(self, table: str, record: Any) -> Any:
        model = self._model_for(table)
        if isinstance(record, model):
            return record
        if isinstance(record, Mapping):
            return model.from_row(record)
        raise TypeError(f"cannot store {type(record).__name__} in {table}")

    def put(self, table: str, record: Any, *, print_jobs: Iterable[PrintJob] = ()) -> Any:
        """Insert or update a record by primary key and queue it for sync.

        print_jobs built with new_print_job() are queued in the same transaction.
        """
        if table in MANAGED_TABLES:
            raise ValueError(f"{table} is written through its queue operations, not put()")
        model = self._coerce(table, record)
        model.validate()
        jobs = list(print_jobs)
        with self._transaction() as conn:
            self._upsert(conn, model)
            for job in jobs:
                self._insert_print_job(conn, job)
        for job in jobs:
            logger.info("Print job %s queued (%s -> %s)", job.id, job.print_type.value, job.printer_name)
        return model

    def get(self, table: str, record_id: Any) -> Any | None:
        model = self._model_for(table)
        with self._reading() as conn:
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return None if row is None else model.from_row(dict(row))

    def query(self, table: str, where: Predicate | None = None, order_by: str | None = None) -> list[Any]:
        """Return matching records; `where` is column equality filters or a predicate."""
        model = self._model_for(table)
        columns = model.columns()
        sql = f"SELECT * FROM {table}"
        params: list[Any] = []
        if isinstance(where, Mapping):
            unknown = set(where) - set(columns)
            if unknown:
                raise ValueError(f"unknown columns for {table}: {sorted(unknown)}")
            if where:
                sql += " WHERE " + " AND ".join(f"{col} = ?" for col in where)
                params = [_sql_value(value) for value in where.values()]
        sql += " ORDER BY " + self._order_clause(columns, order_by)
        with self._reading() as conn:
            rows = conn.execute(sql, params).fetchall()
        records = [model.from_row(dict(row)) for row in rows]
        if callable(where):
            records = [record for record in records if where(record)]
        return records

    def delete(self, table: str, record_id: Any) -> bool:
        """Delete a syncable record (order items cascade with their order)."""
        if table not in SYNCABLE_TABLES:
            raise ValueError(f"{table} rows cannot be deleted directly")
        model = self._model_for(table)
        with self._transaction() as conn:
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
            if row is None:
                return False
            conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            # The full row keeps parent ids available for ordering the delete.
            payload = model.from_row(dict(row)).to_payload()
            self._enqueue_sync(conn, table, str(record_id), SyncOperation.DELETE, payload)
        logger.info("Deleted %s %s", table, record_id)
        return True

    def create_order(self, order: Order, items: Iterable[OrderItem]) -> tuple[Order, list[OrderItem]]:
        """Persist an order and all of its lines in a single transaction."""
        lines = list(items)
        order.validate()
        for item in lines:
            item.order_id = order.id
            item.validate()
        with self._transaction() as conn:
            self._upsert(conn, order)
            for item in lines:
                self._upsert(conn, item)
        logger.info("Order %s saved with %d items", order.order_number, len(lines))
        return order, lines

    def last_order_number(self, prefix: str) -> str | None:
        """Highest order_number starting with prefix, compared as text."""
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self._reading() as conn:
            row = conn.execute(
                "SELECT MAX(order_number) AS last FROM orders WHERE order_number LIKE ? ESCAPE '\\'",
                (escaped + "%",),
            ).fetchone()
        return row["last"]

    @staticmethod
    def _order_clause(columns: tuple[str, ...], order_by: str | None) -> str:
        if order_by is None:
            return "created_at, rowid" if "created_at" in columns else "rowid"
        parts = order_by.split()
        if parts[0] not in columns or len(parts) > 2 or (len(parts) == 2 and parts[1].upper() not in {"ASC", "DESC"}):
            raise ValueError(f"invalid order_by: {order_by!r}")
        return f"{order_by}, rowid"

    def _upsert(self, conn: sqlite3.Connection, model: Any) -> None:
        table = model.table
        now = self._now_iso()
        existing = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (model.id,)).fetchone()
        if hasattr(model, "created_at") and not model.created_at:
            model.created_at = existing["created_at"] if existing is not None else now
        if hasattr(model, "updated_at"):
            model.updated_at = now
        if isinstance(model, Order):
            # Any local change leaves the order unsynced until the queue drains.
            model.synced = False
            model.sync_error = None

        row = model.to_row()
        cols = list(row)
        updates = ", ".join(f"{col} = excluded.{col}" for col in cols if col not in {"id", "created_at"})
        conn.execute(
            f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            [row[col] for col in cols],
        )
        operation = SyncOperation.CREATE if existing is None else SyncOperation.UPDATE
        self._enqueue_sync(conn, table, str(model.id), operation, model.to_payload())

    def _enqueue_sync(
        self,
        conn: sqlite3.Connection,
        table: str,
        record_id: str,
        operation: SyncOperation,
        data: Mapping[str, Any],
    ) -> int:
        payload = json.dumps(dict(data))
        # Only merge into an entry that was never claimed; once claimed, its
        # idempotency key may already be recorded remotely.
        pending = conn.execute(
            """
            SELECT id, operation_type FROM sync_queue
            WHERE table_name = ? AND record_id = ? AND status = 'PENDING' AND last_attempt IS NULL
            ORDER BY id DESC LIMIT 1
            """,
            (table, record_id),
        ).fetchone()
        if pending is not None:
            merged = _coalesce(SyncOperation(pending["operation_type"]), operation)
            conn.execute(
                "UPDATE sync_queue SET operation_type = ?, data = ? WHERE id = ?",
                (merged.value, payload, pending["id"]),
            )
            return int(pending["id"])

        cur = conn.execute(
            """
            INSERT INTO sync_queue (operation_type, table_name, record_id, data, status, attempts, created_at)
            VALUES (?, ?, ?, ?, 'PENDING', 0, ?)
            """,
            (operation.value, table, record_id, payload, self._now_iso()),
        )
        return int(cur.lastrowid)

    # -- config ----------------------------------------------------------

    def get_config(self, key: str, default: str | None = None) -> str | None:
        with self._reading() as conn:
            row = conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
        if row is None or row["value"] is None:
            return default
        return row["value"]

    def set_config(self, key: str, value: Any) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO config (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, None if value is None else str(value), self._now_iso()),
            )

    def all_config(self) -> dict[str, str | None]:
        with self._reading() as conn:
            rows = conn.execute("SELECT key, value FROM config ORDER BY key").fetchall()
        return {row["key"]: row["value"] for row in rows}

    # -- sync queue ------------------------------------------------------

    def pending_sync_entries(self) -> list[SyncQueueEntry]:
        """All PENDING entries, FIFO by creation; callers apply the backoff gate."""
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_queue WHERE status = 'PENDING' ORDER BY created_at, id"
            ).fetchall()
        return [SyncQueueEntry.from_row(dict(row)) for row in rows]

    def sync_heads(self) -> dict[tuple[str, str], int]:
        """Lowest queued entry id per (table_name, record_id), whatever its status."""
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT table_name, record_id, MIN(id) AS head FROM sync_queue GROUP BY table_name, record_id"
            ).fetchall()
        return {(row["table_name"], row["record_id"]): row["head"] for row in rows}

    def sync_entries(self, status: SyncStatus | None = None) -> list[SyncQueueEntry]:
        if status is None:
            return self.query("sync_queue", order_by="id")
        return self.query("sync_queue", {"status": status}, order_by="id")

    def claim_sync_entry(self, entry_id: int) -> bool:
        with self._transaction() as conn:
            claimed = conn.execute(
                "UPDATE sync_queue SET status = 'IN_FLIGHT', last_attempt = ? WHERE id = ? AND status = 'PENDING'",
                (self._now_iso(), entry_id),
            ).rowcount
        return bool(claimed)

    def ack_sync_entry(self, entry: SyncQueueEntry) -> bool:
        """Drop an acknowledged entry; replays of an already-acked entry are no-ops."""
        now = self._now_iso()
        with self._transaction() as conn:
            removed = conn.execute("DELETE FROM sync_queue WHERE id = ?", (entry.id,)).rowcount
            if not removed:
                return False
            if entry.table_name == "orders" and entry.operation_type is not SyncOperation.DELETE:
                remaining = conn.execute(
                    "SELECT COUNT(*) AS n FROM sync_queue WHERE table_name = 'orders' AND record_id = ?",
                    (entry.record_id,),
                ).fetchone()["n"]
                if not remaining:
                    conn.execute(
                        "UPDATE orders SET synced = 1, sync_error = NULL WHERE id = ?", (entry.record_id,)
                    )
            conn.execute(
                "UPDATE config SET value = ?, updated_at = ? WHERE key = 'last_sync'", (now, now)
            )
        return True

    def fail_sync_entry(self, entry_id: int, error: str, retry_delay: float | None) -> SyncQueueEntry | None:
        """Record a failed attempt; retry_delay=None marks the entry terminal."""
        now = self.clock()
        with self._transaction() as conn:
            if retry_delay is None:
                conn.execute(
                    """
                    UPDATE sync_queue
                    SET status = 'FAILED', attempts = attempts + 1, error_message = ?, next_attempt_at = NULL
                    WHERE id = ?
                    """,
                    (error, entry_id),
                )
            else:
                conn.execute(
                    """
                    UPDATE sync_queue
                    SET status = 'PENDING', attempts = attempts + 1, error_message = ?, next_attempt_at = ?
                    WHERE id = ?
                    """,
                    (error, to_iso(now + timedelta(seconds=retry_delay)), entry_id),
                )
            row = conn.execute("SELECT * FROM sync_queue WHERE id = ?", (entry_id,)).fetchone()
            if row is not None and row["table_name"] == "orders":
                conn.execute("UPDATE orders SET sync_error = ? WHERE id = ?", (error, row["record_id"]))
        return None if row is None else SyncQueueEntry.from_row(dict(row))

    def requeue_sync_entry(self, entry_id: int) -> bool:
        """Give a terminally failed entry one more attempt."""
        with self._transaction() as conn:
            changed = conn.execute(
                "UPDATE sync_queue SET status = 'PENDING', next_attempt_at = NULL WHERE id = ? AND status = 'FAILED'",
                (entry_id,),
            ).rowcount
        return bool(changed)

    def discard_sync_entry(self, entry_id: int) -> bool:
        with self._transaction() as conn:
            removed = conn.execute(
                "DELETE FROM sync_queue WHERE id = ? AND status = 'FAILED'", (entry_id,)
            ).rowcount
        return bool(removed)

    # -- print jobs ------------------------------------------------------

    def new_print_job(
        self,
        print_type: PrintType | str,
        content: str,
        printer_name: str | None = None,
        order_id: str | None = None,
    ) -> PrintJob:
        """Build an unsaved job; the printer defaults to config printer_name."""
        return PrintJob(
            id=uuid4().hex,
            print_type=PrintType(print_type),
            printer_name=printer_name or self.get_config("printer_name") or "receipt",
            content=content,
            order_id=order_id,
            created_at=self._now_iso(),
        )

    def _insert_print_job(self, conn: sqlite3.Connection, job: PrintJob) -> None:
        row = job.to_row()
        conn.execute(
            f"INSERT INTO print_jobs ({', '.join(row)}) VALUES ({', '.join('?' for _ in row)})",
            list(row.values()),
        )

    def enqueue_print_job(
        self,
        print_type: PrintType | str,
        content: str,
        printer_name: str | None = None,
        order_id: str | None = None,
    ) -> PrintJob:
        job = self.new_print_job(print_type, content, printer_name=printer_name, order_id=order_id)
        with self._transaction() as conn:
            self._insert_print_job(conn, job)
        logger.info("Print job %s queued (%s -> %s)", job.id, job.print_type.value, job.printer_name)
        return job

    def pending_print_jobs(self) -> list[PrintJob]:
        return self.query("print_jobs", {"status": PrintStatus.PENDING})

    def print_jobs(self, status: PrintStatus | None = None) -> list[PrintJob]:
        if status is None:
            return self.query("print_jobs")
        return self.query("print_jobs", {"status": status})

    def claim_print_job(self, job_id: str) -> bool:
        with self._transaction() as conn:
            claimed = conn.execute(
                "UPDATE print_jobs SET status = 'PRINTING' WHERE id = ? AND status = 'PENDING'", (job_id,)
            ).rowcount
        return bool(claimed)

    def mark_printed(self, job_id: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE print_jobs SET status = 'PRINTED', printed_at = ?, error_message = NULL WHERE id = ?",
                (self._now_iso(), job_id),
            )

    def fail_print_job(self, job_id: str, error: str, terminal: bool) -> PrintJob | None:
        status = PrintStatus.FAILED if terminal else PrintStatus.PENDING
        with self._transaction() as conn:
            conn.execute(
                "UPDATE print_jobs SET status = ?, attempts = attempts + 1, error_message = ? WHERE id = ?",
                (status.value, error, job_id),
            )
            row = conn.execute("SELECT * FROM print_jobs WHERE id = ?", (job_id,)).fetchone()
        return None if row is None else PrintJob.from_row(dict(row))

    def retry_print_job(self, job_id: str, printer_name: str | None = None) -> bool:
        """Operator re-trigger of a failed job, optionally on another printer."""
        with self._transaction() as conn:
            changed = conn.execute(
                """
                UPDATE print_jobs
                SET status = 'PENDING', attempts = 0, error_message = NULL,
                    printer_name = COALESCE(?, printer_name)
                WHERE id = ? AND status = 'FAILED'
                """,
                (printer_name, job_id),
            ).rowcount
        if changed:
            logger.info("Print job %s re-queued by operator", job_id)
        return bool(changed)

    def cleanup_printed(self, days_old: int) -> int:
        cutoff = to_iso(self.clock() - timedelta(days=days_old))
        with self._transaction() as conn:
            removed = conn.execute(
                "DELETE FROM print_jobs WHERE status = 'PRINTED' AND printed_at < ?", (cutoff,)
            ).rowcount
        logger.info("Cleaned up %d printed jobs older than %d days", removed, days_old)
        return removed

    # -- observability -----------------------------------------------------

    def queue_status(self) -> QueueStatus:
        with self._reading() as conn:
            sync = conn.execute(
                """
                SELECT
                    SUM(CASE WHEN status = 'PENDING' THEN 1 ELSE 0 END) AS pending,
                    SUM(CASE WHEN status = 'IN_FLIGHT' THEN 1 ELSE 0 END) AS in_flight,
                    SUM(CASE WHEN status = 'FAILED' THEN 1 ELSE 0 END) AS failed,
                    MIN(CASE WHEN status = 'PENDING' THEN created_at END) AS oldest
                FROM sync_queue
                """
            ).fetchone()
            prints = conn.execute(
                """
                SELECT
                    SUM(CASE WHEN status = 'PENDING' THEN 1 ELSE 0 END) AS pending,
                    SUM(CASE WHEN status = 'PRINTING' THEN 1 ELSE 0 END) AS printing,
                    SUM(CASE WHEN status = 'FAILED' THEN 1 ELSE 0 END) AS failed
                FROM print_jobs
                """
            ).fetchone()
            unsynced = conn.execute("SELECT COUNT(*) AS n FROM orders WHERE synced = 0").fetchone()["n"]
        return QueueStatus(
            unsynced_orders=unsynced,
            sync_pending=sync["pending"] or 0,
            sync_in_flight=sync["in_flight"] or 0,
            sync_failed=sync["failed"] or 0,
            oldest_pending_sync=sync["oldest"],
            print_pending=prints["pending"] or 0,
            print_printing=prints["printing"] or 0,
            print_failed=prints["failed"] or 0,
        )

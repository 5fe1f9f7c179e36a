"""Shared fixtures: a temporary store, a controllable clock and fake collaborators."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from offline_pos.models import CartLine
from offline_pos.persistence import LocalStore


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ScriptedTransport:
    """Fake backend that fails per record id as scripted and de-duplicates deliveries."""

    def __init__(self, failures: dict[str, list[Exception]] | None = None) -> None:
        self.failures = {key: list(errors) for key, errors in (failures or {}).items()}
        self.calls: list = []
        self.applied: list = []
        self._seen_keys: set[str] = set()
        self._lock = threading.Lock()

    def send(self, entry) -> None:
        with self._lock:
            self.calls.append(entry)
            pending = self.failures.get(entry.record_id)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error
        with self._lock:
            if entry.idempotency_key in self._seen_keys:
                return
            self._seen_keys.add(entry.idempotency_key)
            self.applied.append(entry)


class FakePrinter:
    def __init__(self, failures: list[Exception | None] | None = None) -> None:
        self.failures = list(failures or [])
        self.printed: list[tuple[str, str]] = []
        self.calls = 0

    def dispatch(self, printer_name: str, content: str) -> None:
        self.calls += 1
        if self.failures:
            error = self.failures.pop(0)
            if error is not None:
                raise error
        self.printed.append((printer_name, content))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    local = LocalStore(tmp_path / "pos.db", clock=clock).init()
    yield local
    local.close()


@pytest.fixture
def cart() -> list[CartLine]:
    return [
        CartLine(name="Chicken Tikka", quantity=2, unit_price=8.50, menu_item_id="m-tikka"),
        CartLine(name="Garlic Naan", quantity=3, unit_price=2.25, menu_item_id="m-naan"),
        CartLine(name="Mango Lassi", quantity=1, unit_price=3.00, instructions="no ice"),
    ]

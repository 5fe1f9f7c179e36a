"""Crash snapshot of the live till session, offered back after an unclean exit."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from offline_pos.config import APP_VERSION, CRASH_STATE_PATH, SNAPSHOT_MAX_AGE_HOURS
from offline_pos.errors import CrashSnapshotCorrupt
from offline_pos.models import CrashState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecoveryOffer:
    """What startup found; the operator picks restore or discard."""

    has_snapshot: bool
    state: CrashState | None = None
    stale: bool = False

    @property
    def default_action(self) -> str:
        return "discard" if self.stale else "restore"


class CrashRecoveryManager:
    """Keeps a single JSON snapshot of the active session on disk.

    The file exists only while a session is live; its presence at startup
    means the previous run did not shut down cleanly.
    """

    def __init__(
        self,
        path: str | Path = CRASH_STATE_PATH,
        *,
        app_version: str = APP_VERSION,
        max_age_hours: float = SNAPSHOT_MAX_AGE_HOURS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self.app_version = app_version
        self.max_age = timedelta(hours=max_age_hours)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def save_snapshot(self, state: CrashState) -> CrashState:
        """Overwrite the outstanding snapshot; called on every cart or table change."""
        if state.timestamp is None:
            state.timestamp = int(self.clock().timestamp() * 1000)
        if state.version is None:
            state.version = self.app_version

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(state.to_dict()), encoding="utf-8")
        os.replace(tmp, self.path)
        return state

    def read_snapshot_on_startup(self) -> RecoveryOffer:
        try:
            state = self._load()
        except FileNotFoundError:
            return RecoveryOffer(has_snapshot=False)
        except CrashSnapshotCorrupt as exc:
            logger.warning("Ignoring unreadable crash snapshot at %s: %s", self.path, exc)
            return RecoveryOffer(has_snapshot=False)

        stale = self.is_stale(state)
        logger.warning(
            "Detected unclean shutdown: snapshot with %d cart items (stale=%s)", len(state.cart_items), stale
        )
        return RecoveryOffer(has_snapshot=True, state=state, stale=stale)

    def clear_snapshot(self) -> None:
        self.path.unlink(missing_ok=True)
        logger.info("Crash snapshot cleared")

    def is_stale(self, state: CrashState) -> bool:
        """Older than the max age, or saved on an earlier local calendar day."""
        if state.timestamp is None:
            return True
        saved = datetime.fromtimestamp(state.timestamp / 1000, tz=timezone.utc)
        now = self.clock()
        if now - saved > self.max_age:
            return True
        return saved.astimezone().date() < now.astimezone().date()

    def _load(self) -> CrashState:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise CrashSnapshotCorrupt(str(exc)) from exc
        try:
            state = CrashState.from_dict(json.loads(raw))
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            raise CrashSnapshotCorrupt(f"cannot decode snapshot: {exc}") from exc
        if state.timestamp is None:
            raise CrashSnapshotCorrupt("snapshot has no timestamp")
        return state

"""Runtime configuration defaults for persistence, sync and printing."""

from __future__ import annotations

import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    return int(raw)


APP_VERSION = "1.0.0"

DB_PATH = os.environ.get("POS_DB_PATH", "data/pos-offline.db")
CRASH_STATE_PATH = os.environ.get("POS_CRASH_STATE_PATH", "data/pos-crash-state.json")
LOG_PATH = os.environ.get("POS_LOG_PATH", "data/offline-pos.log")

# Remote restaurant backend.
SYNC_ENDPOINT_URL = os.environ.get("POS_SYNC_URL", "http://localhost:8000/api")
REMOTE_TIMEOUT_SECONDS = 10.0

# Sync retries are slow and persistent.
SYNC_MAX_ATTEMPTS = _env_int("POS_SYNC_MAX_ATTEMPTS", 10)
SYNC_BACKOFF_BASE_SECONDS = 1.0
SYNC_BACKOFF_CAP_SECONDS = 30.0
SYNC_POLL_INTERVAL_SECONDS = 15.0
SYNC_WORKERS = 4

# Print retries are fast and few.
PRINT_MAX_ATTEMPTS = _env_int("POS_PRINT_MAX_ATTEMPTS", 3)
PRINT_POLL_INTERVAL_SECONDS = 2.0
PRINT_WORKERS = 2
PRINTED_JOB_RETENTION_DAYS = 3

SNAPSHOT_MAX_AGE_HOURS = 12

# Seeded into the config table on first run.
CONFIG_DEFAULTS: dict[str, str] = {
    "app_version": APP_VERSION,
    "printer_name": "kitchen",
    "tax_rate": "0.20",
    "currency": "GBP",
    "offline_mode": "false",
    "last_sync": "",
}

PRINTER_USB_VENDOR_ID = 0x28E9
PRINTER_USB_PRODUCT_ID = 0x0289
PRINTER_NETWORK_PORT = 9100
PRINTER_WIDTH_PX = 384
PRINTER_FONT_SIZE = 34
PRINTER_FONT_PATH = "/System/Library/Fonts/SFNS.ttf"
PRINTER_LEFT_INDENT_PX = 16

_USB_PRINTER = f"usb://{PRINTER_USB_VENDOR_ID:#06x}:{PRINTER_USB_PRODUCT_ID:#06x}"

# Logical printer names used by print jobs -> device targets.
PRINTER_TARGETS: dict[str, str] = {
    "receipt": _USB_PRINTER,
    "kitchen": _USB_PRINTER,
    "bar": f"tcp://192.168.1.60:{PRINTER_NETWORK_PORT}",
}

"""Print job queue: ESC/POS dispatch and the retrying background processor."""

from __future__ import annotations

import logging
import os
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Protocol

from offline_pos.config import (
    PRINT_MAX_ATTEMPTS,
    PRINT_POLL_INTERVAL_SECONDS,
    PRINT_WORKERS,
    PRINTER_FONT_PATH,
    PRINTER_FONT_SIZE,
    PRINTER_LEFT_INDENT_PX,
    PRINTER_NETWORK_PORT,
    PRINTER_TARGETS,
    PRINTER_WIDTH_PX,
    REMOTE_TIMEOUT_SECONDS,
)
from offline_pos.errors import PrintError, PrintTerminalError, PrintTransientError
from offline_pos.models import PrintJob
from offline_pos.persistence import LocalStore
from offline_pos.scheduler import ScheduledTask

logger = logging.getLogger(__name__)

# Extra vertical headroom so descenders are not clipped on thermal output.
_LINE_EXTRA_PX = 14
_TAIL_SPACER_PX = 40
_FONT_ENV = "POS_PRINTER_FONT_PATH"
_FALLBACK_FONTS = (
    "/usr/share/fonts/TTF/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/noto/NotoSans-Regular.ttf",
    "/usr/share/fonts/liberation/LiberationSans-Regular.ttf",
)


@dataclass(frozen=True)
class PrinterTarget:
    """Resolved physical destination for a logical printer name."""

    kind: str
    vendor_id: int = 0
    product_id: int = 0
    host: str = ""
    port: int = PRINTER_NETWORK_PORT


def parse_printer_target(printer_name: str, targets: dict[str, str] | None = None) -> PrinterTarget:
    """
    Resolve a printer name to a device.

    Accepts a logical name from PRINTER_TARGETS or a target URI directly:
    usb://VID:PID or tcp://host[:port].
    """
    table = PRINTER_TARGETS if targets is None else targets
    uri = table.get(printer_name, printer_name)
    scheme, sep, rest = uri.partition("://")
    if not sep or not rest:
        raise PrintTerminalError(f"Unknown printer {printer_name!r}")

    if scheme == "usb":
        vendor, _, product = rest.partition(":")
        try:
            return PrinterTarget(kind="usb", vendor_id=int(vendor, 16), product_id=int(product, 16))
        except ValueError:
            raise PrintTerminalError(f"Bad USB printer target {uri!r}") from None

    if scheme == "tcp":
        host, _, port = rest.partition(":")
        try:
            return PrinterTarget(kind="tcp", host=host, port=int(port) if port else PRINTER_NETWORK_PORT)
        except ValueError:
            raise PrintTerminalError(f"Bad network printer target {uri!r}") from None

    raise PrintTerminalError(f"Unsupported printer scheme {scheme!r} for {printer_name!r}")


def _font_candidates() -> Iterator[str]:
    override = os.environ.get(_FONT_ENV, "").strip()
    if override:
        yield override
    yield PRINTER_FONT_PATH
    yield from _FALLBACK_FONTS


def resolve_printer_font_path() -> str:
    """First existing font among POS_PRINTER_FONT_PATH, PRINTER_FONT_PATH and common Linux fonts."""
    tried: list[str] = []
    for candidate in _font_candidates():
        if candidate in tried:
            continue
        if Path(candidate).is_file():
            return candidate
        tried.append(candidate)
    raise PrintTerminalError(f"No printer font found (set {_FONT_ENV}); tried {', '.join(tried)}")


def check_printer_dependencies() -> tuple[bool, str]:
    """Probe the ESC/POS driver and ticket font; returns (ready, status line)."""
    try:
        from escpos.printer import Network, Usb  # noqa: F401
        from PIL import ImageFont

        ImageFont.truetype(resolve_printer_font_path(), PRINTER_FONT_SIZE)
    except Exception as exc:
        return False, f"Printers unavailable: {exc}"
    return True, "Printers ready"


def _render_line(text: str, font: object) -> object:
    from PIL import Image, ImageDraw

    canvas_height = PRINTER_FONT_SIZE + _LINE_EXTRA_PX
    img = Image.new("1", (PRINTER_WIDTH_PX, canvas_height), color=1)
    draw = ImageDraw.Draw(img)

    bbox = draw.textbbox((0, 0), text, font=font)
    text_height = bbox[3] - bbox[1]

    x = PRINTER_LEFT_INDENT_PX
    # Offset by bbox top so descenders (g, y, p, etc.) are not clipped.
    y = (canvas_height - text_height) // 2 - bbox[1]
    draw.text((x, y), text, font=font, fill=0)
    return img


def _render_spacer(height_px: int) -> object:
    from PIL import Image

    return Image.new("1", (PRINTER_WIDTH_PX, max(1, height_px)), color=1)


class PrinterDispatcher(Protocol):
    def dispatch(self, printer_name: str, content: str) -> None:
        """Print pre-rendered content; raise PrintTransientError/PrintTerminalError on failure."""


class EscposDispatcher:
    """Sends ticket text to a USB or network thermal printer as 1-bit images."""

    def __init__(self, targets: dict[str, str] | None = None, timeout: float = REMOTE_TIMEOUT_SECONDS) -> None:
        self.targets = PRINTER_TARGETS if targets is None else targets
        self.timeout = timeout

    def _open(self, target: PrinterTarget) -> object:
        from escpos.printer import Network, Usb

        if target.kind == "usb":
            return Usb(target.vendor_id, target.product_id)
        return Network(target.host, port=target.port, timeout=self.timeout)

    def dispatch(self, printer_name: str, content: str) -> None:
        target = parse_printer_target(printer_name, self.targets)
        try:
            from PIL import ImageFont
        except ImportError as exc:
            raise PrintTerminalError(f"Printer dependencies unavailable: {exc}") from exc

        font = ImageFont.truetype(resolve_printer_font_path(), PRINTER_FONT_SIZE)
        try:
            printer = self._open(target)
        except Exception as exc:
            raise PrintTransientError(f"{printer_name}: cannot open printer: {exc}") from exc

        try:
            for line in content.splitlines() or [""]:
                if line.strip():
                    printer.image(_render_line(line, font))
                else:
                    printer.image(_render_spacer(PRINTER_FONT_SIZE // 2))
            printer.image(_render_spacer(_TAIL_SPACER_PX))
            printer.cut()
        except Exception as exc:
            raise PrintTransientError(f"{printer_name}: {exc}") from exc
        finally:
            close = getattr(printer, "close", None)
            if close is not None:
                close()


class PrintJobProcessor(ScheduledTask):
    """Polls print_jobs and hands each ticket to its printer.

    Runs on a tight interval with a small attempt cap: a failed job goes back
    to PENDING for the next poll and is marked FAILED once the cap is reached.
    """

    name = "print"

    def __init__(
        self,
        store: LocalStore,
        dispatcher: PrinterDispatcher,
        *,
        max_attempts: int = PRINT_MAX_ATTEMPTS,
        timeout: float = REMOTE_TIMEOUT_SECONDS,
        poll_interval: float = PRINT_POLL_INTERVAL_SECONDS,
        workers: int = PRINT_WORKERS,
    ) -> None:
        super().__init__(poll_interval=poll_interval, workers=workers)
        self.store = store
        self.dispatcher = dispatcher
        self.max_attempts = max_attempts
        self.timeout = timeout
        # job id -> timed-out dispatch, until its late result is recorded
        self._hung: dict[str, Future] = {}

    def run_once(self) -> dict[str, str]:
        """Process every pending job once; returns job id -> outcome."""
        outcomes: dict[str, str] = {}
        for job in self.store.pending_print_jobs():
            outcomes[job.id] = self._process(job)
        return outcomes

    def _process(self, job: PrintJob) -> str:
        if job.id in self._hung:
            # The timed-out dispatch may still reach the printer.
            return "skipped"
        if not self.store.claim_print_job(job.id):
            return "skipped"
        future = self._pool().submit(self.dispatcher.dispatch, job.printer_name, job.content)
        try:
            future.result(timeout=self.timeout)
        except FutureTimeout:
            outcome = self._record_failure(
                job, PrintTransientError(f"{job.printer_name}: no response within {self.timeout:.0f}s")
            )
            # The failure must be stored before a late success can mark the job printed.
            self._hung[job.id] = future
            future.add_done_callback(lambda done: self._late_dispatch(job, done))
            return outcome
        except PrintTerminalError as exc:
            return self._record_failure(job, exc, terminal=True)
        except PrintError as exc:
            return self._record_failure(job, exc)
        except Exception as exc:
            logger.exception("Unexpected error printing job %s", job.id)
            return self._record_failure(job, PrintTransientError(str(exc)))

        self.store.mark_printed(job.id)
        logger.info("Printed %s job %s on %s", job.print_type.value, job.id, job.printer_name)
        return "printed"

    def _late_dispatch(self, job: PrintJob, future: Future) -> None:
        try:
            if future.cancelled() or future.exception() is not None:
                return
            self.store.mark_printed(job.id)
            logger.warning("Print job %s on %s completed after timing out", job.id, job.printer_name)
        except Exception:
            logger.exception("Could not record late print of job %s", job.id)
        finally:
            self._hung.pop(job.id, None)

    def _record_failure(self, job: PrintJob, error: PrintError, terminal: bool = False) -> str:
        attempts = job.attempts + 1
        if terminal or attempts >= self.max_attempts:
            updated = self.store.fail_print_job(job.id, str(error), terminal=True)
            if not isinstance(error, PrintTerminalError):
                error = PrintTerminalError(f"gave up after {attempts} attempts: {error}")
            logger.error("Print job %s on %s failed: %s", job.id, job.printer_name, error)
            self._notify(updated or job, error)
            return "failed"

        self.store.fail_print_job(job.id, str(error), terminal=False)
        logger.warning(
            "Print job %s attempt %d/%d failed, will retry: %s", job.id, attempts, self.max_attempts, error
        )
        return "retried"

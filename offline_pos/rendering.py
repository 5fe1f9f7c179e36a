"""Rendering helpers for operator-facing queue banners."""

from __future__ import annotations

from rich.text import Text

from offline_pos.models import PrintJob, QueueStatus


def _plural(count: int, singular: str, plural: str | None = None) -> str:
    return singular if count == 1 else (plural or f"{singular}s")


def describe_queue_status(status: QueueStatus) -> list[str]:
    """Human-readable queue messages, most urgent first."""
    messages: list[str] = []
    if status.print_failed:
        messages.append(f"{status.print_failed} print {_plural(status.print_failed, 'job')} failed, check printer")
    if status.sync_failed:
        messages.append(
            f"{status.sync_failed} sync {_plural(status.sync_failed, 'entry', 'entries')} rejected, needs review"
        )
    if status.unsynced_orders:
        messages.append(f"{status.unsynced_orders} {_plural(status.unsynced_orders, 'order')} awaiting sync")
    waiting = status.print_pending + status.print_printing
    if waiting:
        messages.append(f"{waiting} {_plural(waiting, 'ticket')} waiting to print")
    return messages


def badge_style(severity: str) -> str:
    """Return a consistent badge style for banner severities."""
    if severity == "error":
        return "bold #ffffff on #b23a48"
    if severity == "warning":
        return "bold #0b1f0f on #e0b84c"
    return "bold #0b1f0f on #5fbf72"


def format_queue_banner(status: QueueStatus) -> Text:
    """Render queue messages with a colored severity badge per line."""
    messages = describe_queue_status(status)
    text = Text()
    if not messages:
        text.append(" OK ", style=badge_style("ok"))
        text.append(" All queues clear")
        return text

    for idx, message in enumerate(messages):
        if idx > 0:
            text.append("\n")
        severity = "error" if ("failed" in message or "rejected" in message) else "warning"
        text.append(" ! " if severity == "error" else " ~ ", style=badge_style(severity))
        text.append(f" {message}")
    return text


def format_print_job(job: PrintJob) -> Text:
    """One failed job line: type tag, printer and last error."""
    text = Text()
    text.append(job.print_type.value, style=badge_style("error"))
    text.append(f" {job.printer_name} ")
    if job.order_id:
        text.append(f"order {job.order_id[:8]} ", style="dim")
    text.append(job.error_message or "unknown error")
    return text


def format_storage_fault(error: BaseException) -> Text:
    """Banner shown while the local database refuses writes."""
    text = Text()
    text.append(" ! ", style=badge_style("error"))
    text.append(f" Local database error, writes halted: {error}")
    return text

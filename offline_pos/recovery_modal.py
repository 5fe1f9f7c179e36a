"""Restore-or-discard prompt shown after an unclean shutdown."""

from __future__ import annotations

from datetime import datetime

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Container
from textual.events import Key
from textual.screen import ModalScreen
from textual.widgets import Static

from offline_pos.crash_recovery import RecoveryOffer


def summarize_offer(offer: RecoveryOffer) -> Text:
    """Describe the recovered session for the operator."""
    text = Text()
    state = offer.state
    if state is None:
        return text

    if state.order_type is not None:
        text.append(state.order_type.value.replace("_", " "), style="bold")
    if state.table_number is not None:
        text.append(f"  Table {state.table_number}")
    count = sum(line.quantity for line in state.cart_items)
    total = sum(line.quantity * line.unit_price for line in state.cart_items)
    text.append(f"\n{count} item{'s' if count != 1 else ''} in cart, {total:.2f}")
    if state.timestamp is not None:
        saved = datetime.fromtimestamp(state.timestamp / 1000).strftime("%d/%m %H:%M")
        text.append(f"\nSaved {saved}", style="dim")
    if offer.stale:
        text.append("\nThis session is from an earlier day; discarding is recommended.", style="#ffb3b3")
    return text


class RecoveryModal(ModalScreen[bool]):
    """Dismisses with True to restore the snapshot, False to discard it."""

    CSS = """
    RecoveryModal {
        align: center middle;
        background: $background 60%;
    }

    #recovery-dialog {
        width: 60;
        height: auto;
        border: round $secondary;
        background: $panel;
        padding: 1 2;
    }

    #recovery-title {
        text-style: bold;
        margin-bottom: 1;
        color: white;
    }

    #recovery-body {
        color: white;
        margin-bottom: 1;
    }

    #recovery-help {
        color: #dddddd;
    }
    """

    def __init__(self, offer: RecoveryOffer) -> None:
        super().__init__()
        self.offer = offer

    def compose(self) -> ComposeResult:
        default = "discard" if self.offer.stale else "restore"
        with Container(id="recovery-dialog"):
            yield Static("Recover previous session?", id="recovery-title")
            yield Static(summarize_offer(self.offer), id="recovery-body")
            yield Static(f"r restore. d/Esc discard. Enter = {default}.", id="recovery-help")

    def on_key(self, event: Key) -> None:
        if event.key == "r":
            self.dismiss(True)
        elif event.key in {"d", "escape"}:
            self.dismiss(False)
        elif event.key == "enter":
            self.dismiss(self.offer.default_action == "restore")
        else:
            return
        event.stop()

"""Exchange detail panel for mcp-pentester TUI.

Shows the full request and response JSON of the selected exchange.
"""

from __future__ import annotations

from textual.app import ComposeResult
from textual.widget import Widget
from textual.widgets import RichLog

from mcp_pentester.feed import describe_entry
from mcp_pentester.models import ExchangeStatus, TrafficExchange

PENDING_PLACEHOLDER = "(pending - no response yet)"


class ExchangeDetailPanel(Widget):
    """Right-side panel with the selected exchange's raw messages.

    Example:
        panel.show_exchange(exchange)
        panel.clear_detail()
    """

    DEFAULT_CSS = """
    ExchangeDetailPanel {
        border: solid $primary;
        padding: 0 1;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self.current: TrafficExchange | None = None

    def compose(self) -> ComposeResult:
        """Compose the widget with a RichLog viewer."""
        yield RichLog(id="detail-log", wrap=True)

    def show_exchange(self, exchange: TrafficExchange) -> None:
        """Display an exchange's messages.

        Args:
            exchange: The exchange to display.
        """
        self.current = exchange
        log = self.query_one("#detail-log", RichLog)
        log.clear()

        first = exchange.request or exchange.response
        assert first is not None
        log.write(f"--- {describe_entry(first)} ---")
        log.write(f"Status: {exchange.status.value}")
        log.write(f"Timestamp: {first.timestamp.isoformat()}")
        if first.jsonrpc_id is not None:
            log.write(f"JSON-RPC ID: {first.jsonrpc_id}")
        log.write("")

        if exchange.status == ExchangeStatus.INBOUND:
            log.write("INBOUND:")
            log.write(first.raw)
            return

        log.write("REQUEST:")
        log.write(first.raw)
        if exchange.status == ExchangeStatus.NOTIFICATION:
            return
        log.write("")
        log.write("RESPONSE:")
        log.write(exchange.response.raw if exchange.response is not None else PENDING_PLACEHOLDER)

    def clear_detail(self) -> None:
        """Blank the panel."""
        self.current = None
        self.query_one("#detail-log", RichLog).clear()

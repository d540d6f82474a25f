"""Traffic list widget for mcp-pentester TUI.

Scrollable list of correlated exchanges. Each line shows the time the
exchange began, the method with its key parameters and the status, e.g.
``[14:02:11.348] tools/call tool=search args=query → ok``.
"""

from __future__ import annotations

from collections.abc import Sequence

from textual.app import ComposeResult
from textual.message import Message
from textual.widget import Widget
from textual.widgets import ListItem, ListView, Static

from mcp_pentester.feed import format_exchange
from mcp_pentester.models import TrafficExchange


class ExchangeSelected(Message):
    """Fired when the user highlights an exchange in the list.

    Args:
        exchange: The highlighted exchange.
    """

    def __init__(self, exchange: TrafficExchange) -> None:
        super().__init__()
        self.exchange = exchange


def exchange_key(exchange: TrafficExchange) -> str:
    """Widget id for an exchange, stable while its first entry is retained."""
    first = exchange.request or exchange.response
    assert first is not None
    return f"xchg-{first.sequence}"


class TrafficListPanel(Widget):
    """Left-side panel showing the correlated traffic feed.

    Attributes:
        exchanges: Currently displayed exchanges keyed by widget id.
    """

    DEFAULT_CSS = """
    TrafficListPanel {
        border: solid $primary;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self.exchanges: dict[str, TrafficExchange] = {}
        self._lines: dict[str, tuple[ListItem, Static]] = {}

    def compose(self) -> ComposeResult:
        """Compose the widget with a single ListView."""
        yield ListView()

    def update_exchanges(self, exchanges: Sequence[TrafficExchange]) -> None:
        """Bring the list in line with a freshly correlated feed.

        Existing lines are relabelled in place, new exchanges are appended,
        and exchanges no longer in the feed (evicted or suppressed) are
        removed.

        Args:
            exchanges: The feed, in the order exchanges began.
        """
        list_view = self.query_one(ListView)
        current = {exchange_key(exchange): exchange for exchange in exchanges}
        for key in [key for key in self._lines if key not in current]:
            item, _ = self._lines.pop(key)
            item.remove()
        for key, exchange in current.items():
            text = format_exchange(exchange)
            if key in self._lines:
                self._lines[key][1].update(text)
                continue
            label = Static(text)
            item = ListItem(label, id=key)
            self._lines[key] = (item, label)
            list_view.append(item)
        self.exchanges = current

    def clear(self) -> None:
        """Remove every line."""
        self.exchanges = {}
        self._lines = {}
        self.query_one(ListView).clear()

    def get_selected_exchange(self) -> TrafficExchange | None:
        """Return the exchange for the highlighted line, if any."""
        item = self.query_one(ListView).highlighted_child
        if item is None or item.id is None:
            return None
        return self.exchanges.get(item.id)

    def on_list_view_highlighted(self, event: ListView.Highlighted) -> None:
        """Handle list item highlight -- fire ExchangeSelected.

        Args:
            event: The Textual highlighted event from ListView.
        """
        if event.item is None or event.item.id is None:
            return
        exchange = self.exchanges.get(event.item.id)
        if exchange is not None:
            self.post_message(ExchangeSelected(exchange))

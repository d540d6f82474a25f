"""Main Textual app for the mcp-pentester dashboard.

ClientApp owns the event loop, composes the layout, runs the client
connection as a background worker and wires client events to widget
updates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import Footer, Header
from textual.worker import Worker

from mcp_pentester.client import ClientEvent, McpClient
from mcp_pentester.config import TransportConfig
from mcp_pentester.feed import correlate
from mcp_pentester.models import TrafficLogEntry
from mcp_pentester.tui.messages import ClientConnected, ClientDisconnected, ClientError, TrafficRecorded
from mcp_pentester.tui.widgets.exchange_detail import ExchangeDetailPanel
from mcp_pentester.tui.widgets.status_bar import ClientStatusBar
from mcp_pentester.tui.widgets.traffic_list import ExchangeSelected, TrafficListPanel

logger = logging.getLogger(__name__)


class ClientApp(App[None]):
    """Textual application for interactive MCP traffic inspection.

    Args:
        config: Connection configuration.
        client: Pre-built client (tests pass one with a fake transport).
        traffic_file: Optional path the traffic log is saved to with ``s``
            and on exit.
        connect_on_mount: If False, skip connecting on mount (used in
            tests to control lifecycle manually).
    """

    CSS_PATH = "app.tcss"
    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("c", "clear_traffic", "Clear"),
        ("s", "save_traffic", "Save"),
    ]

    def __init__(
        self,
        config: TransportConfig,
        client: McpClient | None = None,
        traffic_file: Path | None = None,
        connect_on_mount: bool = True,
    ) -> None:
        super().__init__()
        self.config = config
        self.client = client or McpClient(config)
        self.traffic_file = traffic_file
        self._connect_on_mount = connect_on_mount
        self._connect_worker: Worker[None] | None = None
        self.title = f"mcp-pentester \u2014 {config.type.value} \u2014 {config.target or 'unknown'}"

        self._relays: list[tuple[ClientEvent, Callable[[Any], None]]] = [
            (ClientEvent.TRAFFIC, self._relay_traffic),
            (ClientEvent.CONNECTED, self._relay_connected),
            (ClientEvent.ERROR, self._relay_error),
            (ClientEvent.DISCONNECTED, self._relay_disconnected),
        ]
        for event, handler in self._relays:
            self.client.events.on(event, handler)

    def compose(self) -> ComposeResult:
        """Compose the main layout.

        Returns:
            The composed widget tree.
        """
        yield Header()
        with Horizontal(id="main-container"):
            yield TrafficListPanel()
            yield ExchangeDetailPanel()
        yield ClientStatusBar()
        yield Footer()

    def on_mount(self) -> None:
        """Start the connection worker on mount if configured."""
        if self._connect_on_mount:
            self.start_connect_worker()

    async def on_unmount(self) -> None:
        """Close the session and save traffic if a file was given."""
        # Stop relaying before the session closes
        for event, handler in self._relays:
            self.client.events.off(event, handler)
        await self.client.disconnect()
        if self.traffic_file is not None:
            self.client.traffic_log.save(self.traffic_file)

    def start_connect_worker(self) -> None:
        """Connect the client in the background."""
        self.query_one(ClientStatusBar).connection_status = "CONNECTING"
        self._connect_worker = self.run_worker(self._connect(), name="connect", exclusive=True)

    async def _connect(self) -> None:
        try:
            await self.client.connect()
        except Exception as exc:
            logger.error("Connection failed: %s", exc, exc_info=True)
            self.post_message(ClientError(exc))
            self.post_message(ClientDisconnected())
            return
        self._update_counts()

    async def _refresh(self) -> None:
        await self.client.refresh_all()
        self._update_counts()

    # ------------------------------------------------------------------
    # Client event wrappers (discard post_message return value)
    # ------------------------------------------------------------------

    def _relay_traffic(self, entry: TrafficLogEntry) -> None:
        self.post_message(TrafficRecorded(entry))

    def _relay_connected(self, result: Any) -> None:
        self.post_message(ClientConnected(result))

    def _relay_error(self, error: BaseException) -> None:
        self.post_message(ClientError(error))

    def _relay_disconnected(self, _payload: Any) -> None:
        self.post_message(ClientDisconnected())

    # ------------------------------------------------------------------
    # Message handlers
    # ------------------------------------------------------------------

    def on_traffic_recorded(self, event: TrafficRecorded) -> None:
        """Re-correlate the traffic log and refresh the list.

        Args:
            event: The TrafficRecorded event.
        """
        entries = self.client.traffic_log.get_entries()
        panel = self.query_one(TrafficListPanel)
        panel.update_exchanges(correlate(entries))
        self.query_one(ClientStatusBar).message_count = len(entries)
        detail = self.query_one(ExchangeDetailPanel)
        if detail.current is not None:
            # Show the response once it arrives
            selected = panel.get_selected_exchange()
            if selected is not None:
                detail.show_exchange(selected)

    def on_client_connected(self, event: ClientConnected) -> None:
        """Show the server identity once the handshake completes.

        Args:
            event: The ClientConnected event.
        """
        bar = self.query_one(ClientStatusBar)
        bar.connection_status = "CONNECTED"
        bar.error = ""
        info = self.client.state.server_info
        if info is not None:
            bar.server = f"{info.name} {info.version}"

    def on_client_error(self, event: ClientError) -> None:
        """Show the error in the status bar.

        Args:
            event: The ClientError event.
        """
        self.query_one(ClientStatusBar).error = str(event.error)

    def on_client_disconnected(self, event: ClientDisconnected) -> None:
        """Handle session end -- update status bar.

        Args:
            event: The ClientDisconnected event.
        """
        self.query_one(ClientStatusBar).connection_status = "DISCONNECTED"

    def on_exchange_selected(self, event: ExchangeSelected) -> None:
        """Handle exchange selection -- update detail panel.

        Args:
            event: The ExchangeSelected event from the list panel.
        """
        self.query_one(ExchangeDetailPanel).show_exchange(event.exchange)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def action_refresh(self) -> None:
        """Re-fetch tools, resources and prompts."""
        if not self.client.state.connected:
            self.notify("Not connected", severity="warning")
            return
        self.run_worker(self._refresh(), name="refresh", exclusive=True)

    def action_clear_traffic(self) -> None:
        """Drop all logged traffic."""
        self.client.clear_traffic_log()
        self.query_one(TrafficListPanel).clear()
        self.query_one(ExchangeDetailPanel).clear_detail()
        self.query_one(ClientStatusBar).message_count = 0

    def action_save_traffic(self) -> None:
        """Save the traffic log to the configured file."""
        if self.traffic_file is None:
            self.notify("No traffic file configured (use --traffic-file)", severity="warning")
            return
        try:
            self.client.traffic_log.save(self.traffic_file)
        except OSError as exc:
            self.notify(f"Save failed: {exc}", severity="error")
            return
        self.notify(f"Traffic saved to {self.traffic_file}")

    def _update_counts(self) -> None:
        state = self.client.state
        bar = self.query_one(ClientStatusBar)
        bar.tool_count = len(state.tools)
        bar.resource_count = len(state.resources)
        bar.prompt_count = len(state.prompts)

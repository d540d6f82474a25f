"""Status bar widget for mcp-pentester TUI.

Displays the connection state, the server identity, the capability counts
and the last error at the bottom of the app above the key binding footer.
"""

from __future__ import annotations

from textual.reactive import reactive
from textual.widgets import Static


class ClientStatusBar(Static):
    """Bottom status bar.

    Attributes:
        connection_status: CONNECTING, CONNECTED or DISCONNECTED.
        server: Server name and version from the handshake.
        tool_count: Number of tools in the latest snapshot.
        resource_count: Number of resources in the latest snapshot.
        prompt_count: Number of prompts in the latest snapshot.
        message_count: Number of logged messages.
        error: Last error message, if any.
    """

    DEFAULT_CSS = """
    ClientStatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        color: $text;
        padding: 0 1;
    }
    """

    connection_status: reactive[str] = reactive("DISCONNECTED")
    server: reactive[str] = reactive("")
    tool_count: reactive[int] = reactive(0)
    resource_count: reactive[int] = reactive(0)
    prompt_count: reactive[int] = reactive(0)
    message_count: reactive[int] = reactive(0)
    error: reactive[str] = reactive("")

    def render(self) -> str:
        """Render the status bar content.

        Returns:
            Formatted status string.
        """
        parts = [f"[{self.connection_status}]"]
        if self.server:
            parts.append(self.server)
        parts.append(f"Tools: {self.tool_count}")
        parts.append(f"Resources: {self.resource_count}")
        parts.append(f"Prompts: {self.prompt_count}")
        parts.append(f"Messages: {self.message_count}")
        if self.error:
            parts.append(f"ERROR: {self.error}")
        return "  ".join(parts)

"""Custom Textual message types for client-to-TUI communication.

McpClient emits plain events from whatever coroutine is running; the app's
handlers turn them into these messages via ``app.post_message()`` so that
widget updates happen in the message loop.
"""

from __future__ import annotations

from typing import Any

from textual.message import Message

from mcp_pentester.models import TrafficLogEntry


class TrafficRecorded(Message):
    """A message was sent or received and logged.

    Args:
        entry: The new traffic log entry.
    """

    def __init__(self, entry: TrafficLogEntry) -> None:
        super().__init__()
        self.entry = entry


class ClientConnected(Message):
    """The initialize handshake completed.

    Args:
        result: The raw initialize result.
    """

    def __init__(self, result: Any) -> None:
        super().__init__()
        self.result = result


class ClientError(Message):
    """The client reported an error, fatal or not.

    Args:
        error: The exception that occurred.
    """

    def __init__(self, error: BaseException) -> None:
        super().__init__()
        self.error = error


class ClientDisconnected(Message):
    """The session ended."""

    def __init__(self) -> None:
        super().__init__()

"""Bounded in-memory traffic log for mcp-pentester.

Keeps the most recent TrafficLogEntry objects for a session, with save/load
to JSON via the TrafficCapture Pydantic model.
"""

from __future__ import annotations

import itertools
import json
from collections import deque
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mcp.types import JSONRPCMessage

from mcp_pentester.correlation import to_payload, validate_message
from mcp_pentester.models import Direction, TrafficCapture, TrafficLogEntry, TransportType

# Entries kept before the oldest is evicted
TRAFFIC_LOG_CAPACITY = 1000


class TrafficLog:
    """Ring of the last ``capacity`` messages seen on the wire.

    Args:
        transport: Transport type the messages travel over.
        target: Server command line or URL, stored with saved captures.
        capacity: Maximum number of entries retained.
        metadata: Arbitrary capture metadata.

    Example:
        >>> log = TrafficLog(TransportType.STDIO, target="python server.py")
        >>> log.record(Direction.SENT, message)
        >>> log.save(Path("traffic.json"))
    """

    def __init__(
        self,
        transport: TransportType,
        target: str | None = None,
        capacity: int = TRAFFIC_LOG_CAPACITY,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.transport = transport
        self.target = target
        self.capacity = capacity
        self.metadata = metadata or {}
        self._entries: deque[TrafficLogEntry] = deque(maxlen=capacity)
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, direction: Direction, message: JSONRPCMessage) -> TrafficLogEntry:
        """Wrap a message in a timestamped entry and append it.

        Args:
            direction: SENT or RECEIVED.
            message: The JSON-RPC message.

        Returns:
            The new entry.
        """
        entry = TrafficLogEntry(
            sequence=next(self._seq),
            timestamp=datetime.now(tz=UTC),
            direction=direction,
            transport=self.transport,
            message=message,
            raw=json.dumps(to_payload(message), indent=2),
        )
        self._entries.append(entry)
        return entry

    def append(self, entry: TrafficLogEntry) -> None:
        """Add an existing entry, evicting the oldest when full."""
        self._entries.append(entry)
        # Keep new sequence numbers above loaded ones
        self._seq = itertools.count(max(entry.sequence + 1, next(self._seq)))

    def get_entries(self) -> list[TrafficLogEntry]:
        """Return the retained entries, oldest first.

        Returns:
            A copy of the entry list.
        """
        return list(self._entries)

    def clear(self) -> None:
        """Drop every entry. Sequence numbers keep increasing."""
        self._entries.clear()

    def to_capture(self) -> TrafficCapture:
        """Convert to a TrafficCapture Pydantic model for serialization."""
        serialized: list[dict[str, Any]] = []
        for entry in self._entries:
            serialized.append(
                {
                    "sequence": entry.sequence,
                    "timestamp": entry.timestamp.isoformat(),
                    "direction": entry.direction.value,
                    "transport": entry.transport.value,
                    "jsonrpc_id": entry.jsonrpc_id,
                    "method": entry.method,
                    "payload": to_payload(entry.message),
                }
            )
        return TrafficCapture(
            transport=self.transport,
            target=self.target,
            saved_at=datetime.now(tz=UTC),
            entries=serialized,
            metadata=self.metadata,
        )

    def save(self, path: Path) -> None:
        """Save the log to a JSON file.

        Args:
            path: File path to write. Parent directories are created
                if they do not exist.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_capture().model_dump_json(indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path, capacity: int = TRAFFIC_LOG_CAPACITY) -> TrafficLog:
        """Load a log from a JSON file.

        Args:
            path: File path to read.
            capacity: Ring size for the loaded log.

        Returns:
            A TrafficLog reconstructed from the saved capture.

        Raises:
            OSError: If the file cannot be read.
            ValueError: If the file is not a valid capture.
            FramingError: If a stored payload is not a JSON-RPC message.
        """
        capture = TrafficCapture.model_validate_json(path.read_text(encoding="utf-8"))
        log = cls(capture.transport, target=capture.target, capacity=capacity, metadata=capture.metadata)
        for item in capture.entries:
            message = validate_message(item["payload"])
            log.append(
                TrafficLogEntry(
                    sequence=item["sequence"],
                    timestamp=datetime.fromisoformat(item["timestamp"]),
                    direction=Direction(item["direction"]),
                    transport=TransportType(item["transport"]),
                    message=message,
                    raw=json.dumps(item["payload"], indent=2),
                )
            )
        return log

"""Transports: one physical channel each, all speaking the same contract."""

from mcp_pentester.transports.base import JsonRpcCorrelator, PendingRequests, Transport, TransportEvent
from mcp_pentester.transports.http import HttpTransport
from mcp_pentester.transports.sse import SseTransport
from mcp_pentester.transports.stdio import StdioTransport
from mcp_pentester.transports.websocket import WebSocketTransport

__all__ = [
    "HttpTransport",
    "JsonRpcCorrelator",
    "PendingRequests",
    "SseTransport",
    "StdioTransport",
    "Transport",
    "TransportEvent",
    "WebSocketTransport",
]

"""mcp-pentester: interactive MCP client for security testing."""

__version__ = "0.1.0"

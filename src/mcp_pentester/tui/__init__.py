"""Terminal dashboard for mcp-pentester."""

"""Minimal FastMCP target server for integration tests.

Exposes a small attack surface of each kind: tools with injection-prone
parameter names, a static resource and a prompt. Every implementation is
inert; nothing touches the shell or the filesystem.

Usage:
    python fixtures/target_server.py
    fastmcp run fixtures/target_server.py
"""

from fastmcp import FastMCP

mcp = FastMCP(
    name="pentest-target-server",
    instructions="A test fixture with inert tools, resources and prompts.",
)


@mcp.tool()
def file_search(directory: str, pattern: str) -> str:
    """Search for files matching a pattern in a directory.

    Args:
        directory: The directory path to search in.
        pattern: The filename pattern to search for.
    """
    return f"Search results for {pattern} in {directory}: (none)"


@mcp.tool()
def safe_echo(message: str) -> str:
    """Echo a message back.

    Args:
        message: The message to echo.
    """
    return message


@mcp.resource("config://app", name="app_config", description="Application settings.")
def app_config() -> str:
    return '{"debug": false, "admin_email": "admin@example.com"}'


@mcp.prompt()
def summarize(text: str) -> str:
    """Ask for a one-paragraph summary.

    Args:
        text: Text to summarize.
    """
    return f"Summarize the following in one paragraph:\n\n{text}"


if __name__ == "__main__":
    mcp.run(transport="stdio")

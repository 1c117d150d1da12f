import logging

from mcp.server.fastmcp import FastMCP

logging.basicConfig(
    level=logging.INFO, format="[StdioPackServer] %(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

mcp = FastMCP("StdioPack")


@mcp.tool()
async def lookup_docs(topic: str) -> str:
    """Return a canned documentation snippet for *topic*."""
    logger.info("Tool 'lookup_docs' called with topic: '%s'", topic)
    return f"Docs for {topic}"


if __name__ == "__main__":
    logger.info("Starting StdioPack MCP server (stdio transport)...")
    mcp.run()

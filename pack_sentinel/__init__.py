"""
Pack Sentinel - capability registry and dispatch for AI assistant plugin packs.

Pack Sentinel loads agent, command, skill, and MCP server declarations from
plugin roots, selects the capability that fits a request, discloses skill
references under a size budget, and manages declared MCP server sessions.
"""

from pack_sentinel.constants import SERVER_NAME, SERVER_VERSION

__version__ = SERVER_VERSION
__app_name__ = SERVER_NAME

__all__ = [
    "SERVER_NAME",
    "SERVER_VERSION",
    "__version__",
    "__app_name__",
]

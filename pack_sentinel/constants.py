"""Shared constants for Pack Sentinel."""

SERVER_NAME = "Pack Sentinel"
SERVER_VERSION = "0.1.0"

# Logging defaults
LOG_DIR = "logs"
DEFAULT_LOG_LEVEL = "INFO"

# Manifest loading
MAX_FILE_BYTES = 256 * 1024  # per-file ceiling for manifest documents
SKILL_FILENAME = "SKILL.md"
REFERENCES_DIRNAME = "references"
AGENTS_DIRNAME = "agents"
COMMANDS_DIRNAME = "commands"
SKILLS_DIRNAME = "skills"
MCP_DIRNAME = "mcp"
MCP_JSON_FILENAME = ".mcp.json"
PLUGIN_JSON_PATH = (".claude-plugin", "plugin.json")

# Dispatch defaults
AMBIGUITY_EPSILON = 0.05
MAX_RUNNER_UPS = 4
BODY_WEIGHT = 0.5  # body text counts at half the weight of name, description and keywords

# Disclosure defaults
DISCLOSURE_BUDGET = 32 * 1024
BYTES_PER_TOKEN = 4

# MCP session timeouts
MCP_START_TIMEOUT = 15.0  # seconds for spawn + initialize handshake
MCP_PROBE_TIMEOUT = 5.0  # seconds for HTTP reachability probe
MCP_STOP_TIMEOUT = 5.0  # seconds for a session to wind down before it is cancelled

# Manifest watcher
WATCH_POLL_INTERVAL = 2.0
WATCH_DEBOUNCE = 1.0

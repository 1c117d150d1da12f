"""Manifest subpackage - capability declarations and their on-disk loader."""

from pack_sentinel.manifest.loader import load_manifest, parse_argument_hint
from pack_sentinel.manifest.models import (
    AgentDef,
    CapabilityManifest,
    CommandArgument,
    CommandDef,
    HttpServerDef,
    McpServerDef,
    ReferenceDoc,
    SkillDef,
    StdioServerDef,
)

__all__ = [
    "AgentDef",
    "CapabilityManifest",
    "CommandArgument",
    "CommandDef",
    "HttpServerDef",
    "McpServerDef",
    "ReferenceDoc",
    "SkillDef",
    "StdioServerDef",
    "load_manifest",
    "parse_argument_hint",
]

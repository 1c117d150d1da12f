"""Capability registration and lookup."""

import itertools
import logging
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

from pack_sentinel.manifest.models import (
    AgentDef,
    CapabilityManifest,
    CommandDef,
    HttpServerDef,
    SkillDef,
    StdioServerDef,
)

logger = logging.getLogger(__name__)

ServerDef = Union[StdioServerDef, HttpServerDef]

_generation_counter = itertools.count(1)


class CapabilityRegistry:
    """Read-only lookup tables over one :class:`CapabilityManifest`.

    Every map is built once in the constructor and exposed through
    ``MappingProxyType``.  A reload constructs a new registry instead of
    mutating this one, so concurrent readers need no locking.
    """

    def __init__(self, manifest: CapabilityManifest) -> None:
        self._manifest = manifest
        self._generation = next(_generation_counter)
        self._loaded_at = datetime.now(timezone.utc)

        self._agents: Mapping[str, AgentDef] = MappingProxyType(
            {a.name: a for a in manifest.agents}
        )
        self._commands: Mapping[Tuple[str, str], CommandDef] = MappingProxyType(
            {(c.namespace, c.name): c for c in manifest.commands}
        )
        self._skills: Mapping[str, SkillDef] = MappingProxyType(
            {s.name: s for s in manifest.skills}
        )
        self._servers: Mapping[str, ServerDef] = MappingProxyType(
            {s.name: s for s in manifest.mcp_servers}
        )

        by_topic: Dict[str, List[SkillDef]] = {}
        for skill in manifest.skills:
            for topic in dict.fromkeys(t.lower() for t in skill.topics):
                by_topic.setdefault(topic, []).append(skill)
        self._skills_by_topic: Mapping[str, Tuple[SkillDef, ...]] = MappingProxyType(
            {topic: tuple(skills) for topic, skills in by_topic.items()}
        )

        self._categories = frozenset(
            a.category.lower() for a in manifest.agents if a.category
        )

        logger.info(
            "CapabilityRegistry #%d built: %d agent(s), %d command(s), %d skill(s), "
            "%d MCP server(s).",
            self._generation,
            len(self._agents),
            len(self._commands),
            len(self._skills),
            len(self._servers),
        )

    # ── Metadata ─────────────────────────────────────────────────────

    @property
    def manifest(self) -> CapabilityManifest:
        return self._manifest

    @property
    def generation(self) -> int:
        """Monotonic build number, distinct for every registry instance."""
        return self._generation

    @property
    def loaded_at(self) -> datetime:
        return self._loaded_at

    @property
    def categories(self) -> frozenset:
        """Lower-cased agent category tags present in this registry."""
        return self._categories

    # ── Lookups ──────────────────────────────────────────────────────

    def lookup_agent(self, name: str) -> Optional[AgentDef]:
        return self._agents.get(name)

    def lookup_command(self, namespace: str, name: str) -> Optional[CommandDef]:
        return self._commands.get((namespace, name))

    def lookup_command_id(self, command_id: str) -> Optional[CommandDef]:
        """Look up ``namespace:name`` (a leading ``/`` is ignored)."""
        namespace, _, name = command_id.lstrip("/").rpartition(":")
        return self._commands.get((namespace, name))

    def lookup_skill(self, name: str) -> Optional[SkillDef]:
        return self._skills.get(name)

    def lookup_mcp_server(self, name: str) -> Optional[ServerDef]:
        return self._servers.get(name)

    def find_skills_by_topic(self, tag: str) -> Tuple[SkillDef, ...]:
        """Skills having at least one reference document tagged *tag*."""
        return self._skills_by_topic.get(tag.lower(), ())

    # ── Listings (load order) ────────────────────────────────────────

    def list_agents(self) -> Tuple[AgentDef, ...]:
        return self._manifest.agents

    def list_commands(self) -> Tuple[CommandDef, ...]:
        return self._manifest.commands

    def list_skills(self) -> Tuple[SkillDef, ...]:
        return self._manifest.skills

    def list_mcp_servers(self) -> Tuple[ServerDef, ...]:
        return self._manifest.mcp_servers

    def __repr__(self) -> str:
        counts = self._manifest.counts()
        return (
            f"CapabilityRegistry(generation={self._generation}, agents={counts['agents']}, "
            f"commands={counts['commands']}, skills={counts['skills']}, "
            f"mcp_servers={counts['mcp_servers']})"
        )

"""Capability manifest data model.

Agents, commands and skills are plain frozen dataclasses: their bodies are
opaque prose handed to the host verbatim.  MCP server declarations are
validated with Pydantic models, mirroring how backend servers are
configured elsewhere in the package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator

# ── Agents, commands, skills ─────────────────────────────────────────────


@dataclass(frozen=True)
class AgentDef:
    """A named persona selected by the dispatcher."""

    name: str
    description: str
    body: str = ""
    category: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    keywords: Tuple[str, ...] = ()
    mcp_servers: Tuple[str, ...] = ()
    source: str = ""
    order: int = 0

    @property
    def identity(self) -> str:
        return self.name


@dataclass(frozen=True)
class CommandArgument:
    """One named parameter of a slash command."""

    name: str
    required: bool = False
    description: str = ""


@dataclass(frozen=True)
class CommandDef:
    """An explicitly invoked capability (``/namespace:name``)."""

    name: str
    description: str
    namespace: str = ""
    arguments: Tuple[CommandArgument, ...] = ()
    body: str = ""
    mcp_servers: Tuple[str, ...] = ()
    source: str = ""
    order: int = 0

    @property
    def identity(self) -> str:
        return f"{self.namespace}:{self.name}" if self.namespace else self.name

    @property
    def required_arguments(self) -> Tuple[CommandArgument, ...]:
        return tuple(a for a in self.arguments if a.required)


@dataclass(frozen=True)
class ReferenceDoc:
    """A deep-dive document attached to a skill.

    The body is read from *path* only when :attr:`body` is accessed, so
    a manifest can describe large reference sets without holding them in
    memory.  ``size`` is the UTF-8 byte length of the body.
    """

    topic: str
    size: int
    path: Optional[str] = None
    _text: Optional[str] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_text(cls, topic: str, text: str) -> ReferenceDoc:
        return cls(topic=topic, size=len(text.encode("utf-8")), _text=text)

    @classmethod
    def from_file(cls, topic: str, path: Path) -> ReferenceDoc:
        return cls(topic=topic, size=path.stat().st_size, path=str(path))

    @property
    def body(self) -> str:
        if self._text is not None:
            return self._text
        if self.path is None:
            return ""
        return Path(self.path).read_bytes().decode("utf-8", errors="replace")


@dataclass(frozen=True)
class SkillDef:
    """A reusable reference body plus progressively disclosed documents."""

    name: str
    description: str
    summary: str = ""
    references: Tuple[ReferenceDoc, ...] = ()
    keywords: Tuple[str, ...] = ()
    mcp_servers: Tuple[str, ...] = ()
    source: str = ""
    order: int = 0

    @property
    def identity(self) -> str:
        return self.name

    @property
    def topics(self) -> Tuple[str, ...]:
        return tuple(ref.topic for ref in self.references)

    @property
    def summary_size(self) -> int:
        return len(self.summary.encode("utf-8"))


# ── MCP server declarations ──────────────────────────────────────────────


class StdioServerDef(BaseModel):
    """An MCP server launched as a local subprocess speaking over stdio."""

    name: str = Field(..., min_length=1)
    transport: Literal["stdio"]
    command: str = Field(..., min_length=1, description="Executable to run")
    args: List[str] = Field(default_factory=list)
    env: Optional[Dict[str, str]] = None
    source: str = ""

    model_config = {"frozen": True}

    @field_validator("command")
    @classmethod
    def _strip_command(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("command must be a non-empty string")
        return v


class HttpServerDef(BaseModel):
    """A remote MCP server reachable over HTTP."""

    name: str = Field(..., min_length=1)
    transport: Literal["http"]
    url: str = Field(..., min_length=1, description="HTTP endpoint URL")
    headers: Optional[Dict[str, str]] = Field(
        default=None,
        description="Extra HTTP headers (e.g. Authorization). Supports ${ENV_VAR}.",
    )
    source: str = ""

    model_config = {"frozen": True}

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL '{v}' must start with http:// or https://")
        return v


# Discriminated union: pick the right model based on "transport" field
McpServerDef = Annotated[
    Union[StdioServerDef, HttpServerDef],
    Field(discriminator="transport"),
]


# ── Manifest root ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CapabilityManifest:
    """The full, validated set of capability declarations from disk."""

    agents: Tuple[AgentDef, ...] = ()
    commands: Tuple[CommandDef, ...] = ()
    skills: Tuple[SkillDef, ...] = ()
    mcp_servers: Tuple[Union[StdioServerDef, HttpServerDef], ...] = ()
    roots: Tuple[str, ...] = ()

    def counts(self) -> Dict[str, int]:
        return {
            "agents": len(self.agents),
            "commands": len(self.commands),
            "skills": len(self.skills),
            "mcp_servers": len(self.mcp_servers),
        }

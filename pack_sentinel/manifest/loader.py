"""Manifest loading and validation.

Walks one or more plugin roots and builds a :class:`CapabilityManifest`.
Layout of a root::

    <root>/
      agents/<category>/<agent>.md
      commands/<namespace>/<command>.md
      skills/<skill>/SKILL.md
      skills/<skill>/references/*.md
      mcp/<server>.yaml|.yml|.json
      .mcp.json
      .claude-plugin/plugin.json

The public API is :func:`load_manifest`.  It either returns a complete
manifest or raises a :class:`LoadError` subclass; it never returns a
partially loaded manifest and never touches global state.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

import yaml
from pydantic import TypeAdapter, ValidationError

from pack_sentinel.config.env import expand_env_vars
from pack_sentinel.constants import (
    AGENTS_DIRNAME,
    COMMANDS_DIRNAME,
    MAX_FILE_BYTES,
    MCP_DIRNAME,
    MCP_JSON_FILENAME,
    PLUGIN_JSON_PATH,
    REFERENCES_DIRNAME,
    SKILL_FILENAME,
    SKILLS_DIRNAME,
)
from pack_sentinel.errors import (
    DuplicateNameError,
    FileTooLargeError,
    ManifestParseError,
    MissingFieldError,
    UnknownServerError,
)
from pack_sentinel.manifest.frontmatter import split_frontmatter
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

logger = logging.getLogger(__name__)

_SERVER_ADAPTER: TypeAdapter = TypeAdapter(McpServerDef)

# Transport names used by other plugin ecosystems for the same thing.
_TRANSPORT_ALIASES = {"streamable-http": "http"}

_ARG_HINT_RE = re.compile(r"<([^>]+)>|\[([^\]]+)\]")

_IGNORED_DOCS = frozenset({"readme.md"})

PathLike = Union[str, os.PathLike]


# ── Field helpers ────────────────────────────────────────────────────────


def _require_str(meta: Dict[str, Any], key: str, kind: str, path: str) -> str:
    value = meta.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingFieldError(kind, key, path)
    if not isinstance(value, str):
        raise ManifestParseError(f"Field '{key}' must be a string", path)
    return value.strip()


def _optional_str(meta: Dict[str, Any], key: str) -> Optional[str]:
    value = meta.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _str_tuple(meta: Dict[str, Any], *keys: str) -> Tuple[str, ...]:
    """Read a list-of-strings field, accepting a comma-separated string too."""
    for key in keys:
        value = meta.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            items: Iterable[Any] = value.split(",")
        elif isinstance(value, list):
            items = value
        else:
            items = [value]
        return tuple(s for s in (str(item).strip() for item in items) if s)
    return ()


def _read_document(path: Path, max_file_bytes: int) -> str:
    """Read a UTF-8 document after enforcing the size ceiling."""
    try:
        size = path.stat().st_size
    except OSError as exc:
        raise ManifestParseError(f"Cannot stat file: {exc}", str(path)) from exc
    if size > max_file_bytes:
        raise FileTooLargeError(str(path), size, max_file_bytes)
    try:
        return path.read_bytes().decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ManifestParseError(f"File is not valid UTF-8: {exc}", str(path)) from exc
    except OSError as exc:
        raise ManifestParseError(f"Cannot read file: {exc}", str(path)) from exc


def _iter_markdown(base: Path) -> List[Path]:
    """Return ``*.md`` files under *base* in a stable, path-sorted order."""
    if not base.is_dir():
        return []
    files = [
        p for p in base.rglob("*.md") if p.is_file() and p.name.lower() not in _IGNORED_DOCS
    ]
    return sorted(files, key=lambda p: p.relative_to(base).as_posix())


def _format_validation_errors(exc: ValidationError) -> str:
    """Format Pydantic validation errors into a readable multi-line string."""
    lines: List[str] = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        lines.append(f"  • {loc}: {err['msg']}")
    return "\n".join(lines)


def parse_argument_hint(hint: str) -> Tuple[CommandArgument, ...]:
    """Turn an ``argument-hint`` string into named parameters.

    ``<name>`` marks a required argument, ``[name]`` an optional one.
    A hint without brackets becomes a single optional argument.
    """
    hint = hint.strip()
    if not hint:
        return ()
    found = [
        CommandArgument(name=(req or opt).strip(), required=bool(req))
        for req, opt in _ARG_HINT_RE.findall(hint)
    ]
    if found:
        return tuple(found)
    return (CommandArgument(name=hint, required=False),)


def _parse_arguments(meta: Dict[str, Any], path: str) -> Tuple[CommandArgument, ...]:
    declared = meta.get("arguments")
    if declared is None:
        hint = meta.get("argument-hint", meta.get("argument_hint"))
        return parse_argument_hint(str(hint)) if hint else ()

    if not isinstance(declared, list):
        raise ManifestParseError("'arguments' must be a list", path)
    args: List[CommandArgument] = []
    for i, item in enumerate(declared):
        if isinstance(item, str) and item.strip():
            args.append(CommandArgument(name=item.strip()))
        elif isinstance(item, dict) and item.get("name"):
            args.append(
                CommandArgument(
                    name=str(item["name"]).strip(),
                    required=bool(item.get("required", False)),
                    description=str(item.get("description", "")).strip(),
                )
            )
        else:
            raise ManifestParseError(f"Argument {i}: must be a string or an object with 'name'", path)
    return tuple(args)


# ── Builder ──────────────────────────────────────────────────────────────


class _ManifestBuilder:
    """Accumulates definitions and enforces per-kind identity uniqueness."""

    def __init__(self, max_file_bytes: int) -> None:
        self.max_file_bytes = max_file_bytes
        self.agents: List[AgentDef] = []
        self.commands: List[CommandDef] = []
        self.skills: List[SkillDef] = []
        self.servers: List[Union[StdioServerDef, HttpServerDef]] = []
        self._seen: Dict[str, Dict[str, str]] = {
            "agent": {},
            "command": {},
            "skill": {},
            "mcp server": {},
        }
        self._loaded_json: Set[str] = set()
        self._order = 0

    def _claim(self, kind: str, identity: str, source: str) -> None:
        seen = self._seen[kind]
        if identity in seen:
            first, second = sorted((seen[identity], source))
            raise DuplicateNameError(kind, identity, first, second)
        seen[identity] = source

    def _next_order(self) -> int:
        order = self._order
        self._order += 1
        return order

    # ── Agents ───────────────────────────────────────────────────────

    def add_agents(self, root: Path) -> None:
        base = root / AGENTS_DIRNAME
        for path in _iter_markdown(base):
            src = str(path)
            meta, body = split_frontmatter(_read_document(path, self.max_file_bytes), src)
            name = _require_str(meta, "name", "agent", src)
            description = _require_str(meta, "description", "agent", src)

            rel_parts = path.relative_to(base).parts
            category = _optional_str(meta, "category")
            if category is None and len(rel_parts) > 1:
                category = rel_parts[0]

            self._claim("agent", name, src)
            self.agents.append(
                AgentDef(
                    name=name,
                    description=description,
                    body=body,
                    category=category,
                    model=_optional_str(meta, "model"),
                    color=_optional_str(meta, "color"),
                    keywords=_str_tuple(meta, "keywords"),
                    mcp_servers=_str_tuple(meta, "mcp-servers", "mcp_servers"),
                    source=src,
                    order=self._next_order(),
                )
            )
            logger.debug("Agent '%s' loaded (category=%s) from %s", name, category, src)

    # ── Commands ─────────────────────────────────────────────────────

    def add_commands(self, root: Path) -> None:
        base = root / COMMANDS_DIRNAME
        for path in _iter_markdown(base):
            src = str(path)
            meta, body = split_frontmatter(_read_document(path, self.max_file_bytes), src)
            name = _require_str(meta, "name", "command", src).lstrip("/")
            description = _require_str(meta, "description", "command", src)

            namespace = _optional_str(meta, "namespace")
            if namespace is None:
                if ":" in name:
                    namespace, _, name = name.rpartition(":")
                else:
                    namespace = ":".join(path.relative_to(base).parent.parts)
            if not name:
                raise MissingFieldError("command", "name", src)

            cmd = CommandDef(
                name=name,
                description=description,
                namespace=namespace,
                arguments=_parse_arguments(meta, src),
                body=body,
                mcp_servers=_str_tuple(meta, "mcp-servers", "mcp_servers"),
                source=src,
                order=self._next_order(),
            )
            self._claim("command", cmd.identity, src)
            self.commands.append(cmd)
            logger.debug("Command '/%s' loaded from %s", cmd.identity, src)

    # ── Skills ───────────────────────────────────────────────────────

    def add_skills(self, root: Path) -> None:
        base = root / SKILLS_DIRNAME
        if not base.is_dir():
            return
        for skill_dir in sorted(p for p in base.iterdir() if p.is_dir()):
            skill_file = skill_dir / SKILL_FILENAME
            if not skill_file.is_file():
                logger.debug("Skipping %s: no %s", skill_dir, SKILL_FILENAME)
                continue
            src = str(skill_file)
            meta, body = split_frontmatter(_read_document(skill_file, self.max_file_bytes), src)
            name = _require_str(meta, "name", "skill", src)
            description = _require_str(meta, "description", "skill", src)

            self._claim("skill", name, src)
            self.skills.append(
                SkillDef(
                    name=name,
                    description=description,
                    summary=body,
                    references=self._skill_references(skill_dir, meta, src),
                    keywords=_str_tuple(meta, "keywords"),
                    mcp_servers=_str_tuple(meta, "mcp-servers", "mcp_servers"),
                    source=src,
                    order=self._next_order(),
                )
            )
            logger.debug("Skill '%s' loaded from %s", name, src)

    def _reference(self, topic: str, path: Path) -> ReferenceDoc:
        size = path.stat().st_size
        if size > self.max_file_bytes:
            raise FileTooLargeError(str(path), size, self.max_file_bytes)
        return ReferenceDoc.from_file(topic, path)

    def _skill_references(
        self, skill_dir: Path, meta: Dict[str, Any], src: str
    ) -> Tuple[ReferenceDoc, ...]:
        declared = meta.get("references")
        if declared is None:
            ref_dir = skill_dir / REFERENCES_DIRNAME
            return tuple(self._reference(p.stem, p) for p in _iter_markdown(ref_dir))

        if not isinstance(declared, list):
            raise ManifestParseError("'references' must be a list", src)

        refs: List[ReferenceDoc] = []
        skill_root = skill_dir.resolve()
        for i, item in enumerate(declared):
            if isinstance(item, str):
                rel, topic = item, None
            elif isinstance(item, dict) and item.get("path"):
                rel, topic = str(item["path"]), item.get("topic")
            else:
                raise ManifestParseError(
                    f"Reference {i}: must be a path or an object with 'path'", src
                )
            ref_path = (skill_dir / rel).resolve()
            if skill_root not in ref_path.parents:
                raise ManifestParseError(f"Reference '{rel}' points outside the skill", src)
            if not ref_path.is_file():
                raise ManifestParseError(f"Reference '{rel}' does not exist", src)
            refs.append(self._reference(str(topic or ref_path.stem).strip(), ref_path))
        return tuple(refs)

    # ── MCP servers ──────────────────────────────────────────────────

    def add_servers(self, root: Path) -> None:
        self._add_server_mapping_file(root / MCP_JSON_FILENAME, root)

        plugin_json = root.joinpath(*PLUGIN_JSON_PATH)
        if plugin_json.is_file():
            data = self._load_json(plugin_json)
            declared = data.get("mcpServers")
            if isinstance(declared, str):
                self._add_server_mapping_file(root / declared, root)
            elif isinstance(declared, dict):
                self._add_server_mapping(declared, str(plugin_json))
            elif declared is not None:
                raise ManifestParseError("'mcpServers' must be an object or a path", str(plugin_json))

        mcp_dir = root / MCP_DIRNAME
        if mcp_dir.is_dir():
            for path in sorted(mcp_dir.iterdir()):
                if path.suffix.lower() not in (".yaml", ".yml", ".json") or not path.is_file():
                    continue
                raw = self._load_structured(path)
                self._add_server(str(raw.get("name") or path.stem), raw, str(path))

    def _add_server_mapping_file(self, path: Path, root: Path) -> None:
        if not path.is_file():
            return
        key = str(path.resolve())
        if key in self._loaded_json:
            return
        self._loaded_json.add(key)
        data = self._load_json(path)
        servers = data.get("mcpServers", data)
        if not isinstance(servers, dict):
            raise ManifestParseError("'mcpServers' must be an object", str(path))
        self._add_server_mapping(servers, str(path))

    def _add_server_mapping(self, servers: Dict[str, Any], src: str) -> None:
        for name, raw in servers.items():
            self._add_server(str(name), raw, src)

    def _add_server(self, name: str, raw: Any, src: str) -> None:
        if not isinstance(raw, dict):
            raise ManifestParseError(f"MCP server '{name}' must be an object", src)
        raw = expand_env_vars(raw)
        transport = raw.get("transport", raw.get("type"))
        if not transport:
            raise MissingFieldError("mcp server", "transport", src)
        transport = _TRANSPORT_ALIASES.get(str(transport), str(transport))

        data = {k: v for k, v in raw.items() if k not in ("type", "transport", "name")}
        data.update(name=name, transport=transport, source=src)
        try:
            server = _SERVER_ADAPTER.validate_python(data)
        except ValidationError as exc:
            raise ManifestParseError(
                f"MCP server '{name}' is invalid ({len(exc.errors())} error(s)):\n"
                f"{_format_validation_errors(exc)}",
                src,
            ) from exc

        self._claim("mcp server", name, src)
        self.servers.append(server)
        logger.debug("MCP server '%s' (%s) declared in %s", name, transport, src)

    def _load_json(self, path: Path) -> Dict[str, Any]:
        text = _read_document(path, self.max_file_bytes)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ManifestParseError(f"Invalid JSON: {exc}", str(path)) from exc
        if not isinstance(data, dict):
            raise ManifestParseError("Top-level JSON content must be an object", str(path))
        return data

    def _load_structured(self, path: Path) -> Dict[str, Any]:
        if path.suffix.lower() == ".json":
            return self._load_json(path)
        text = _read_document(path, self.max_file_bytes)
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ManifestParseError(f"Invalid YAML: {exc}", str(path)) from exc
        if not isinstance(data, dict):
            raise ManifestParseError("Top-level YAML content must be a mapping", str(path))
        return data

    # ── Cross-checks ─────────────────────────────────────────────────

    def check_server_references(self) -> None:
        declared = self._seen["mcp server"]
        capabilities: List[Union[AgentDef, CommandDef, SkillDef]] = [
            *self.agents,
            *self.commands,
            *self.skills,
        ]
        for cap in capabilities:
            for server in cap.mcp_servers:
                if server not in declared:
                    raise UnknownServerError(cap.identity, server, cap.source)


# ── Public API ───────────────────────────────────────────────────────────


def load_manifest(
    root_paths: Sequence[PathLike],
    *,
    max_file_bytes: int = MAX_FILE_BYTES,
) -> CapabilityManifest:
    """Load, validate, and return the capability manifest for *root_paths*.

    Roots are processed in the given order; within a root, agents,
    commands, skills and MCP servers are read in path-sorted order, which
    defines the load order used as the final dispatch tie-breaker.

    Raises:
        LoadError: On the first malformed, oversized, or duplicate
            definition.  Nothing is returned in that case.
    """
    builder = _ManifestBuilder(max_file_bytes)
    roots: List[str] = []

    for root_path in root_paths:
        root = Path(root_path).expanduser()
        if not root.is_dir():
            raise ManifestParseError("Manifest root does not exist or is not a directory", str(root))
        logger.debug("Loading manifest root: %s", root)
        builder.add_agents(root)
        builder.add_commands(root)
        builder.add_skills(root)
        builder.add_servers(root)
        roots.append(str(root))

    builder.check_server_references()

    manifest = CapabilityManifest(
        agents=tuple(builder.agents),
        commands=tuple(builder.commands),
        skills=tuple(builder.skills),
        mcp_servers=tuple(builder.servers),
        roots=tuple(roots),
    )
    counts = manifest.counts()
    logger.info(
        "Manifest loaded from %d root(s): %d agent(s), %d command(s), %d skill(s), "
        "%d MCP server(s).",
        len(roots),
        counts["agents"],
        counts["commands"],
        counts["skills"],
        counts["mcp_servers"],
    )
    return manifest

"""CLI argument parsing and main entry point.

Subcommands:

* ``pack-sentinel validate``  load every root and report errors.
* ``pack-sentinel list``      list loaded capabilities.
* ``pack-sentinel resolve``   dispatch a request and show the ranking.
* ``pack-sentinel disclose``  stream a skill's content under a budget.
* ``pack-sentinel probe``     start or reach declared MCP servers.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from pack_sentinel.bridge.disclosure import DisclosureChunk
from pack_sentinel.config.loader import load_pack_config
from pack_sentinel.config.schema import PackConfig
from pack_sentinel.constants import SERVER_NAME, SERVER_VERSION
from pack_sentinel.display.logging_config import setup_logging
from pack_sentinel.errors import ConfigurationError, LoadError
from pack_sentinel.runtime.service import PackService

module_logger = logging.getLogger(__name__)

# Config file search order in the working directory (first match wins)
_CONFIG_SEARCH_ORDER = ("pack-sentinel.yaml", "pack-sentinel.yml")
CONFIG_ENV_VAR = "PACK_SENTINEL_CONFIG"

_KINDS = ("agents", "commands", "skills", "mcp")


def _find_config_file() -> Optional[str]:
    """Locate the config file: ``$PACK_SENTINEL_CONFIG``, then the CWD."""
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return from_env
    for name in _CONFIG_SEARCH_ORDER:
        candidate = os.path.join(os.getcwd(), name)
        if os.path.isfile(candidate):
            return candidate
    return None


def _load_config(args: argparse.Namespace) -> PackConfig:
    cfg_path = args.config or _find_config_file()
    config = load_pack_config(cfg_path) if cfg_path else PackConfig()
    if args.root:
        roots = [os.path.abspath(r) for r in args.root]
        config = config.model_copy(
            update={"manifest": config.manifest.model_copy(update={"roots": roots})}
        )
    return config


def _build_service(args: argparse.Namespace) -> PackService:
    service = PackService(_load_config(args))
    service.load()
    return service


def _emit_json(data: object) -> None:
    print(json.dumps(data, indent=2, default=str))


# ── ``pack-sentinel validate`` ──────────────────────────────────────────


def _cmd_validate(args: argparse.Namespace) -> int:
    service = _build_service(args)
    counts = service.registry.manifest.counts()
    if args.json:
        _emit_json({"valid": True, "counts": counts})
    else:
        summary = ", ".join(f"{n} {kind}" for kind, n in counts.items())
        print(f"OK: {summary}")
    return 0


# ── ``pack-sentinel list`` ──────────────────────────────────────────────


def _cmd_list(args: argparse.Namespace) -> int:
    registry = _build_service(args).registry
    kinds = [args.kind] if args.kind else list(_KINDS)
    rows = {}
    if "agents" in kinds:
        rows["agents"] = [
            {"name": a.name, "category": a.category, "description": a.description}
            for a in registry.list_agents()
        ]
    if "commands" in kinds:
        rows["commands"] = [
            {
                "name": f"/{c.identity}",
                "arguments": [a.name for a in c.arguments],
                "description": c.description,
            }
            for c in registry.list_commands()
        ]
    if "skills" in kinds:
        rows["skills"] = [
            {"name": s.name, "topics": list(s.topics), "description": s.description}
            for s in registry.list_skills()
        ]
    if "mcp" in kinds:
        rows["mcp"] = [
            {"name": m.name, "transport": m.transport} for m in registry.list_mcp_servers()
        ]

    if args.json:
        _emit_json(rows)
        return 0
    for kind, entries in rows.items():
        print(f"{kind} ({len(entries)}):")
        for entry in entries:
            extra = entry.get("category") or entry.get("transport") or ""
            label = f"  {entry['name']}"
            if extra:
                label += f" [{extra}]"
            if entry.get("description"):
                label += f"  {entry['description']}"
            print(label)
    return 0


# ── ``pack-sentinel resolve`` ───────────────────────────────────────────


async def _resolve(service: PackService, args: argparse.Namespace) -> int:
    text = " ".join(args.text)
    result = service.resolve(text, category=args.category)
    payload = result.to_dict()
    if args.tools:
        async with service:
            tools = await service.prepare_tools(result)
        payload["tools"] = {name: t.model_dump() for name, t in tools.items()}

    if args.json:
        _emit_json(payload)
    else:
        print(f"{result.outcome.value}: {result.reason}")
        for rank, cand in enumerate(result.candidates, start=1):
            print(f"  {rank}. {cand.kind.value} {cand.name} (score {cand.score:.3f})")
        for name, tool in payload.get("tools", {}).items():
            state = "available" if tool["available"] else f"unavailable ({tool['error']})"
            print(f"  tool {name}: {state}")
    return 0 if result.matched else 2


def _cmd_resolve(args: argparse.Namespace) -> int:
    return asyncio.run(_resolve(_build_service(args), args))


# ── ``pack-sentinel disclose`` ──────────────────────────────────────────


def _cmd_disclose(args: argparse.Namespace) -> int:
    service = _build_service(args)
    try:
        items = service.disclose(args.skill, args.budget, topics=args.topic)
    except (LookupError, ValueError) as exc:
        print(f"Error: {exc.args[0]}", file=sys.stderr)
        return 1
    for item in items:
        if isinstance(item, DisclosureChunk):
            header = item.kind if item.topic is None else f"{item.kind}: {item.topic}"
            print(f"── {header} ({item.size}) ──")
            print(item.body.rstrip("\n"))
        else:
            print(f"── {item.describe()} ──")
    return 0


# ── ``pack-sentinel probe`` ─────────────────────────────────────────────


async def _probe(service: PackService, names: List[str], as_json: bool) -> int:
    registry = service.registry
    servers = registry.list_mcp_servers()
    if names:
        unknown = [n for n in names if registry.lookup_mcp_server(n) is None]
        if unknown:
            print(f"Error: undeclared MCP server(s): {', '.join(unknown)}", file=sys.stderr)
            return 1
        servers = tuple(s for s in servers if s.name in names)

    report = {}
    async with service:
        for server in servers:
            avail = await service.ensure_server(server.name, registry)
            report[server.name] = avail.model_dump()

    if as_json:
        _emit_json(report)
    else:
        for name, avail in report.items():
            state = "ok" if avail["available"] else f"FAILED ({avail['error']})"
            print(f"{name} [{avail['transport']}]: {state}")
    return 0 if all(a["available"] for a in report.values()) else 1


def _cmd_probe(args: argparse.Namespace) -> int:
    return asyncio.run(_probe(_build_service(args), args.names, args.json))


# ── Parser ──────────────────────────────────────────────────────────────


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser with its subcommands."""
    parser = argparse.ArgumentParser(
        prog="pack-sentinel",
        description=f"{SERVER_NAME} v{SERVER_VERSION}",
    )
    parser.add_argument(
        "--config",
        "-c",
        default=None,
        help=f"Path to a YAML config file (default: ${CONFIG_ENV_VAR} or ./pack-sentinel.yaml)",
    )
    parser.add_argument(
        "--root",
        "-r",
        action="append",
        default=None,
        help="Plugin root directory (repeatable, overrides the config's roots)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["debug", "info", "warning", "error", "critical"],
        help="Write a log file at this level (default: no log file)",
    )
    parser.add_argument("--log-dir", default=None, help="Directory for log files")
    parser.add_argument(
        "--version", action="version", version=f"{SERVER_NAME} {SERVER_VERSION}"
    )

    subparsers = parser.add_subparsers(dest="command")

    sp_validate = subparsers.add_parser("validate", help="Load all roots and report errors")
    sp_validate.add_argument("--json", action="store_true", help="JSON output")
    sp_validate.set_defaults(func=_cmd_validate)

    sp_list = subparsers.add_parser("list", help="List loaded capabilities")
    sp_list.add_argument("kind", nargs="?", choices=_KINDS, help="Only this kind")
    sp_list.add_argument("--json", action="store_true", help="JSON output")
    sp_list.set_defaults(func=_cmd_list)

    sp_resolve = subparsers.add_parser("resolve", help="Dispatch a request")
    sp_resolve.add_argument("text", nargs="+", help="Request text, or /namespace:command args")
    sp_resolve.add_argument("--category", default=None, help="Preferred category tag")
    sp_resolve.add_argument(
        "--tools",
        action="store_true",
        help="Also start the MCP servers the selected capability declares",
    )
    sp_resolve.add_argument("--json", action="store_true", help="JSON output")
    sp_resolve.set_defaults(func=_cmd_resolve)

    sp_disclose = subparsers.add_parser("disclose", help="Disclose a skill under a budget")
    sp_disclose.add_argument("skill", help="Skill name")
    sp_disclose.add_argument("--budget", type=int, default=None, help="Reference budget")
    sp_disclose.add_argument(
        "--topic",
        action="append",
        default=None,
        help="Only disclose references with this topic (repeatable)",
    )
    sp_disclose.set_defaults(func=_cmd_disclose)

    sp_probe = subparsers.add_parser("probe", help="Start or reach declared MCP servers")
    sp_probe.add_argument("names", nargs="*", help="Server names (default: all)")
    sp_probe.add_argument("--json", action="store_true", help="JSON output")
    sp_probe.set_defaults(func=_cmd_probe)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Program entry point: parse arguments and dispatch to subcommand."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    if args.log_level:
        setup_logging(args.log_level, quiet=True, log_dir=args.log_dir)

    try:
        return args.func(args)
    except (ConfigurationError, LoadError) as exc:
        module_logger.error("%s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

"""Tests for the PackService runtime wiring."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

import httpx
import pytest

from pack_sentinel.bridge.dispatcher import DispatchOutcome
from pack_sentinel.bridge.disclosure import DisclosureChunk, WithheldMarker
from pack_sentinel.config import PackConfig, validate_config
from pack_sentinel.display.logging_config import build_log_config, setup_logging
from pack_sentinel.errors import ConfigurationError, DuplicateNameError, RegistryUnavailableError
from pack_sentinel.runtime import PackService, ServiceState

MISBEHAVING_SERVER = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), "servers", "misbehaving_server.py"
)


def _config(*roots: Path, **sections) -> PackConfig:
    raw = {"manifest": {"roots": [str(r) for r in roots]}}
    raw.update(sections)
    return validate_config(raw)


def _ok_transport() -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(200))


class TestPackServiceSync:
    def test_requires_roots(self) -> None:
        with pytest.raises(ConfigurationError, match="roots"):
            PackService(PackConfig()).load()

    def test_registry_unavailable_before_load(self, pack_root: Path) -> None:
        service = PackService(_config(pack_root))
        with pytest.raises(RegistryUnavailableError):
            service.resolve("anything")

    def test_resolve(self, pack_root: Path) -> None:
        service = PackService(_config(pack_root))
        service.load()
        result = service.resolve("review this diff for SQL injection risk")
        assert result.match.name == "security-sentinel"
        assert service.resolve("/workflows:review 42").match.name == "workflows:review"

    def test_resolve_with_category(self, pack_root: Path) -> None:
        service = PackService(_config(pack_root))
        service.load()
        result = service.resolve("gather framework documentation", category="research")
        assert result.match.name == "framework-docs-researcher"
        assert result.match.category_match

    def test_configured_scorer(self, pack_root: Path) -> None:
        service = PackService(_config(pack_root, dispatch={"scorer": "tfidf"}))
        assert service.dispatcher.scorer.name == "tfidf"

    def test_disclose_uses_configured_budget(self, pack_root: Path) -> None:
        service = PackService(_config(pack_root, disclosure={"budget": 0}))
        service.load()
        items = list(service.disclose("dhh-rails-style"))
        assert isinstance(items[0], DisclosureChunk)
        assert items[-1].withheld == ("controllers", "models")

    def test_disclose_budget_override_and_topics(self, pack_root: Path) -> None:
        service = PackService(_config(pack_root))
        service.load()
        items = list(service.disclose("dhh-rails-style", 10_000, topics=["models"]))
        assert [i.topic for i in items if isinstance(i, DisclosureChunk)] == [None, "models"]
        assert isinstance(items[-1], WithheldMarker)
        assert items[-1].complete

    def test_disclose_unknown_skill(self, pack_root: Path) -> None:
        service = PackService(_config(pack_root))
        service.load()
        with pytest.raises(LookupError, match="nope"):
            service.disclose("nope")

    def test_failed_load_sets_error_state(self, tmp_path: Path, write) -> None:
        write(tmp_path / "agents" / "a.md", {"name": "x", "description": "d"})
        write(tmp_path / "agents" / "b.md", {"name": "x", "description": "d"})
        service = PackService(_config(tmp_path))
        with pytest.raises(DuplicateNameError):
            service.load()
        assert service.state is ServiceState.ERROR
        assert "Duplicate" in service.status().last_error

    def test_reload_keeps_previous_on_failure(self, pack_root: Path, write) -> None:
        service = PackService(_config(pack_root))
        first = service.load()
        write(pack_root / "agents" / "broken.md", "no metadata")
        with pytest.raises(Exception):
            service.reload()
        assert service.registry is first
        assert service.resolve("manage git worktrees").outcome is DispatchOutcome.MATCHED


@pytest.mark.asyncio
class TestPackServiceAsync:
    async def test_lifecycle(self, pack_root: Path) -> None:
        service = PackService(_config(pack_root))
        assert service.state is ServiceState.PENDING
        async with service:
            assert service.state is ServiceState.RUNNING
            status = service.status()
            assert status.counts["agents"] == 3
            assert status.generation is not None
            assert not status.watching
        assert service.state is ServiceState.STOPPED

    async def test_prepare_tools_http(self, pack_root: Path) -> None:
        service = PackService(_config(pack_root), http_transport=_ok_transport())
        async with service:
            result = service.resolve("gather framework documentation")
            assert result.match.name == "framework-docs-researcher"
            tools = await service.prepare_tools(result)
            assert list(tools) == ["context7"]
            assert tools["context7"].available
            assert tools["context7"].transport == "http"
            assert service.status().sessions == 1
        assert service.sessions.list_sessions() == []

    async def test_start_failure_degrades(self, pack_root: Path) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(502))
        service = PackService(_config(pack_root), http_transport=transport)
        async with service:
            result = service.resolve("gather framework documentation")
            tools = await service.prepare_tools(result)
            assert result.matched
            assert not tools["context7"].available
            assert "502" in tools["context7"].error

    async def test_no_servers_declared(self, pack_root: Path) -> None:
        async with PackService(_config(pack_root)) as service:
            result = service.resolve("review this diff for SQL injection risk")
            assert await service.prepare_tools(result) == {}
            not_found = service.resolve("/nope")
            assert await service.prepare_tools(not_found) == {}

    async def test_stdio_server_stopped_on_exit(self, tmp_path: Path, write) -> None:
        write(
            tmp_path / ".mcp.json",
            json.dumps(
                {
                    "mcpServers": {
                        "local-docs": {
                            "type": "stdio",
                            "command": sys.executable,
                            "args": [MISBEHAVING_SERVER, "noisy"],
                        }
                    }
                }
            ),
        )
        write(
            tmp_path / "skills" / "local-docs" / "SKILL.md",
            {
                "name": "local-docs",
                "description": "Search local documentation",
                "mcp-servers": ["local-docs"],
            },
        )
        service = PackService(_config(tmp_path))
        async with service:
            result = service.resolve("search local documentation")
            tools = await service.prepare_tools(result)
            assert tools["local-docs"].available
            handle = service.sessions.get("local-docs")
            assert handle.alive
        assert not handle.alive

    async def test_watcher_reloads(self, pack_root: Path, write) -> None:
        config = _config(pack_root, watch={"enabled": True, "poll_interval": 0.05, "debounce": 0.05})
        async with PackService(config) as service:
            assert service.watcher is not None and service.watcher.watching
            before = service.registry.generation
            write(
                pack_root / "agents" / "review" / "performance-oracle.md",
                {"name": "performance-oracle", "description": "Performance analysis"},
            )
            for _ in range(40):
                await asyncio.sleep(0.05)
                if service.registry.generation != before:
                    break
            assert service.registry.lookup_agent("performance-oracle") is not None
        assert service.watcher is None

    async def test_watcher_ignores_bad_edit(self, pack_root: Path, write) -> None:
        config = _config(pack_root, watch={"enabled": True, "poll_interval": 0.05, "debounce": 0.05})
        async with PackService(config) as service:
            registry = service.registry
            write(pack_root / "agents" / "broken.md", "no metadata")
            for _ in range(40):
                await asyncio.sleep(0.05)
                if service.holder.last_error is not None:
                    break
            assert service.holder.last_error is not None
            assert service.registry is registry


class TestLoggingConfig:
    def test_build_log_config(self) -> None:
        cfg = build_log_config("DEBUG", "/tmp/x.log")
        assert cfg["handlers"]["file_handler"]["filename"] == "/tmp/x.log"
        assert cfg["loggers"]["pack_sentinel"]["level"] == "DEBUG"
        assert cfg["loggers"]["mcp"]["level"] == "DEBUG"
        assert cfg["root"]["level"] == "DEBUG"
        assert build_log_config("INFO", "/tmp/x.log")["root"]["level"] == "WARNING"

    def test_setup_logging_writes_file(self, tmp_path: Path, reset_logging) -> None:
        log_fpath, level = setup_logging("bogus", quiet=True, log_dir=str(tmp_path))
        assert level == "INFO"
        assert os.path.dirname(log_fpath) == str(tmp_path)
        logging.getLogger("pack_sentinel.test").info("hello from the test")
        for handler in logging.getLogger("pack_sentinel").handlers:
            handler.flush()
        with open(log_fpath, encoding="utf-8") as f:
            assert "hello from the test" in f.read()

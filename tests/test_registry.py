"""Tests for the capability registry, snapshot reloads and manifest diffs."""

from __future__ import annotations

import functools
import threading
import time
from pathlib import Path

import pytest

from pack_sentinel.bridge.capability_registry import CapabilityRegistry
from pack_sentinel.bridge.snapshot import RegistryHolder
from pack_sentinel.errors import DuplicateNameError, RegistryUnavailableError
from pack_sentinel.manifest import (
    AgentDef,
    CapabilityManifest,
    CommandDef,
    ReferenceDoc,
    SkillDef,
    load_manifest,
)
from pack_sentinel.manifest.diff import compute_diff


def _manifest() -> CapabilityManifest:
    return CapabilityManifest(
        agents=(
            AgentDef(name="security-sentinel", description="Security audits", category="Review"),
            AgentDef(name="best-practices-researcher", description="Research", order=1),
        ),
        commands=(
            CommandDef(name="review", description="Review", namespace="workflows", order=2),
            CommandDef(name="changelog", description="Changelog", order=3),
        ),
        skills=(
            SkillDef(
                name="dhh-rails-style",
                description="Rails style",
                references=(
                    ReferenceDoc.from_text("Controllers", "c"),
                    ReferenceDoc.from_text("models", "m"),
                ),
                order=4,
            ),
            SkillDef(
                name="andrew-kane-gem-writer",
                description="Gems",
                references=(ReferenceDoc.from_text("models", "m"),),
                order=5,
            ),
        ),
    )


class TestCapabilityRegistry:
    def test_lookup_returns_loaded_entities(self) -> None:
        manifest = _manifest()
        registry = CapabilityRegistry(manifest)
        for agent in manifest.agents:
            assert registry.lookup_agent(agent.name) is agent
        for skill in manifest.skills:
            assert registry.lookup_skill(skill.name) is skill
        assert registry.lookup_command("workflows", "review") is manifest.commands[0]
        assert registry.lookup_command("", "changelog") is manifest.commands[1]

    def test_lookup_missing(self) -> None:
        registry = CapabilityRegistry(_manifest())
        assert registry.lookup_agent("nope") is None
        assert registry.lookup_command("workflows", "nope") is None
        assert registry.lookup_skill("nope") is None
        assert registry.lookup_mcp_server("nope") is None

    def test_lookup_command_id(self) -> None:
        registry = CapabilityRegistry(_manifest())
        assert registry.lookup_command_id("/workflows:review").name == "review"
        assert registry.lookup_command_id("workflows:review").name == "review"
        assert registry.lookup_command_id("changelog").name == "changelog"
        assert registry.lookup_command_id("review") is None

    def test_find_skills_by_topic_is_case_insensitive(self) -> None:
        registry = CapabilityRegistry(_manifest())
        assert [s.name for s in registry.find_skills_by_topic("controllers")] == [
            "dhh-rails-style"
        ]
        assert [s.name for s in registry.find_skills_by_topic("MODELS")] == [
            "dhh-rails-style",
            "andrew-kane-gem-writer",
        ]
        assert registry.find_skills_by_topic("views") == ()

    def test_listings_keep_load_order(self) -> None:
        manifest = _manifest()
        registry = CapabilityRegistry(manifest)
        assert registry.list_agents() == manifest.agents
        assert registry.list_skills() == manifest.skills
        assert registry.list_commands() == manifest.commands

    def test_categories_lower_cased(self) -> None:
        assert CapabilityRegistry(_manifest()).categories == frozenset({"review"})

    def test_generation_is_unique(self) -> None:
        a = CapabilityRegistry(_manifest())
        b = CapabilityRegistry(_manifest())
        assert b.generation > a.generation

    def test_maps_are_read_only(self) -> None:
        registry = CapabilityRegistry(_manifest())
        with pytest.raises(TypeError):
            registry._agents["x"] = None  # type: ignore[index]

    def test_repr(self) -> None:
        assert "agents=2" in repr(CapabilityRegistry(_manifest()))

    def test_loaded_pack_round_trip(self, pack_root: Path) -> None:
        manifest = load_manifest([pack_root])
        registry = CapabilityRegistry(manifest)
        assert registry.lookup_agent("security-sentinel").category == "review"
        assert registry.lookup_command_id("workflows:plan") is not None
        assert registry.lookup_mcp_server("context7").transport == "http"


class TestRegistryHolder:
    def test_current_before_load(self) -> None:
        holder = RegistryHolder(_manifest)
        assert not holder.loaded
        with pytest.raises(RegistryUnavailableError):
            _ = holder.current

    def test_load(self) -> None:
        holder = RegistryHolder(_manifest)
        registry = holder.load()
        assert holder.loaded
        assert holder.current is registry
        assert holder.last_error is None

    def test_failed_initial_load(self, tmp_path: Path, write) -> None:
        write(tmp_path / "agents" / "a.md", {"name": "x", "description": "d"})
        write(tmp_path / "agents" / "b.md", {"name": "x", "description": "d"})
        holder = RegistryHolder(functools.partial(load_manifest, [tmp_path]))
        with pytest.raises(DuplicateNameError):
            holder.load()
        with pytest.raises(RegistryUnavailableError, match="Duplicate"):
            _ = holder.current

    def test_failed_reload_keeps_previous(self, pack_root: Path, write) -> None:
        holder = RegistryHolder(functools.partial(load_manifest, [pack_root]))
        before = holder.load()

        write(
            pack_root / "agents" / "review" / "copy.md",
            {"name": "security-sentinel", "description": "clone"},
        )
        with pytest.raises(DuplicateNameError):
            holder.reload()

        assert holder.current is before
        assert isinstance(holder.last_error, DuplicateNameError)
        assert holder.current.lookup_agent("security-sentinel").description == (
            "Security audits and vulnerability assessments"
        )

    def test_reload_swaps_and_reports_diff(self, pack_root: Path, write) -> None:
        holder = RegistryHolder(functools.partial(load_manifest, [pack_root]))
        before = holder.load()

        write(
            pack_root / "agents" / "review" / "performance-oracle.md",
            {"name": "performance-oracle", "description": "Performance analysis"},
        )
        diff = holder.reload()

        assert holder.current is not before
        assert holder.current.generation > before.generation
        assert diff.kinds["agents"].added == {"performance-oracle"}
        # The old snapshot is untouched for readers still holding it.
        assert before.lookup_agent("performance-oracle") is None

    def test_readers_never_see_partial_registry(self, pack_root: Path) -> None:
        holder = RegistryHolder(functools.partial(load_manifest, [pack_root]))
        holder.load()
        expected = holder.current.manifest.counts()
        seen = []
        stop = threading.Event()

        def reader() -> None:
            while True:
                seen.append(holder.current.manifest.counts())
                if stop.is_set():
                    break
                time.sleep(0)

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for _ in range(5):
                holder.reload()
        finally:
            stop.set()
            thread.join()
        assert seen
        assert all(counts == expected for counts in seen)


class TestManifestDiff:
    def test_no_changes(self) -> None:
        diff = compute_diff(_manifest(), _manifest())
        assert not diff.has_changes

    def test_order_only_is_not_a_change(self) -> None:
        old = _manifest()
        new = CapabilityManifest(
            agents=tuple(reversed(old.agents)),
            commands=old.commands,
            skills=old.skills,
        )
        assert not compute_diff(old, new).has_changes

    def test_added_removed_changed(self) -> None:
        old = _manifest()
        new = CapabilityManifest(
            agents=(
                AgentDef(name="security-sentinel", description="Changed", category="Review"),
                AgentDef(name="performance-oracle", description="Perf"),
            ),
            commands=old.commands,
            skills=old.skills,
        )
        diff = compute_diff(old, new)
        agents = diff.kinds["agents"]
        assert agents.added == {"performance-oracle"}
        assert agents.removed == {"best-practices-researcher"}
        assert agents.changed == {"security-sentinel"}
        assert diff.has_changes
        assert "agents +1 -1 ~1" in diff.summary()

    def test_commands_keyed_by_identity(self) -> None:
        old = _manifest()
        new = CapabilityManifest(
            agents=old.agents,
            commands=(CommandDef(name="review", description="Review", namespace="git"),),
            skills=old.skills,
        )
        commands = compute_diff(old, new).kinds["commands"]
        assert commands.added == {"git:review"}
        assert commands.removed == {"workflows:review", "changelog"}

"""Shared fixtures: an on-disk plugin pack modelled on a real engineering pack."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict

import pytest
import yaml

from pack_sentinel.display.logging_config import APP_LOGGERS


def render_doc(meta: Dict[str, Any], body: str = "") -> str:
    """Build a markdown document with a YAML metadata block."""
    return "---\n" + yaml.safe_dump(meta, sort_keys=False) + "---\n" + body


WriteFn = Callable[..., Path]


@pytest.fixture
def write() -> WriteFn:
    """Write a file (creating parent dirs); dict content becomes a document."""

    def _write(path: Path, content: Any, body: str = "") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, dict):
            content = render_doc(content, body)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def pack_root(tmp_path: Path, write: WriteFn) -> Path:
    """A small but complete plugin root."""
    root = tmp_path / "compound-engineering"

    write(
        root / "agents" / "review" / "security-sentinel.md",
        {
            "name": "security-sentinel",
            "description": "Security audits and vulnerability assessments",
            "keywords": ["sql injection", "xss", "risk"],
            "model": "inherit",
        },
        "You are an application security specialist.\n",
    )
    write(
        root / "agents" / "review" / "code-simplicity-reviewer.md",
        {
            "name": "code-simplicity-reviewer",
            "description": "Final pass for simplicity and minimalism",
            "color": "green",
        },
        "You review code for needless complexity.\n",
    )
    write(
        root / "agents" / "research" / "framework-docs-researcher.md",
        {
            "name": "framework-docs-researcher",
            "description": "Gather framework documentation and best practices",
            "mcp-servers": ["context7"],
        },
        "You research framework documentation.\n",
    )
    write(root / "agents" / "README.md", "# Agents\n\nNot an agent.\n")

    write(
        root / "commands" / "workflows" / "review.md",
        {
            "name": "review",
            "description": "Perform exhaustive code reviews using multi-agent analysis",
            "argument-hint": "<PR number or branch> [focus area]",
        },
        "Review the pull request $ARGUMENTS.\n",
    )
    write(
        root / "commands" / "workflows" / "plan.md",
        {
            "name": "workflows:plan",
            "description": "Transform feature descriptions into implementation plans",
        },
        "Plan the feature.\n",
    )
    write(
        root / "commands" / "changelog.md",
        {"name": "changelog", "description": "Create an engaging changelog"},
        "Summarize recent merges.\n",
    )

    write(
        root / "skills" / "dhh-rails-style" / "SKILL.md",
        {
            "name": "dhh-rails-style",
            "description": "Write Ruby and Rails code in DHH's distinctive 37signals style",
            "references": [
                {"path": "references/controllers.md", "topic": "controllers"},
                {"path": "references/models.md", "topic": "models"},
            ],
        },
        "Prefer REST, fat models, and concerns.\n",
    )
    write(
        root / "skills" / "dhh-rails-style" / "references" / "controllers.md",
        "# Controllers\n\nKeep controllers RESTful.\n",
    )
    write(
        root / "skills" / "dhh-rails-style" / "references" / "models.md",
        "# Models\n\nConcerns over service objects.\n",
    )
    write(
        root / "skills" / "git-worktree" / "SKILL.md",
        {
            "name": "git-worktree",
            "description": "Manage Git worktrees for isolated parallel development",
        },
        "Use worktrees for parallel branches.\n",
    )
    write(
        root / "skills" / "git-worktree" / "references" / "cleanup.md",
        "Remove stale worktrees.\n",
    )

    write(
        root / ".claude-plugin" / "plugin.json",
        json.dumps(
            {
                "name": "compound-engineering",
                "mcpServers": {
                    "context7": {"type": "http", "url": "https://mcp.context7.com/mcp"}
                },
            }
        ),
    )
    return root


@pytest.fixture
def reset_logging():
    """Detach file handlers installed by ``setup_logging`` after the test."""
    yield
    for name in (None, *APP_LOGGERS):
        log = logging.getLogger(name)
        for handler in list(log.handlers):
            log.removeHandler(handler)
            handler.close()
        log.propagate = True

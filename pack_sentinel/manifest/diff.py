"""Manifest diff utilities.

Compares two manifest snapshots so a reload can report what actually
changed instead of just "reloaded".
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Set

from pydantic import BaseModel

from pack_sentinel.manifest.models import CapabilityManifest

logger = logging.getLogger(__name__)

KINDS = ("agents", "commands", "skills", "mcp_servers")


@dataclass(frozen=True)
class KindDiff:
    """Added, removed, and changed identities for one definition kind."""

    added: Set[str] = field(default_factory=set)
    removed: Set[str] = field(default_factory=set)
    changed: Set[str] = field(default_factory=set)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.changed)

    def summary(self) -> str:
        return f"+{len(self.added)} -{len(self.removed)} ~{len(self.changed)}"


@dataclass(frozen=True)
class ManifestDiff:
    """Describes the difference between two manifest snapshots."""

    kinds: Dict[str, KindDiff] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return any(d.has_changes for d in self.kinds.values())

    def summary(self) -> str:
        return ", ".join(f"{kind} {diff.summary()}" for kind, diff in self.kinds.items())


def _comparable(definition: Any) -> Any:
    """Strip fields that move without the definition itself changing."""
    if isinstance(definition, BaseModel):
        return definition.model_dump()
    if dataclasses.is_dataclass(definition) and hasattr(definition, "order"):
        return dataclasses.replace(definition, order=0)
    return definition


def _index(definitions: Iterable[Any]) -> Dict[str, Any]:
    index: Dict[str, Any] = {}
    for definition in definitions:
        identity = getattr(definition, "identity", None) or definition.name
        index[identity] = _comparable(definition)
    return index


def compute_diff(old: CapabilityManifest, new: CapabilityManifest) -> ManifestDiff:
    """Compute per-kind added / removed / changed identities."""
    kinds: Dict[str, KindDiff] = {}
    for kind in KINDS:
        old_index = _index(getattr(old, kind))
        new_index = _index(getattr(new, kind))
        old_names, new_names = set(old_index), set(new_index)
        changed = {n for n in old_names & new_names if old_index[n] != new_index[n]}
        kinds[kind] = KindDiff(
            added=new_names - old_names,
            removed=old_names - new_names,
            changed=changed,
        )
    return ManifestDiff(kinds=kinds)

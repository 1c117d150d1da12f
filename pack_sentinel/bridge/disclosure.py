"""Progressive, budgeted disclosure of skill content.

:func:`disclose` yields a skill's summary first, then whichever reference
documents fit the remaining budget in declared order, and finally a
:class:`WithheldMarker` naming everything that was left out.  Reference
bodies are read only when their chunk is produced, so a consumer that
stops early never pays for the rest.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Tuple, Union

from pack_sentinel.constants import BYTES_PER_TOKEN
from pack_sentinel.manifest.models import ReferenceDoc, SkillDef

logger = logging.getLogger(__name__)

SizeMeasure = Callable[[int], int]


def byte_size(size_bytes: int) -> int:
    return size_bytes


def approx_tokens(size_bytes: int) -> int:
    """Rough token estimate used when budgets are expressed in tokens."""
    return math.ceil(size_bytes / BYTES_PER_TOKEN)


MEASURES = {"bytes": byte_size, "tokens": approx_tokens}


@dataclass(frozen=True)
class DisclosureChunk:
    """A piece of content handed to the host."""

    kind: str  # "summary" or "reference"
    skill: str
    topic: Optional[str]
    body: str
    size: int


@dataclass(frozen=True)
class WithheldMarker:
    """Terminal element: references that were requested but did not fit."""

    skill: str
    withheld: Tuple[str, ...]
    used: int
    budget: int

    @property
    def complete(self) -> bool:
        return not self.withheld

    def describe(self) -> str:
        if self.complete:
            return f"All requested references of '{self.skill}' were included."
        return (
            f"Withheld {len(self.withheld)} reference(s) of '{self.skill}' "
            f"to stay within budget {self.budget}: {', '.join(self.withheld)}"
        )


DisclosureItem = Union[DisclosureChunk, WithheldMarker]


def _wanted(ref: ReferenceDoc, topics: Optional[frozenset]) -> bool:
    return topics is None or ref.topic.lower() in topics


def disclose(
    skill: SkillDef,
    budget: int,
    *,
    topics: Optional[Iterable[str]] = None,
    measure: Union[str, SizeMeasure] = "bytes",
) -> Iterator[DisclosureItem]:
    """Yield *skill* content under *budget*.

    Parameters
    ----------
    skill:
        Skill to disclose.
    budget:
        Maximum cumulative size of the reference chunks.  The summary is
        always yielded and does not count against it.
    topics:
        Restrict the references offered to these topic tags.  References
        outside the selection are neither yielded nor reported withheld.
    measure:
        ``"bytes"``, ``"tokens"``, or a callable mapping a byte size to the
        budget's unit.
    """
    if budget < 0:
        raise ValueError("budget must be >= 0")
    size_of = MEASURES[measure] if isinstance(measure, str) else measure
    wanted_topics = frozenset(t.lower() for t in topics) if topics is not None else None

    return _disclose(skill, budget, wanted_topics, size_of)


def _disclose(
    skill: SkillDef,
    budget: int,
    topics: Optional[frozenset],
    size_of: SizeMeasure,
) -> Iterator[DisclosureItem]:
    yield DisclosureChunk(
        kind="summary",
        skill=skill.name,
        topic=None,
        body=skill.summary,
        size=size_of(skill.summary_size),
    )

    remaining = budget
    withheld = []
    for ref in skill.references:
        if not _wanted(ref, topics):
            continue
        cost = size_of(ref.size)
        if cost > remaining:
            logger.debug(
                "Skill '%s': withholding reference '%s' (%d > %d remaining).",
                skill.name,
                ref.topic,
                cost,
                remaining,
            )
            withheld.append(ref.topic)
            continue
        try:
            body = ref.body
        except OSError as e:
            logger.warning(
                "Skill '%s': cannot read reference '%s' (%s); withholding it.",
                skill.name,
                ref.topic,
                e,
            )
            withheld.append(ref.topic)
            continue
        # The file may have grown on disk since the manifest was loaded.
        cost = size_of(len(body.encode("utf-8")))
        if cost > remaining:
            withheld.append(ref.topic)
            continue
        remaining -= cost
        yield DisclosureChunk(
            kind="reference",
            skill=skill.name,
            topic=ref.topic,
            body=body,
            size=cost,
        )

    yield WithheldMarker(
        skill=skill.name,
        withheld=tuple(withheld),
        used=budget - remaining,
        budget=budget,
    )

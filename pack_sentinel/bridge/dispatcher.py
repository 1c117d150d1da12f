"""Request-to-capability dispatch.

:meth:`Dispatcher.resolve` is a pure function of the request and one
registry snapshot: it performs no I/O and keeps no state between calls.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union

from pack_sentinel.bridge.capability_registry import CapabilityRegistry
from pack_sentinel.bridge.scoring import MatchScore, ScoreStrategy, TokenOverlapScorer, tokenize
from pack_sentinel.constants import AMBIGUITY_EPSILON, BODY_WEIGHT, MAX_RUNNER_UPS
from pack_sentinel.manifest.models import AgentDef, CommandDef, SkillDef

logger = logging.getLogger(__name__)

Definition = Union[AgentDef, SkillDef, CommandDef]

# "/namespace:name rest of the line"
_COMMAND_RE = re.compile(r"^\s*/(?P<id>[A-Za-z0-9_.:-]+)(?:\s+(?P<args>.*))?\s*$", re.DOTALL)


class CapabilityKind(Enum):
    """Kind of capability a dispatch result points at."""

    AGENT = "agent"
    SKILL = "skill"
    COMMAND = "command"


class DispatchOutcome(Enum):
    """How a dispatch request was resolved."""

    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class DispatchRequest:
    """Free-text intent plus an optional explicit command hint."""

    text: str = ""
    hint: Optional[str] = None
    category: Optional[str] = None
    arguments: str = ""

    @classmethod
    def parse(cls, text: str, category: Optional[str] = None) -> DispatchRequest:
        """Build a request, treating a leading ``/ns:name`` as an explicit hint."""
        match = _COMMAND_RE.match(text)
        if match is None:
            return cls(text=text, category=category)
        return cls(
            text=text,
            hint=match.group("id"),
            category=category,
            arguments=(match.group("args") or "").strip(),
        )


@dataclass(frozen=True)
class ScoredCapability:
    """One ranked candidate."""

    kind: CapabilityKind
    name: str
    definition: Definition = field(repr=False)
    score: float = 1.0
    category_match: bool = False
    specificity: float = 0.0
    order: int = 0

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "score": self.score,
            "category_match": self.category_match,
            "specificity": self.specificity,
        }


@dataclass(frozen=True)
class DispatchResult:
    """What the host receives for a request."""

    outcome: DispatchOutcome
    match: Optional[ScoredCapability] = None
    runner_ups: Tuple[ScoredCapability, ...] = ()
    reason: str = ""

    @property
    def matched(self) -> bool:
        return self.outcome is DispatchOutcome.MATCHED

    @property
    def candidates(self) -> Tuple[ScoredCapability, ...]:
        """Top candidate followed by runner-ups, in rank order."""
        if self.match is None:
            return self.runner_ups
        return (self.match, *self.runner_ups)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "match": self.match.to_dict() if self.match else None,
            "runner_ups": [c.to_dict() for c in self.runner_ups],
            "reason": self.reason,
        }


def _corpus(definition: Union[AgentDef, SkillDef]) -> str:
    parts = [definition.name, definition.description, *definition.keywords]
    if isinstance(definition, AgentDef) and definition.category:
        parts.append(definition.category)
    return " ".join(parts)


def _body(definition: Union[AgentDef, SkillDef]) -> str:
    if isinstance(definition, SkillDef):
        return definition.summary
    return definition.body


def _combine(primary: MatchScore, body: MatchScore, weight: float) -> MatchScore:
    """Fold the body score into the primary one at *weight*."""
    weighted = round(body.score * weight, 6)
    partial_only = (primary.score == 0 or primary.partial_only) and (
        weighted == 0 or body.partial_only
    )
    return MatchScore(
        score=max(primary.score, weighted),
        specificity=primary.specificity,
        partial_only=partial_only,
    )


def _tie_key(candidate: ScoredCapability) -> Tuple[int, float, int]:
    return (0 if candidate.category_match else 1, -candidate.specificity, candidate.order)


def _rank_key(candidate: ScoredCapability) -> Tuple[float, int, float, int]:
    return (-candidate.score, *_tie_key(candidate))


class Dispatcher:
    """Selects the agent, skill, or command that applies to a request.

    Parameters
    ----------
    scorer:
        Relevance strategy (defaults to :class:`TokenOverlapScorer`).
    ambiguity_epsilon:
        When the top two scores are within this distance of each other and
        the category rule does not separate them, the result is
        ``AMBIGUOUS``.  Every candidate within this distance of the best
        score is re-ranked by the tie-break rules alone.
    max_runner_ups:
        How many runner-ups to report alongside the top candidate.
    body_weight:
        Weight of an agent body or skill summary relative to its name,
        description and keywords.  ``0`` ignores bodies.
    min_score:
        Candidates must score strictly above this to be considered.
    """

    def __init__(
        self,
        scorer: Optional[ScoreStrategy] = None,
        *,
        ambiguity_epsilon: float = AMBIGUITY_EPSILON,
        max_runner_ups: int = MAX_RUNNER_UPS,
        body_weight: float = BODY_WEIGHT,
        min_score: float = 0.0,
    ) -> None:
        if ambiguity_epsilon < 0:
            raise ValueError("ambiguity_epsilon must be >= 0")
        if max_runner_ups < 0:
            raise ValueError("max_runner_ups must be >= 0")
        if not 0 <= body_weight <= 1:
            raise ValueError("body_weight must be between 0 and 1")
        self._scorer: ScoreStrategy = scorer or TokenOverlapScorer()
        self._epsilon = ambiguity_epsilon
        self._max_runner_ups = max_runner_ups
        self._body_weight = body_weight
        self._min_score = min_score

    @property
    def scorer(self) -> ScoreStrategy:
        return self._scorer

    def resolve(
        self,
        request: Union[DispatchRequest, str],
        registry: CapabilityRegistry,
    ) -> DispatchResult:
        """Resolve *request* against one registry snapshot."""
        if isinstance(request, str):
            request = DispatchRequest.parse(request)

        if request.hint is not None:
            return self._resolve_explicit(request.hint, registry)
        return self._resolve_scored(request, registry)

    # ── Explicit invocation ──────────────────────────────────────────

    def _resolve_explicit(self, hint: str, registry: CapabilityRegistry) -> DispatchResult:
        command = registry.lookup_command_id(hint)
        if command is None:
            logger.debug("Explicit command '/%s' not found.", hint.lstrip("/"))
            return DispatchResult(
                DispatchOutcome.NOT_FOUND,
                reason=f"No command named '/{hint.lstrip('/')}'",
            )
        return DispatchResult(
            DispatchOutcome.MATCHED,
            match=ScoredCapability(
                kind=CapabilityKind.COMMAND,
                name=command.identity,
                definition=command,
                order=command.order,
            ),
            reason="explicit command",
        )

    # ── Scored matching ──────────────────────────────────────────────

    def _requested_categories(
        self, request: DispatchRequest, registry: CapabilityRegistry
    ) -> frozenset:
        if request.category:
            return frozenset({request.category.lower()})
        words = set(tokenize(request.text)) | set(request.text.lower().split())
        return frozenset(c for c in registry.categories if c in words)

    def _score(self, text: str, definitions: List[Union[AgentDef, SkillDef]]) -> List[MatchScore]:
        scores = self._scorer.score(text, [_corpus(d) for d in definitions])
        bodies = [_body(d) for d in definitions]
        if not self._body_weight or not any(b.strip() for b in bodies):
            return scores
        body_scores = self._scorer.score(text, bodies)
        return [_combine(p, b, self._body_weight) for p, b in zip(scores, body_scores)]

    def _resolve_scored(
        self, request: DispatchRequest, registry: CapabilityRegistry
    ) -> DispatchResult:
        entries: List[Tuple[CapabilityKind, Union[AgentDef, SkillDef]]] = [
            *((CapabilityKind.AGENT, a) for a in registry.list_agents()),
            *((CapabilityKind.SKILL, s) for s in registry.list_skills()),
        ]
        if not entries or not request.text.strip():
            return DispatchResult(DispatchOutcome.NOT_FOUND, reason="nothing to match")

        scores = self._score(request.text, [d for _, d in entries])
        wanted = self._requested_categories(request, registry)

        candidates: List[ScoredCapability] = []
        for (kind, definition), match in zip(entries, scores):
            if match.score <= self._min_score or match.partial_only:
                continue
            category = getattr(definition, "category", None)
            candidates.append(
                ScoredCapability(
                    kind=kind,
                    name=definition.name,
                    definition=definition,
                    score=match.score,
                    category_match=bool(category and category.lower() in wanted),
                    specificity=match.specificity,
                    order=definition.order,
                )
            )

        if not candidates:
            return DispatchResult(DispatchOutcome.NOT_FOUND, reason="no capability overlaps the request")

        candidates.sort(key=_rank_key)
        best = candidates[0].score
        tied = [c for c in candidates if round(best - c.score, 9) <= self._epsilon]
        tied.sort(key=_tie_key)
        ranked = tied + candidates[len(tied) :]
        top = ranked[0]
        runner_ups = tuple(ranked[1 : 1 + self._max_runner_ups])

        if len(tied) > 1 and tied[0].category_match == tied[1].category_match:
            second = tied[1]
            logger.debug(
                "Ambiguous dispatch: '%s' (%.3f) vs '%s' (%.3f).",
                top.name,
                top.score,
                second.name,
                second.score,
            )
            return DispatchResult(
                DispatchOutcome.AMBIGUOUS,
                match=top,
                runner_ups=runner_ups,
                reason=f"top scores within {self._epsilon}",
            )

        return DispatchResult(
            DispatchOutcome.MATCHED,
            match=top,
            runner_ups=runner_ups,
            reason=f"{self._scorer.name} score {top.score}",
        )

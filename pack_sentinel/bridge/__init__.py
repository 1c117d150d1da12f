"""Bridge subpackage - capability registry, dispatch, disclosure, and MCP sessions."""

from pack_sentinel.bridge.capability_registry import CapabilityRegistry
from pack_sentinel.bridge.disclosure import DisclosureChunk, WithheldMarker, disclose
from pack_sentinel.bridge.dispatcher import (
    CapabilityKind,
    DispatchOutcome,
    DispatchRequest,
    DispatchResult,
    Dispatcher,
    ScoredCapability,
)
from pack_sentinel.bridge.scoring import (
    ScoreStrategy,
    TfidfScorer,
    TokenOverlapScorer,
    create_scorer,
)
from pack_sentinel.bridge.session_manager import McpSessionManager, SessionHandle
from pack_sentinel.bridge.snapshot import RegistryHolder

__all__ = [
    "CapabilityKind",
    "CapabilityRegistry",
    "DisclosureChunk",
    "DispatchOutcome",
    "DispatchRequest",
    "DispatchResult",
    "Dispatcher",
    "McpSessionManager",
    "RegistryHolder",
    "ScoreStrategy",
    "ScoredCapability",
    "SessionHandle",
    "TfidfScorer",
    "TokenOverlapScorer",
    "WithheldMarker",
    "create_scorer",
    "disclose",
]

"""Pydantic configuration models for Pack Sentinel.

Defines the validated config structure using the versioned v1 format.
"""

from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, Field, field_validator

from pack_sentinel.constants import (
    AMBIGUITY_EPSILON,
    BODY_WEIGHT,
    DISCLOSURE_BUDGET,
    MAX_FILE_BYTES,
    MAX_RUNNER_UPS,
    MCP_PROBE_TIMEOUT,
    MCP_START_TIMEOUT,
    MCP_STOP_TIMEOUT,
    WATCH_DEBOUNCE,
    WATCH_POLL_INTERVAL,
)


class ManifestSettings(BaseModel):
    """Where capability manifests live and how large files may be."""

    roots: List[str] = Field(
        default_factory=list,
        description="Plugin root directories, loaded in order. Relative to the config file.",
    )
    max_file_bytes: int = Field(
        default=MAX_FILE_BYTES,
        ge=1,
        description="Per-file size ceiling for manifest documents.",
    )

    @field_validator("roots")
    @classmethod
    def _validate_roots(cls, v: List[str]) -> List[str]:
        cleaned = [r.strip() for r in v]
        if any(not r for r in cleaned):
            raise ValueError("Manifest roots must be non-empty paths")
        return cleaned


class DispatchSettings(BaseModel):
    """Capability selection tuning."""

    scorer: Literal["token-overlap", "tfidf"] = Field(
        default="token-overlap",
        description="Relevance scoring strategy.",
    )
    ambiguity_epsilon: float = Field(
        default=AMBIGUITY_EPSILON,
        ge=0,
        description="Top-two score distance at or below which a result is ambiguous.",
    )
    max_runner_ups: int = Field(default=MAX_RUNNER_UPS, ge=0)
    body_weight: float = Field(
        default=BODY_WEIGHT,
        ge=0,
        le=1,
        description="Weight of agent bodies and skill summaries relative to descriptions.",
    )
    min_score: float = Field(
        default=0.0,
        ge=0,
        le=1,
        description="Candidates must score strictly above this.",
    )


class DisclosureSettings(BaseModel):
    """Default budget for progressive skill disclosure."""

    budget: int = Field(default=DISCLOSURE_BUDGET, ge=0)
    unit: Literal["bytes", "tokens"] = "bytes"


class McpSettings(BaseModel):
    """MCP server session timeouts (seconds)."""

    start_timeout: float = Field(default=MCP_START_TIMEOUT, gt=0)
    probe_timeout: float = Field(default=MCP_PROBE_TIMEOUT, gt=0)
    stop_timeout: float = Field(default=MCP_STOP_TIMEOUT, gt=0)


class WatchSettings(BaseModel):
    """Automatic manifest reload on file changes."""

    enabled: bool = False
    poll_interval: float = Field(default=WATCH_POLL_INTERVAL, gt=0)
    debounce: float = Field(default=WATCH_DEBOUNCE, ge=0)


class PackConfig(BaseModel):
    """Top-level validated configuration for Pack Sentinel.

    Supports version ``"1"`` format::

        version: "1"
        manifest:
          roots: [./plugins/compound-engineering]
        dispatch:
          scorer: token-overlap
        disclosure:
          budget: 32768
    """

    version: str = "1"
    manifest: ManifestSettings = Field(default_factory=ManifestSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    disclosure: DisclosureSettings = Field(default_factory=DisclosureSettings)
    mcp: McpSettings = Field(default_factory=McpSettings)
    watch: WatchSettings = Field(default_factory=WatchSettings)

    @field_validator("version")
    @classmethod
    def _validate_version(cls, v: str) -> str:
        if str(v).strip() != "1":
            raise ValueError(f"Unsupported config version '{v}' (expected '1')")
        return "1"

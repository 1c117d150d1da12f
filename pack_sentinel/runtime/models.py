"""Pydantic models for Pack Sentinel runtime state."""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field


class ServiceState(str, Enum):
    """Lifecycle states for :class:`~pack_sentinel.runtime.service.PackService`.

    Valid transitions::

        PENDING ─► RUNNING ─► STOPPED
           │
           └─► ERROR ─► RUNNING  (retry)
    """

    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class ToolAvailability(BaseModel):
    """Whether one declared MCP server is usable for the selected capability."""

    server: str
    available: bool = False
    transport: Optional[str] = None
    error: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [{"server": "context7", "available": True, "transport": "http"}]
        }
    }


class ServiceStatus(BaseModel):
    """Snapshot of the service for display."""

    state: ServiceState
    generation: Optional[int] = None
    loaded_at: Optional[datetime] = None
    counts: Dict[str, int] = Field(default_factory=dict)
    sessions: int = 0
    watching: bool = False
    last_error: Optional[str] = None

"""Runtime wiring: the service that owns registry, dispatcher and sessions."""

from pack_sentinel.runtime.models import ServiceState, ServiceStatus, ToolAvailability
from pack_sentinel.runtime.service import PackService

__all__ = ["PackService", "ServiceState", "ServiceStatus", "ToolAvailability"]

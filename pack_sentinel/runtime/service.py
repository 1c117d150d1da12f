"""Pack Sentinel runtime service.

PackService owns the registry holder, the dispatcher and the MCP session
manager, and wires an optional manifest watcher for automatic reloads.
It does NOT import the display layer; status is exposed as a model so
that callers (the CLI) can render it however they choose.
"""

import asyncio
import functools
import logging
from typing import Dict, Iterable, Iterator, Optional, Union

import httpx

from pack_sentinel.bridge.capability_registry import CapabilityRegistry
from pack_sentinel.bridge.disclosure import DisclosureItem, disclose
from pack_sentinel.bridge.dispatcher import DispatchRequest, DispatchResult, Dispatcher
from pack_sentinel.bridge.scoring import create_scorer
from pack_sentinel.bridge.session_manager import McpSessionManager
from pack_sentinel.bridge.snapshot import RegistryHolder
from pack_sentinel.config.schema import PackConfig
from pack_sentinel.config.watcher import ManifestWatcher
from pack_sentinel.errors import ConfigurationError, LoadError, StartError
from pack_sentinel.manifest.diff import ManifestDiff
from pack_sentinel.manifest.loader import load_manifest
from pack_sentinel.runtime.models import ServiceState, ServiceStatus, ToolAvailability

logger = logging.getLogger(__name__)


class PackService:
    """Manages the lifecycle of a loaded capability pack.

    Usage::

        service = PackService(load_pack_config("pack-sentinel.yaml"))
        async with service:
            result = service.resolve("review this PR for SQL injection")
            tools = await service.prepare_tools(result)
    """

    def __init__(
        self,
        config: Optional[PackConfig] = None,
        *,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or PackConfig()
        self._state = ServiceState.PENDING

        manifest_cfg = self._config.manifest
        self._holder = RegistryHolder(
            functools.partial(
                load_manifest,
                manifest_cfg.roots,
                max_file_bytes=manifest_cfg.max_file_bytes,
            )
        )

        dispatch_cfg = self._config.dispatch
        self._dispatcher = Dispatcher(
            create_scorer(dispatch_cfg.scorer),
            ambiguity_epsilon=dispatch_cfg.ambiguity_epsilon,
            max_runner_ups=dispatch_cfg.max_runner_ups,
            body_weight=dispatch_cfg.body_weight,
            min_score=dispatch_cfg.min_score,
        )

        mcp_cfg = self._config.mcp
        self._sessions = McpSessionManager(
            start_timeout=mcp_cfg.start_timeout,
            probe_timeout=mcp_cfg.probe_timeout,
            stop_timeout=mcp_cfg.stop_timeout,
            http_transport=http_transport,
        )
        self._watcher: Optional[ManifestWatcher] = None

        logger.info("PackService initialized (state=%s).", self._state.value)

    # ------------------------------------------------------------------ #
    #  Properties
    # ------------------------------------------------------------------ #

    @property
    def config(self) -> PackConfig:
        return self._config

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def registry(self) -> CapabilityRegistry:
        """Current registry snapshot (raises ``RegistryUnavailableError``)."""
        return self._holder.current

    @property
    def holder(self) -> RegistryHolder:
        return self._holder

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def sessions(self) -> McpSessionManager:
        return self._sessions

    @property
    def watcher(self) -> Optional[ManifestWatcher]:
        return self._watcher

    # ------------------------------------------------------------------ #
    #  Manifest
    # ------------------------------------------------------------------ #

    def load(self) -> CapabilityRegistry:
        """Initial manifest load.  Raises ``LoadError`` on a bad manifest."""
        if not self._config.manifest.roots:
            raise ConfigurationError("No manifest roots configured.")
        try:
            registry = self._holder.load()
        except LoadError:
            self._state = ServiceState.ERROR
            raise
        logger.info("Loaded capabilities: %s", registry.manifest.counts())
        return registry

    def reload(self) -> ManifestDiff:
        """Rebuild the registry; the previous snapshot survives a failure."""
        return self._holder.reload()

    async def _on_manifest_change(self) -> None:
        try:
            await asyncio.to_thread(self.reload)
        except LoadError as exc:
            logger.warning("Ignoring manifest change, reload failed: %s", exc)

    # ------------------------------------------------------------------ #
    #  Dispatch and disclosure
    # ------------------------------------------------------------------ #

    def resolve(
        self,
        request: Union[DispatchRequest, str],
        *,
        category: Optional[str] = None,
    ) -> DispatchResult:
        """Dispatch *request* against the current snapshot."""
        if isinstance(request, str):
            request = DispatchRequest.parse(request, category=category)
        registry = self._holder.current
        result = self._dispatcher.resolve(request, registry)
        logger.debug(
            "Resolved %.80r on registry #%d -> %s (%s).",
            request.text,
            registry.generation,
            result.outcome.value,
            result.match.name if result.match else "-",
        )
        return result

    def disclose(
        self,
        skill_name: str,
        budget: Optional[int] = None,
        *,
        topics: Optional[Iterable[str]] = None,
    ) -> Iterator[DisclosureItem]:
        """Progressively disclose a skill using the configured defaults.

        Raises:
            LookupError: No skill named *skill_name* is loaded.
            ValueError: *budget* is negative.
        """
        skill = self._holder.current.lookup_skill(skill_name)
        if skill is None:
            raise LookupError(f"Unknown skill '{skill_name}'")
        disclosure_cfg = self._config.disclosure
        return disclose(
            skill,
            disclosure_cfg.budget if budget is None else budget,
            topics=topics,
            measure=disclosure_cfg.unit,
        )

    # ------------------------------------------------------------------ #
    #  MCP servers
    # ------------------------------------------------------------------ #

    async def ensure_server(
        self, name: str, registry: Optional[CapabilityRegistry] = None
    ) -> ToolAvailability:
        """Start or reach one declared MCP server, reporting the outcome."""
        if registry is None:
            registry = self._holder.current
        server = registry.lookup_mcp_server(name)
        if server is None:
            return ToolAvailability(server=name, error="not declared")
        try:
            handle = await self._sessions.ensure_started(server)
        except StartError as exc:
            logger.warning("MCP server '%s' unavailable: %s", name, exc)
            return ToolAvailability(server=name, transport=server.transport, error=str(exc))
        return ToolAvailability(
            server=name,
            available=True,
            transport=handle.transport,
        )

    async def prepare_tools(self, result: DispatchResult) -> Dict[str, ToolAvailability]:
        """Ensure the MCP servers the selected capability declares.

        A server that fails to start is reported unavailable; the dispatch
        result itself stays valid.
        """
        if result.match is None:
            return {}
        names = tuple(getattr(result.match.definition, "mcp_servers", ()))
        if not names:
            return {}
        registry = self._holder.current
        availability = await asyncio.gather(*(self.ensure_server(n, registry) for n in names))
        return {a.server: a for a in availability}

    # ------------------------------------------------------------------ #
    #  Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        """Load the manifest (if needed) and start the watcher when enabled."""
        if not self._holder.loaded:
            await asyncio.to_thread(self.load)
        watch_cfg = self._config.watch
        if watch_cfg.enabled and self._watcher is None:
            self._watcher = ManifestWatcher(
                self._config.manifest.roots,
                self._on_manifest_change,
                poll_interval=watch_cfg.poll_interval,
                debounce=watch_cfg.debounce,
            )
            self._watcher.start()
        self._state = ServiceState.RUNNING
        logger.info("PackService running.")

    async def stop(self) -> None:
        """Stop the watcher and release every MCP session."""
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None
        await self._sessions.stop_all()
        self._state = ServiceState.STOPPED
        logger.info("PackService stopped.")

    async def __aenter__(self) -> "PackService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def status(self) -> ServiceStatus:
        registry = self._holder.current if self._holder.loaded else None
        last_error = self._holder.last_error
        return ServiceStatus(
            state=self._state,
            generation=registry.generation if registry else None,
            loaded_at=registry.loaded_at if registry else None,
            counts=registry.manifest.counts() if registry else {},
            sessions=len(self._sessions.list_sessions()),
            watching=self._watcher is not None and self._watcher.watching,
            last_error=str(last_error) if last_error else None,
        )

"""Declared MCP server session management.

Connects to stdio servers through the MCP SDK (``stdio_client`` plus a
``ClientSession`` with a bounded ``initialize``) and probes HTTP servers
for reachability.  Starts for one server name are serialized, so
concurrent first use never spawns two processes.  Every handle is
released by :meth:`McpSessionManager.stop_all`, which also runs when the
manager is used as an async context manager.
"""

import asyncio
import logging
import sys
import tempfile
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Dict, List, Optional, TextIO, Union

import httpx
from mcp import ClientSession, StdioServerParameters
from mcp import types as mcp_types
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError

from pack_sentinel.constants import (
    MCP_PROBE_TIMEOUT,
    MCP_START_TIMEOUT,
    MCP_STOP_TIMEOUT,
    SERVER_NAME,
    SERVER_VERSION,
)
from pack_sentinel.errors import (
    HandshakeError,
    NonZeroExitError,
    StartError,
    StartTimeoutError,
    UnreachableError,
)
from pack_sentinel.manifest.models import HttpServerDef, StdioServerDef

logger = logging.getLogger(__name__)

ServerDef = Union[StdioServerDef, HttpServerDef]

_STDERR_TAIL_LINES = 20

CLIENT_INFO = mcp_types.Implementation(name=SERVER_NAME, version=SERVER_VERSION)


@dataclass
class SessionHandle:
    """A connected (stdio) or verified (http) MCP server."""

    name: str
    transport: str
    started_at: float = field(default_factory=time.monotonic)
    url: Optional[str] = None
    status_code: Optional[int] = None
    server_info: Optional[mcp_types.Implementation] = None
    protocol_version: Optional[str] = None
    session: Optional[ClientSession] = field(default=None, repr=False)
    closed: bool = False
    _runner: Optional[asyncio.Task] = field(default=None, repr=False)
    _stop: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _errlog: Optional[TextIO] = field(default=None, repr=False)

    @property
    def alive(self) -> bool:
        if self.closed:
            return False
        if self._runner is not None:
            return not self._runner.done()
        return True

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    def stderr_tail(self, lines: int = _STDERR_TAIL_LINES) -> str:
        """Last *lines* lines the server wrote to stderr."""
        if self._errlog is None or self._errlog.closed:
            return ""
        self._errlog.flush()
        self._errlog.seek(0)
        captured = [ln.strip() for ln in self._errlog.read().splitlines() if ln.strip()]
        return " | ".join(captured[-lines:])

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "transport": self.transport,
            "url": self.url,
            "alive": self.alive,
            "server": self.server_info.name if self.server_info else None,
            "protocol_version": self.protocol_version,
            "uptime_s": round(self.uptime, 2),
        }


_CAUSE_PRIORITY = (StartError, asyncio.TimeoutError, TimeoutError, McpError, OSError)


def _leaves(exc: BaseException) -> List[BaseException]:
    inner = getattr(exc, "exceptions", None)
    if not inner:
        return [exc]
    return [leaf for member in inner for leaf in _leaves(member)]


def _root_cause(exc: BaseException) -> BaseException:
    """Pick the meaningful failure out of (possibly nested) exception groups.

    A server that dies during startup can surface both the session error
    and a broken-pipe error from the transport's writer task.
    """
    leaves = _leaves(exc)
    for kind in _CAUSE_PRIORITY:
        for leaf in leaves:
            if isinstance(leaf, kind):
                return leaf
    return leaves[0]


def _to_start_error(exc: BaseException, handle: SessionHandle, timeout: float) -> StartError:
    svr_name = handle.name
    exc = _root_cause(exc)
    if isinstance(exc, StartError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return StartTimeoutError(f"no initialize response within {timeout}s", svr_name, exc)
    if isinstance(exc, McpError):
        if exc.error.code == mcp_types.CONNECTION_CLOSED:
            return NonZeroExitError(svr_name, stderr_tail=handle.stderr_tail())
        return HandshakeError(
            f"initialize rejected ({exc.error.code}): {exc.error.message}", svr_name, exc
        )
    if isinstance(exc, OSError):
        return HandshakeError(f"cannot launch server: {exc}", svr_name, exc)
    return HandshakeError(str(exc) or type(exc).__name__, svr_name, exc)


class McpSessionManager:
    """Starts, tracks, and stops declared MCP servers.

    Parameters
    ----------
    start_timeout:
        Seconds allowed for the MCP ``initialize`` exchange of a stdio server.
    probe_timeout:
        Seconds allowed for an HTTP reachability probe.
    stop_timeout:
        Seconds a stdio session may take to wind down before it is cancelled.
    http_transport:
        Optional ``httpx`` transport (e.g. ``httpx.MockTransport``).
    """

    def __init__(
        self,
        *,
        start_timeout: float = MCP_START_TIMEOUT,
        probe_timeout: float = MCP_PROBE_TIMEOUT,
        stop_timeout: float = MCP_STOP_TIMEOUT,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._start_timeout = start_timeout
        self._probe_timeout = probe_timeout
        self._stop_timeout = stop_timeout
        self._http_transport = http_transport
        self._handles: Dict[str, SessionHandle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._start_counts: Dict[str, int] = {}
        logger.info("McpSessionManager initialized.")

    async def __aenter__(self) -> "McpSessionManager":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop_all()

    # ── Public API ───────────────────────────────────────────────────

    async def ensure_started(self, server: ServerDef) -> SessionHandle:
        """Return a live handle for *server*, starting it if needed.

        Raises:
            StartError: ``StartTimeoutError``, ``NonZeroExitError``,
                ``HandshakeError`` (stdio) or ``UnreachableError`` (http).
        """
        async with self._lock_for(server.name):
            handle = self._handles.get(server.name)
            if handle is not None and handle.alive:
                logger.debug("[%s] Reusing running session.", server.name)
                return handle
            if handle is not None:
                logger.warning("[%s] Previous session is no longer alive, restarting.", server.name)
                del self._handles[server.name]
                await self._release(handle)

            self._start_counts[server.name] = self._start_counts.get(server.name, 0) + 1
            if isinstance(server, StdioServerDef):
                handle = await self._start_stdio(server)
            else:
                handle = await self._probe_http(server)
            self._handles[server.name] = handle
            return handle

    async def stop(self, handle: SessionHandle) -> None:
        """Release *handle*.  Safe to call more than once."""
        async with self._lock_for(handle.name):
            if self._handles.get(handle.name) is handle:
                del self._handles[handle.name]
            await self._release(handle)

    async def stop_all(self) -> None:
        """Best-effort release of every tracked session."""
        handles = list(self._handles.values())
        if not handles:
            return
        logger.info("Stopping %d MCP session(s)...", len(handles))
        results = await asyncio.gather(*(self.stop(h) for h in handles), return_exceptions=True)
        for handle, result in zip(handles, results):
            if isinstance(result, BaseException):
                logger.error("[%s] Error while stopping session: %s", handle.name, result)
        logger.info("All MCP sessions stopped.")

    def get(self, name: str) -> Optional[SessionHandle]:
        return self._handles.get(name)

    def list_sessions(self) -> List[SessionHandle]:
        return list(self._handles.values())

    def start_count(self, name: str) -> int:
        """How many start attempts were made for *name* (reuses excluded)."""
        return self._start_counts.get(name, 0)

    # ── Internals ────────────────────────────────────────────────────

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    async def _start_stdio(self, server: StdioServerDef) -> SessionHandle:
        svr_name = server.name
        actual_cmd = sys.executable if server.command.lower() == "python" else server.command
        params = StdioServerParameters(
            command=actual_cmd,
            args=list(server.args),
            env=dict(server.env) if server.env else None,
        )

        handle = SessionHandle(
            name=svr_name,
            transport="stdio",
            _errlog=tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace"),
        )
        ready: asyncio.Future = asyncio.get_running_loop().create_future()
        logger.info("[%s] Starting local process: '%s' args: %s", svr_name, actual_cmd, server.args)
        handle._runner = asyncio.create_task(
            self._run_stdio(handle, params, ready), name=f"{svr_name}_session"
        )

        try:
            result: mcp_types.InitializeResult = await asyncio.shield(ready)
        except asyncio.CancelledError:
            await self._release(handle)
            raise
        except Exception as exc:
            # The runner has already left its contexts or is about to.
            await asyncio.gather(handle._runner, return_exceptions=True)
            error = _to_start_error(exc, handle, self._start_timeout)
            await self._release(handle)
            raise error from exc

        handle.server_info = result.serverInfo
        handle.protocol_version = str(result.protocolVersion)
        logger.info(
            "[%s] MCP connection initialized (server: %s %s, protocol %s).",
            svr_name,
            result.serverInfo.name,
            result.serverInfo.version,
            result.protocolVersion,
        )
        return handle

    async def _run_stdio(
        self,
        handle: SessionHandle,
        params: StdioServerParameters,
        ready: asyncio.Future,
    ) -> None:
        """Own the transport and session contexts for the life of *handle*.

        The contexts are entered and exited in this one task, which anyio
        requires of the task groups inside them.
        """
        svr_name = handle.name
        try:
            async with AsyncExitStack() as stack:
                streams = await stack.enter_async_context(
                    stdio_client(params, errlog=handle._errlog)
                )
                logger.debug("[%s] (stdio) transport streams established.", svr_name)
                session = await stack.enter_async_context(
                    ClientSession(*streams, client_info=CLIENT_INFO)
                )
                logger.info(
                    "[%s] Initializing MCP connection (timeout: %ss)...",
                    svr_name,
                    self._start_timeout,
                )
                result = await asyncio.wait_for(session.initialize(), timeout=self._start_timeout)
                handle.session = session
                ready.set_result(result)
                await handle._stop.wait()
                logger.debug("[%s] Closing MCP session.", svr_name)
        except Exception as exc:
            if not ready.done():
                ready.set_exception(exc)
            else:
                logger.error("[%s] MCP session ended with an error: %s", svr_name, exc)
        finally:
            handle.session = None

    async def _probe_http(self, server: HttpServerDef) -> SessionHandle:
        svr_name = server.name
        logger.info("[%s] Probing %s (timeout: %ss)...", svr_name, server.url, self._probe_timeout)
        try:
            async with httpx.AsyncClient(
                timeout=self._probe_timeout,
                transport=self._http_transport,
                headers=server.headers,
            ) as client:
                response = await client.get(server.url)
        except httpx.TimeoutException as exc:
            raise UnreachableError(
                f"probe timed out after {self._probe_timeout}s", svr_name, exc
            ) from exc
        except httpx.HTTPError as exc:
            raise UnreachableError(f"probe failed: {exc}", svr_name, exc) from exc

        if response.status_code >= 500:
            raise UnreachableError(f"probe returned HTTP {response.status_code}", svr_name)

        logger.info("[%s] Reachable (HTTP %d).", svr_name, response.status_code)
        return SessionHandle(
            name=svr_name,
            transport="http",
            url=server.url,
            status_code=response.status_code,
        )

    async def _release(self, handle: SessionHandle) -> None:
        """Close the session (stopping its process) and drop captured stderr."""
        if handle.closed:
            return
        handle.closed = True
        runner = handle._runner

        if runner is not None and not runner.done():
            handle._stop.set()
            try:
                await asyncio.wait_for(asyncio.shield(runner), timeout=self._stop_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "[%s] Session did not close within %ss, cancelling it.",
                    handle.name,
                    self._stop_timeout,
                )
                runner.cancel()
                await asyncio.gather(runner, return_exceptions=True)

        if handle._errlog is not None:
            tail = handle.stderr_tail()
            if tail:
                logger.debug("[%s-stderr] %s", handle.name, tail)
            handle._errlog.close()

        logger.info("[%s] Session released.", handle.name)

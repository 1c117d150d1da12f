"""Custom exception classes for Pack Sentinel."""

from typing import Optional


class PackSentinelError(Exception):
    """Base class for all custom exceptions in Pack Sentinel."""

    pass


class ConfigurationError(PackSentinelError):
    """Raised when loading or validating the configuration file fails."""

    pass


# ── Manifest loading ─────────────────────────────────────────────────────


class LoadError(PackSentinelError):
    """Raised when a capability manifest cannot be loaded.

    A registry is never built from a manifest that raised this error.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        full_msg = message
        if path:
            full_msg += f" ({path})"
        super().__init__(full_msg)


class ManifestParseError(LoadError):
    """Raised when a manifest document is malformed."""

    pass


class MissingFieldError(LoadError):
    """Raised when a mandatory header field is absent or blank."""

    def __init__(self, kind: str, field: str, path: Optional[str] = None):
        self.kind = kind
        self.field = field
        super().__init__(f"{kind} definition is missing mandatory field '{field}'", path)


class DuplicateNameError(LoadError):
    """Raised when two definitions of the same kind share an identity."""

    def __init__(self, kind: str, name: str, first_path: str, second_path: str):
        self.kind = kind
        self.name = name
        self.first_path = first_path
        self.second_path = second_path
        message = (
            f"Duplicate {kind} name '{name}': defined in both "
            f"'{first_path}' and '{second_path}'. Names must be unique per kind."
        )
        super().__init__(message)


class FileTooLargeError(LoadError):
    """Raised when a manifest file exceeds the configured size ceiling."""

    def __init__(self, path: str, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"File is {size} bytes, limit is {limit} bytes", path)


class UnknownServerError(LoadError):
    """Raised when a capability depends on an MCP server nobody declared."""

    def __init__(self, capability: str, server: str, path: Optional[str] = None):
        self.capability = capability
        self.server = server
        super().__init__(
            f"'{capability}' depends on undeclared MCP server '{server}'", path
        )


class RegistryUnavailableError(PackSentinelError):
    """Raised when dispatch is attempted without a good registry snapshot."""

    pass


# ── MCP sessions ─────────────────────────────────────────────────────────


class StartError(PackSentinelError):
    """
    Raised when a declared MCP server cannot be started or reached.
    The capability stays dispatchable; only its tool use is unavailable.
    """

    def __init__(
        self,
        message: str,
        svr_name: Optional[str] = None,
        orig_exc: Optional[BaseException] = None,
    ):
        self.svr_name = svr_name
        self.orig_exc = orig_exc

        full_msg = "MCP server start error"
        if svr_name:
            full_msg += f" (server: {svr_name})"
        full_msg += f": {message}"
        if orig_exc:
            full_msg += f" (original error: {type(orig_exc).__name__})"
        super().__init__(full_msg)


class StartTimeoutError(StartError):
    """The server did not finish its handshake in time."""

    pass


class NonZeroExitError(StartError):
    """The server process exited (closed the connection) before answering initialize.

    The SDK transport owns the process, so the exit status is not always
    known; the captured stderr tail usually says why.
    """

    def __init__(
        self,
        svr_name: str,
        returncode: Optional[int] = None,
        stderr_tail: str = "",
    ):
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        message = "process exited before completing the handshake"
        if returncode is not None:
            message += f" (status {returncode})"
        if stderr_tail:
            message += f": {stderr_tail}"
        super().__init__(message, svr_name)


class UnreachableError(StartError):
    """An HTTP server did not answer the reachability probe."""

    pass


class HandshakeError(StartError):
    """The server answered, but not with a valid MCP initialize result."""

    pass

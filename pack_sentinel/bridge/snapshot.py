"""Registry snapshot holder with build-then-swap reloads."""

import logging
import threading
from typing import Callable, Optional

from pack_sentinel.bridge.capability_registry import CapabilityRegistry
from pack_sentinel.errors import LoadError, RegistryUnavailableError
from pack_sentinel.manifest.diff import ManifestDiff, compute_diff
from pack_sentinel.manifest.models import CapabilityManifest

logger = logging.getLogger(__name__)

ManifestFactory = Callable[[], CapabilityManifest]


class RegistryHolder:
    """Owns the current :class:`CapabilityRegistry` snapshot.

    Readers take :attr:`current` once per request and keep using that
    object; a reload builds a complete new registry first and only then
    rebinds the reference, so readers never observe a half-built one.
    A failed reload leaves the previous snapshot in place.

    Parameters
    ----------
    factory:
        Zero-argument callable returning a freshly loaded manifest
        (typically ``functools.partial(load_manifest, roots)``).
    """

    def __init__(self, factory: ManifestFactory) -> None:
        self._factory = factory
        self._registry: Optional[CapabilityRegistry] = None
        self._last_error: Optional[LoadError] = None
        self._reload_lock = threading.Lock()

    @property
    def current(self) -> CapabilityRegistry:
        """The live snapshot; raises if no good manifest was ever loaded."""
        registry = self._registry
        if registry is None:
            detail = f": {self._last_error}" if self._last_error else ""
            raise RegistryUnavailableError(f"No valid capability registry is loaded{detail}")
        return registry

    @property
    def loaded(self) -> bool:
        return self._registry is not None

    @property
    def last_error(self) -> Optional[LoadError]:
        """The error from the most recent failed load, cleared on success."""
        return self._last_error

    def load(self) -> CapabilityRegistry:
        """Build the registry (initial load); same semantics as :meth:`reload`."""
        self.reload()
        return self.current

    def reload(self) -> ManifestDiff:
        """Rebuild from disk and atomically swap in the new snapshot.

        Raises:
            LoadError: The new manifest is bad.  The previous snapshot
                (if any) stays live.
        """
        with self._reload_lock:
            previous = self._registry
            try:
                manifest = self._factory()
            except LoadError as exc:
                self._last_error = exc
                if previous is not None:
                    logger.error(
                        "Manifest reload failed, keeping registry #%d: %s",
                        previous.generation,
                        exc,
                    )
                else:
                    logger.error("Manifest load failed, no registry available: %s", exc)
                raise

            registry = CapabilityRegistry(manifest)
            old_manifest = previous.manifest if previous is not None else CapabilityManifest()
            diff = compute_diff(old_manifest, manifest)

            self._registry = registry
            self._last_error = None

        if previous is None:
            logger.info("Registry #%d published.", registry.generation)
        elif diff.has_changes:
            logger.info(
                "Registry #%d replaced #%d (%s).",
                registry.generation,
                previous.generation,
                diff.summary(),
            )
        else:
            logger.info(
                "Registry #%d replaced #%d (no changes).",
                registry.generation,
                previous.generation,
            )
        return diff

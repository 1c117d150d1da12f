"""Async manifest tree watcher with debounce.

Polls every plugin root for added, removed, or modified files and
triggers a reload callback once the tree has been quiet for the debounce
period.  Stat-based polling keeps the dependency set small; a two
second interval is plenty for files edited by hand.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple

from pack_sentinel.constants import WATCH_DEBOUNCE, WATCH_POLL_INTERVAL

logger = logging.getLogger(__name__)

Fingerprint = Dict[str, Tuple[float, int]]


def fingerprint(roots: Sequence[str]) -> Fingerprint:
    """Map every regular file under *roots* to ``(mtime, size)``."""
    seen: Fingerprint = {}
    for root in roots:
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d != "__pycache__")
            for fname in filenames:
                fpath = os.path.join(dirpath, fname)
                try:
                    st = os.stat(fpath)
                except OSError:
                    continue  # removed between walk and stat
                seen[fpath] = (st.st_mtime, st.st_size)
    return seen


class ManifestWatcher:
    """Poll-based async watcher for a set of plugin roots.

    Parameters
    ----------
    roots:
        Directories to watch recursively.
    on_change:
        Async callback invoked when the tree changes (after debounce).
        Typically calls ``service.reload()``.
    poll_interval:
        Seconds between scans.
    debounce:
        Seconds the tree must stay unchanged before the callback runs.
    """

    def __init__(
        self,
        roots: Sequence[str],
        on_change: Callable[[], Awaitable[Any]],
        *,
        poll_interval: float = WATCH_POLL_INTERVAL,
        debounce: float = WATCH_DEBOUNCE,
    ) -> None:
        self._roots = tuple(roots)
        self._on_change = on_change
        self._poll_interval = poll_interval
        self._debounce = debounce

        self._task: Optional[asyncio.Task[None]] = None
        self._last: Fingerprint = {}
        self._stop_event = asyncio.Event()
        self.triggered = 0

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        """Begin watching.  Safe to call multiple times."""
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._last = fingerprint(self._roots)
        self._task = asyncio.create_task(self._poll_loop(), name="manifest-watcher")
        logger.info("Manifest watcher started: %s", ", ".join(self._roots))

    async def stop(self) -> None:
        """Stop watching and await task cleanup."""
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Manifest watcher stopped.")

    @property
    def watching(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Internal ─────────────────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.sleep(self._poll_interval)
            except asyncio.CancelledError:
                return

            current = fingerprint(self._roots)
            if current == self._last:
                continue

            logger.debug("Manifest change detected (%d file(s)), debouncing...", len(current))
            self._last = current
            await asyncio.sleep(self._debounce)
            settled = fingerprint(self._roots)
            if settled != current:
                # Still being edited; wait for the next quiet period.
                self._last = settled
                continue

            self.triggered += 1
            try:
                logger.info("Manifest files changed, triggering reload...")
                await self._on_change()
            except Exception:
                logger.exception("Error in manifest-change callback.")

"""Pending operation markers — suppress notifications for the app's own writes.

Callers register the absolute path they are about to touch; the watcher drops
raw events for registered paths. Each marker expires after a short TTL. This
is a race-avoidance heuristic: an OS event delivered after expiry, or a write
that lands before registration, still surfaces as an external change.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 0.5


class PendingOperationSet:
    """Synchronized set of paths with per-entry expiry timers."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        # path → scheduled expiry
        self._markers: dict[Path, asyncio.TimerHandle] = {}

    def add(self, path: Path | str) -> None:
        """Mark *path* as about to be written by the application.

        Must be called from the event loop. Re-registering a path restarts its
        expiry window.
        """
        key = Path(path)
        loop = asyncio.get_running_loop()
        with self._lock:
            previous = self._markers.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._markers[key] = loop.call_later(self.ttl_seconds, self._expire, key)
        logger.debug("Pending operation registered: %s", key)

    def contains(self, path: Path | str) -> bool:
        with self._lock:
            return Path(path) in self._markers

    def covers(self, path: Path | str) -> bool:
        """True if *path* or one of its ancestors is registered.

        Removing or moving a directory produces events for every descendant;
        registering the directory covers all of them.
        """
        key = Path(path)
        with self._lock:
            if key in self._markers:
                return True
            return any(parent in self._markers for parent in key.parents)

    def discard(self, path: Path | str) -> None:
        with self._lock:
            handle = self._markers.pop(Path(path), None)
        if handle is not None:
            handle.cancel()

    def clear(self) -> None:
        with self._lock:
            handles = list(self._markers.values())
            self._markers.clear()
        for handle in handles:
            handle.cancel()

    def _expire(self, key: Path) -> None:
        with self._lock:
            self._markers.pop(key, None)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, (str, Path)) and self.contains(path)

    def __len__(self) -> int:
        with self._lock:
            return len(self._markers)

"""Vault file watcher — the single process-wide watch on the active vault.

States: idle, or watching exactly one ``(vault_id, path)``. Starting a watch
stops the current one first. Stopping a watch stops the observer thread and
awaits the consumer task, so no stale consumer outlives its watch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from inkrypt.vault.errors import VaultIOError
from inkrypt.vault.models import METADATA_DIR
from inkrypt.vault.pending import PendingOperationSet
from inkrypt.vault.watch_handler import (
    DEFAULT_CAPACITY,
    DEFAULT_DEBOUNCE_SECONDS,
    ChangeBatcher,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from watchdog.observers.api import BaseObserver

    from inkrypt.config import WatchConfig
    from inkrypt.vault.events import ChangeEventBus

logger = logging.getLogger(__name__)


class _VaultEventHandler(FileSystemEventHandler):
    """Forwards every raw event to the batcher; runs on the observer thread."""

    def __init__(self, batcher: ChangeBatcher) -> None:
        self.batcher = batcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        self.batcher.feed(event)


@dataclass(slots=True)
class _WatchSession:
    vault_id: UUID
    vault_path: Path
    observer: BaseObserver
    batcher: ChangeBatcher
    task: asyncio.Task[None]


def _stop_observer(observer: BaseObserver) -> None:
    observer.stop()
    observer.join()


class VaultWatcher:
    """Watches the active vault and publishes debounced change batches.

    Usage:
        watcher = VaultWatcher(bus)
        await watcher.watch(vault.id, vault.path)
        watcher.mark_pending(path)  # before the app writes *path*
        ...
        await watcher.unwatch(vault.id)
    """

    def __init__(
        self,
        bus: ChangeEventBus,
        pending: PendingOperationSet | None = None,
        config: WatchConfig | None = None,
        *,
        metadata_dir: str = METADATA_DIR,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self.bus = bus
        self.debounce_seconds = config.debounce_seconds if config else DEFAULT_DEBOUNCE_SECONDS
        self.capacity = config.channel_capacity if config else DEFAULT_CAPACITY
        if pending is None:
            pending = PendingOperationSet(config.pending_ttl_seconds) if config else PendingOperationSet()
        self.pending = pending
        self._metadata_dir = metadata_dir
        self._observer_factory = observer_factory
        self._slot_lock = asyncio.Lock()
        self._session: _WatchSession | None = None

    @property
    def current_vault_id(self) -> UUID | None:
        return self._session.vault_id if self._session else None

    @property
    def current_path(self) -> Path | None:
        return self._session.vault_path if self._session else None

    @property
    def is_watching(self) -> bool:
        return self._session is not None

    async def watch(self, vault_id: UUID, vault_path: Path) -> None:
        """Start watching *vault_path*, replacing any current watch.

        Raises VaultIOError if the observer cannot be started; the watcher is
        then left idle.
        """
        async with self._slot_lock:
            await self._stop_session_locked()

            root = Path(vault_path).resolve()
            batcher = ChangeBatcher(
                vault_id,
                root,
                self.pending,
                self.bus,
                debounce_seconds=self.debounce_seconds,
                capacity=self.capacity,
                metadata_dir=self._metadata_dir,
            )
            observer = self._observer_factory()
            try:
                observer.schedule(_VaultEventHandler(batcher), str(root), recursive=True)
                observer.start()
            except OSError as exc:
                raise VaultIOError(f"Cannot watch {root}: {exc}") from exc

            task = asyncio.create_task(batcher.run(), name=f"vault-watch-{vault_id}")
            self._session = _WatchSession(vault_id, root, observer, batcher, task)
            logger.info("Watching vault %s at %s", vault_id, root)

    async def unwatch(self, vault_id: UUID) -> None:
        """Stop watching if *vault_id* is the watched vault; otherwise do nothing."""
        async with self._slot_lock:
            if self._session is None or self._session.vault_id != vault_id:
                return
            await self._stop_session_locked()

    async def close(self) -> None:
        """Stop whatever is being watched."""
        async with self._slot_lock:
            await self._stop_session_locked()

    def mark_pending(self, path: Path | str) -> None:
        """Suppress notifications for *path* during the pending window."""
        self.pending.add(path)

    async def _stop_session_locked(self) -> None:
        session = self._session
        if session is None:
            return
        self._session = None

        try:
            await asyncio.to_thread(_stop_observer, session.observer)
        except Exception:
            logger.exception("Failed to unwatch path %s", session.vault_path)

        session.task.cancel()
        try:
            await session.task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Change consumer for vault %s failed", session.vault_id)
        logger.info("Stopped watching vault: %s", session.vault_id)

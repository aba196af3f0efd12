"""Change batcher — turns raw watchdog notifications into debounced batches.

One batcher exists per watch session. The observer thread hands raw events
over with :meth:`ChangeBatcher.feed`, which never blocks; a single consumer
task (:meth:`ChangeBatcher.run`) drains them. Key properties:

* **Self-write suppression** — events touching a path registered in the
  :class:`PendingOperationSet` are dropped.
* **Metadata isolation** — anything under the vault's ``.inkrypt`` directory
  is dropped.
* **Debounce** — the consumer waits up to ``debounce`` for the next event.
  When the wait times out and at least ``debounce`` has passed since the last
  flush, the buffer is deduplicated and published as one batch.
* **Newest wins** — within a batch, only the latest event per
  ``(vault_id, path)`` survives; survivors keep their chronological order.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
)

from inkrypt.vault.events import VAULT_CHANGES
from inkrypt.vault.models import METADATA_DIR, FileEventType, FileSystemEvent

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from watchdog.events import FileSystemEvent as NativeEvent

    from inkrypt.vault.events import ChangeBatch, ChangeEventBus
    from inkrypt.vault.pending import PendingOperationSet

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.2
DEFAULT_CAPACITY = 100

_SIMPLE_KINDS = {
    EVENT_TYPE_CREATED: FileEventType.CREATE,
    EVENT_TYPE_MODIFIED: FileEventType.MODIFY,
    EVENT_TYPE_DELETED: FileEventType.DELETE,
}


def deduplicate_events(events: Iterable[FileSystemEvent]) -> list[FileSystemEvent]:
    """Keep the most recent event per ``(vault_id, path)``, in chronological order."""
    seen: set[tuple[UUID, str]] = set()
    unique: list[FileSystemEvent] = []
    for event in reversed(list(events)):
        key = (event.vault_id, event.path)
        if key not in seen:
            seen.add(key)
            unique.append(event)
    unique.reverse()
    return unique


def _native_paths(raw: NativeEvent) -> list[str]:
    paths = [os.fsdecode(raw.src_path)]
    dest = getattr(raw, "dest_path", "")
    if dest:
        paths.append(os.fsdecode(dest))
    return paths


class ChangeBatcher:
    """Filters, classifies and batches raw events for one watched vault.

    Parameters
    ----------
    vault_id:
        Id stamped on every emitted event.
    vault_root:
        Absolute path the observer watches; emitted paths are relative to it.
    pending:
        Shared self-write markers.
    bus:
        Bus receiving one ``vault-changes`` batch per flush.
    """

    def __init__(
        self,
        vault_id: UUID,
        vault_root: Path,
        pending: PendingOperationSet,
        bus: ChangeEventBus,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        capacity: int = DEFAULT_CAPACITY,
        metadata_dir: str = METADATA_DIR,
    ) -> None:
        self.vault_id = vault_id
        self.vault_root = vault_root
        self.debounce_seconds = debounce_seconds
        self._pending = pending
        self._bus = bus
        self._metadata_dir = metadata_dir
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[NativeEvent] = asyncio.Queue(maxsize=capacity)
        self._buffer: list[FileSystemEvent] = []

    # ------------------------------------------------------------------
    # Producer side (observer thread)
    # ------------------------------------------------------------------

    def feed(self, raw: NativeEvent) -> None:
        """Hand a raw event to the consumer. Safe from any thread, never blocks."""
        try:
            self._loop.call_soon_threadsafe(self._enqueue, raw)
        except RuntimeError:
            logger.debug("Event loop closed, dropping %s", raw)

    def _enqueue(self, raw: NativeEvent) -> None:
        try:
            self._queue.put_nowait(raw)
        except asyncio.QueueFull:
            logger.error("Change queue full for vault %s, dropping %s", self.vault_id, raw)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    @property
    def buffered_count(self) -> int:
        return len(self._buffer)

    async def run(self) -> None:
        """Consume raw events until cancelled."""
        last_flush = self._loop.time()
        while True:
            try:
                raw = await asyncio.wait_for(self._queue.get(), timeout=self.debounce_seconds)
            except TimeoutError:
                if self._buffer and self._loop.time() - last_flush >= self.debounce_seconds:
                    await self.flush()
                    last_flush = self._loop.time()
                continue

            event = self.classify(raw)
            if event is not None:
                self._buffer.append(event)

    async def flush(self) -> ChangeBatch:
        """Deduplicate and publish the buffer. Returns what was published."""
        batch = deduplicate_events(self._buffer)
        self._buffer.clear()
        if batch:
            logger.debug("Emitting %d change(s) for vault %s", len(batch), self.vault_id)
            await self._bus.publish(VAULT_CHANGES, batch)
        return batch

    def classify(self, raw: NativeEvent) -> FileSystemEvent | None:
        """Map a raw event to a domain event, or ``None`` when it is dropped."""
        paths = _native_paths(raw)

        for path in paths:
            if self._pending.covers(path):
                logger.debug("Ignoring pending operation for: %s", path)
                return None

        if any(self._touches_metadata(path) for path in paths):
            return None

        if raw.event_type == EVENT_TYPE_MOVED:
            return self._classify_move(paths[0], paths[1] if len(paths) > 1 else "")

        kind = _SIMPLE_KINDS.get(raw.event_type)
        if kind is None:
            return None
        # Directory mtime changes mirror child events that are reported on their own
        if kind is FileEventType.MODIFY and raw.is_directory:
            return None

        rel = self._relative(paths[0])
        if rel is None:
            return None
        return FileSystemEvent(event_type=kind, path=rel, vault_id=self.vault_id)

    def _classify_move(self, src: str, dest: str) -> FileSystemEvent | None:
        old_rel = self._relative(src)
        new_rel = self._relative(dest) if dest else None

        if old_rel is not None and new_rel is not None:
            return FileSystemEvent(
                event_type=FileEventType.RENAME,
                path=new_rel,
                old_path=old_rel,
                vault_id=self.vault_id,
            )
        if old_rel is not None:
            return FileSystemEvent(event_type=FileEventType.DELETE, path=old_rel, vault_id=self.vault_id)
        if new_rel is not None:
            return FileSystemEvent(event_type=FileEventType.CREATE, path=new_rel, vault_id=self.vault_id)
        return None

    def _relative(self, path: str) -> str | None:
        """Vault-relative ``/`` path, or ``None`` for the root or outside paths."""
        try:
            rel = Path(path).relative_to(self.vault_root)
        except ValueError:
            return None
        if not rel.parts:
            return None
        return rel.as_posix()

    def _touches_metadata(self, path: str) -> bool:
        p = Path(path)
        try:
            p = p.relative_to(self.vault_root)
        except ValueError:
            pass
        return self._metadata_dir in p.parts

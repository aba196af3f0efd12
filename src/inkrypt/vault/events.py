"""Async event bus for change batches emitted by the vault watcher.

Subscribers register for a named event (currently only ``vault-changes``)
without coupling to the watcher that produces it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Sequence
    from typing import Any

    from inkrypt.vault.models import FileSystemEvent

logger = logging.getLogger(__name__)

VAULT_CHANGES = "vault-changes"

type ChangeBatch = list[FileSystemEvent]

# Callback signature: async fn(batch) -> None
type BatchCallback = Callable[[ChangeBatch], Coroutine[Any, Any, None]]


def batch_to_payload(batch: Sequence[FileSystemEvent]) -> list[dict[str, object]]:
    """Wire form of a batch: ``[{eventType, path, vaultId[, oldPath]}, ...]``."""
    return [event.to_wire() for event in batch]


class ChangeEventBus:
    """Async publish/subscribe bus for change batches.

    Publishing dispatches to all subscribers of the event name concurrently
    via ``asyncio.gather``. Subscriber errors are logged and do not propagate.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[BatchCallback]] = {}

    def subscribe(self, name: str, callback: BatchCallback) -> None:
        """Register *callback* for batches published under *name*."""
        self._subscribers.setdefault(name, []).append(callback)
        logger.debug("Subscriber registered: %s → %s", name, callback.__qualname__)

    def unsubscribe(self, name: str, callback: BatchCallback) -> None:
        """Remove *callback* from *name* subscribers."""
        subs = self._subscribers.get(name, [])
        with contextlib.suppress(ValueError):
            subs.remove(callback)

    async def publish(self, name: str, batch: ChangeBatch) -> None:
        """Dispatch *batch* to every subscriber of *name*."""
        subs = list(self._subscribers.get(name, []))
        if not subs:
            return

        async def _safe_call(cb: BatchCallback) -> None:
            try:
                await cb(list(batch))
            except Exception:
                logger.exception("Subscriber %s failed on %s", cb.__qualname__, name)

        await asyncio.gather(*[_safe_call(cb) for cb in subs])

    @property
    def subscriber_count(self) -> int:
        return sum(len(v) for v in self._subscribers.values())

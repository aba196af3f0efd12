"""Vault service — the operation surface exposed to UI processes and the CLI.

Composes the manager, the watcher and the change bus. Its one obligation
beyond delegation: register pending paths with the watcher *before* any
entry mutation, so the application's own writes are not echoed back as
external changes.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from inkrypt.vault.errors import VaultError
from inkrypt.vault.events import ChangeEventBus
from inkrypt.vault.manager import VaultManager
from inkrypt.vault.watcher import VaultWatcher

if TYPE_CHECKING:
    from uuid import UUID

    from inkrypt.config import Settings
    from inkrypt.vault.models import Entry, Vault

logger = logging.getLogger(__name__)


def _topmost_missing_parent(path: Path) -> Path | None:
    """Highest ancestor of *path* that does not exist yet, if any."""
    missing: Path | None = None
    parent = path.parent
    while parent != parent.parent and not parent.exists():
        missing = parent
        parent = parent.parent
    return missing


class VaultService:
    """One coroutine per operation; errors propagate as :class:`VaultError`."""

    def __init__(
        self,
        manager: VaultManager,
        watcher: VaultWatcher,
        bus: ChangeEventBus,
    ) -> None:
        self.manager = manager
        self.watcher = watcher
        self.bus = bus

    @classmethod
    def from_settings(cls, settings: Settings) -> VaultService:
        bus = ChangeEventBus()
        manager = VaultManager.from_config(settings.storage)
        watcher = VaultWatcher(bus, config=settings.watch, metadata_dir=settings.storage.metadata_dir)
        return cls(manager, watcher, bus)

    # ------------------------------------------------------------------
    # Vaults
    # ------------------------------------------------------------------

    async def create_vault(self, name: str, root: Path | str) -> Vault:
        return await self.manager.create_vault(Path(root), name)

    async def list_vaults(self) -> list[Vault]:
        return await self.manager.list_vaults()

    async def open_vault(self, path: Path | str) -> Vault:
        """Open the vault at *path* and start watching it.

        A watch that fails to start is logged; the opened vault is still
        returned.
        """
        vault = await self.manager.open_vault(Path(path))
        try:
            await self.watcher.watch(vault.id, vault.path)
        except VaultError:
            logger.exception("Failed to start watching vault %s", vault.id)
        else:
            logger.info("Started watching vault: %s", vault.name)
        return vault

    async def close_vault(self, vault_id: UUID) -> None:
        await self.watcher.unwatch(vault_id)

    async def delete_vault(self, vault_id: UUID) -> None:
        await self.close_vault(vault_id)
        await self.manager.delete_vault(vault_id)

    async def rename_vault(self, vault_id: UUID, new_name: str) -> Vault:
        """Rename the vault; a watch on it follows the directory to its new path."""
        was_watching = self.watcher.current_vault_id == vault_id
        if was_watching:
            await self.watcher.unwatch(vault_id)

        try:
            vault = await self.manager.rename_vault(vault_id, new_name)
        except VaultError:
            if was_watching:
                await self._rewatch(vault_id)
            raise

        if was_watching:
            await self.watcher.watch(vault.id, vault.path)
        return vault

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def list_entries(self, vault_id: UUID, directory: str | None = None) -> list[Entry]:
        return await self.manager.list_entries(vault_id, directory)

    async def read_note(self, vault_id: UUID, path: str) -> str:
        return await self.manager.read_note(vault_id, path)

    async def edit_note(self, vault_id: UUID, path: str, content: str) -> None:
        await self._mark(vault_id, path)
        await self.manager.edit_note(vault_id, path, content)

    async def write_file(self, vault_id: UUID, path: str, content: str) -> None:
        await self._mark(vault_id, path)
        await self.manager.write_file(vault_id, path, content)

    async def create_note(self, vault_id: UUID, path: str) -> None:
        await self._mark(vault_id, path)
        await self.manager.create_note(vault_id, path)

    async def create_directory(self, vault_id: UUID, path: str) -> None:
        await self._mark(vault_id, path)
        await self.manager.create_directory(vault_id, path)

    async def delete_entry(self, vault_id: UUID, path: str) -> None:
        await self._mark(vault_id, path, follow_symlinks=False)
        await self.manager.delete_entry(vault_id, path)

    async def rename_entry(self, vault_id: UUID, old_path: str, new_path: str) -> None:
        await self._mark(vault_id, old_path, new_path, follow_symlinks=False)
        await self.manager.rename_entry(vault_id, old_path, new_path)

    async def shutdown(self) -> None:
        await self.watcher.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _mark(self, vault_id: UUID, *relative_paths: str, follow_symlinks: bool = True) -> None:
        for rel in relative_paths:
            path = await self.manager.resolve_entry_path(vault_id, rel, follow_symlinks=follow_symlinks)
            self.watcher.mark_pending(path)
            # Parent directories the operation creates report their own events
            created = await asyncio.to_thread(_topmost_missing_parent, path)
            if created is not None:
                self.watcher.mark_pending(created)

    async def _rewatch(self, vault_id: UUID) -> None:
        try:
            vault = await self.manager.get_vault(vault_id)
            await self.watcher.watch(vault.id, vault.path)
        except VaultError:
            logger.exception("Failed to resume watching vault %s", vault_id)

"""Vault manager — filesystem CRUD on vaults and their entries.

Every identity-addressed operation re-resolves the vault: registry lookup,
then a fresh read of the vault's own metadata file. A vault that was moved,
replaced or corrupted outside the application is therefore detected on its
next use rather than proactively.

Registry mutations and the persist that follows them run inside a single
critical section, so the file on disk always reflects the mutation that
triggered the write.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import stat
import subprocess
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from inkrypt.vault.errors import (
    InvalidVaultError,
    InvalidVaultNameError,
    VaultAlreadyExistsError,
    VaultError,
    VaultIOError,
    VaultNotFoundError,
)
from inkrypt.vault.models import (
    METADATA_DIR,
    METADATA_FILE,
    UNNAMED_VAULT,
    Entry,
    EntryType,
    Vault,
    VaultMetadata,
    utc_now,
)
from inkrypt.vault.registry import VaultRegistry
from inkrypt.vault.security import ProtectedPathError, validate_entry_path, validate_vault_path

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from inkrypt.config import StorageConfig

logger = logging.getLogger(__name__)


def _timestamp(value: float | None) -> datetime | None:
    """Filesystem time truncated to whole seconds, in UTC."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _validate_name(name: str) -> str:
    if not name or name in {".", ".."} or name != Path(name).name or "\\" in name:
        raise InvalidVaultNameError(name)
    return name


def _hide_directory(path: Path) -> None:
    """Mark *path* hidden on Windows. Other platforms rely on the dot prefix."""
    if os.name != "nt":
        return
    try:
        subprocess.run(["attrib", "+h", str(path)], check=False, capture_output=True)
    except OSError:
        logger.warning("Could not set hidden attribute on %s", path)


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _remove_entry(path: Path) -> None:
    # A symlink is removed as the link; its target is left alone
    if path.is_symlink():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)
    elif path.is_file():
        path.unlink()


def _move_entry(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    src.rename(dst)


def _scan_entries(directory: Path, vault_root: Path, metadata_dir: str) -> list[Entry]:
    entries: list[Entry] = []
    at_root = directory == vault_root
    for child in directory.iterdir():
        if child.name.startswith(".") or (at_root and child.name == metadata_dir):
            continue
        try:
            st = child.stat()
        except OSError:
            # Removed between listing and stat
            logger.debug("Skipping vanished entry %s", child)
            continue

        entry_type = EntryType.DIRECTORY if stat.S_ISDIR(st.st_mode) else EntryType.NOTE
        entries.append(
            Entry(
                name=child.name,
                path=child.relative_to(vault_root).as_posix(),
                entry_type=entry_type,
                created_at=_timestamp(getattr(st, "st_birthtime", None)),
                updated_at=_timestamp(st.st_mtime),
            )
        )

    entries.sort(key=lambda e: (e.entry_type != EntryType.DIRECTORY, e.name))
    return entries


class VaultManager:
    """Creates, opens, renames and deletes vaults, and edits their contents.

    Owns the :class:`VaultRegistry` and persists it after every mutation.

    Parameters
    ----------
    registry_path:
        Location of ``vaults.json``.
    registry:
        Preloaded registry. Loaded from *registry_path* when omitted.
    """

    def __init__(
        self,
        registry_path: Path,
        registry: VaultRegistry | None = None,
        *,
        metadata_dir: str = METADATA_DIR,
        metadata_file: str = METADATA_FILE,
    ) -> None:
        self._registry_path = registry_path
        self._registry = registry if registry is not None else VaultRegistry.load(registry_path)
        self._metadata_dir = metadata_dir
        self._metadata_file = metadata_file
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: StorageConfig) -> VaultManager:
        return cls(
            config.registry_path,
            metadata_dir=config.metadata_dir,
            metadata_file=config.metadata_file,
        )

    @property
    def registry(self) -> VaultRegistry:
        return self._registry

    @property
    def registry_path(self) -> Path:
        return self._registry_path

    @property
    def metadata_dir(self) -> str:
        return self._metadata_dir

    # ------------------------------------------------------------------
    # Vault lifecycle
    # ------------------------------------------------------------------

    async def create_vault(self, root: Path, name: str) -> Vault:
        """Create ``root/name`` as a new vault and register it."""
        vault_path = Path(root).expanduser().resolve() / _validate_name(name)
        metadata = await self._io(self._create_vault_files, vault_path)

        vault = Vault(
            id=metadata.id,
            name=name,
            path=vault_path,
            version=metadata.version,
            created_at=metadata.created_at,
            updated_at=metadata.created_at,
        )

        async with self._lock:
            self._registry.insert(vault.id, vault_path)
            await self._persist_locked()

        logger.info("Created vault %s at %s", vault.id, vault_path)
        return vault

    async def open_vault(self, path: Path) -> Vault:
        """Open an existing vault directory and (re-)register it under its id."""
        vault_path = Path(path).expanduser().resolve()
        vault = await self._io(self._load_vault, vault_path)

        async with self._lock:
            previous = self._registry.lookup(vault.id)
            self._registry.insert(vault.id, vault_path)
            await self._persist_locked()

        if previous is not None and previous != vault_path:
            logger.info("Vault %s moved: %s -> %s", vault.id, previous, vault_path)
        else:
            logger.info("Opened vault %s at %s", vault.id, vault_path)
        return vault

    async def list_vaults(self) -> list[Vault]:
        """Every registered vault that still loads with a matching id.

        Missing, corrupt or replaced vaults are skipped, never raised.
        """
        async with self._lock:
            known = self._registry.all()
        vaults = await asyncio.to_thread(self._load_matching, known)
        return sorted(vaults, key=lambda v: v.id)

    async def get_vault(self, vault_id: UUID) -> Vault:
        """Resolve *vault_id* through the registry and its on-disk metadata."""
        async with self._lock:
            path = self._registry.lookup(vault_id)
        if path is None:
            raise VaultNotFoundError(vault_id)

        vault = await self._io(self._load_vault, path)
        if vault.id != vault_id:
            logger.warning(
                "Vault at %s now carries id %s, not %s; treating as absent",
                path,
                vault.id,
                vault_id,
            )
            raise VaultNotFoundError(vault_id)
        return vault

    async def delete_vault(self, vault_id: UUID) -> None:
        """Remove the vault directory and its registry entry. Unknown ids are ignored."""
        async with self._lock:
            path = self._registry.lookup(vault_id)
        if path is None:
            return

        await self._io(self._remove_vault_tree, vault_id, path)

        async with self._lock:
            self._registry.remove(vault_id)
            await self._persist_locked()
        logger.info("Deleted vault %s", vault_id)

    async def rename_vault(self, vault_id: UUID, new_name: str) -> Vault:
        """Move the vault directory to *new_name* alongside its current location."""
        vault = await self.get_vault(vault_id)
        new_path = vault.path.parent / _validate_name(new_name)
        if new_path.exists():
            raise VaultAlreadyExistsError(new_path)

        await self._io(vault.path.rename, new_path)

        async with self._lock:
            self._registry.insert(vault.id, new_path)
            await self._persist_locked()

        logger.info("Renamed vault %s: %s -> %s", vault.id, vault.path, new_path)
        return vault.model_copy(update={"name": new_name, "path": new_path, "updated_at": utc_now()})

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def resolve_entry_path(
        self, vault_id: UUID, relative_path: str, *, follow_symlinks: bool = True
    ) -> Path:
        """Absolute path of an entry, after containment checks."""
        vault = await self.get_vault(vault_id)
        return validate_entry_path(
            relative_path, vault.path, self._metadata_dir, follow_symlinks=follow_symlinks
        )

    async def create_directory(self, vault_id: UUID, relative_path: str) -> None:
        full_path = await self.resolve_entry_path(vault_id, relative_path)
        await self._io(full_path.mkdir, parents=True, exist_ok=True)

    async def create_note(self, vault_id: UUID, relative_path: str) -> None:
        full_path = await self.resolve_entry_path(vault_id, relative_path)
        await self._io(_write_text, full_path, "")

    async def edit_note(self, vault_id: UUID, relative_path: str, content: str) -> None:
        full_path = await self.resolve_entry_path(vault_id, relative_path)
        await self._io(_write_text, full_path, content)

    async def write_file(self, vault_id: UUID, relative_path: str, content: str) -> None:
        """Alias of :meth:`edit_note` for non-note files."""
        await self.edit_note(vault_id, relative_path, content)

    async def read_note(self, vault_id: UUID, relative_path: str) -> str:
        full_path = await self.resolve_entry_path(vault_id, relative_path)
        return await self._io(full_path.read_text, encoding="utf-8")

    async def delete_entry(self, vault_id: UUID, relative_path: str) -> None:
        full_path = await self.resolve_entry_path(vault_id, relative_path, follow_symlinks=False)
        await self._io(_remove_entry, full_path)

    async def rename_entry(self, vault_id: UUID, old_path: str, new_path: str) -> None:
        vault = await self.get_vault(vault_id)
        src = validate_entry_path(old_path, vault.path, self._metadata_dir, follow_symlinks=False)
        dst = validate_entry_path(new_path, vault.path, self._metadata_dir, follow_symlinks=False)
        await self._io(_move_entry, src, dst)

    async def list_entries(self, vault_id: UUID, relative_dir: str | None = None) -> list[Entry]:
        """One directory level: directories first, then notes, each sorted by name."""
        vault = await self.get_vault(vault_id)
        root = vault.path.resolve()
        directory = validate_vault_path(relative_dir or "", root)
        rel = directory.relative_to(root)
        if rel.parts and rel.parts[0] == self._metadata_dir:
            raise ProtectedPathError(relative_dir or "", "metadata directory is not listable")
        return await self._io(_scan_entries, directory, root, self._metadata_dir)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _persist_locked(self) -> None:
        """Write the registry. Caller must hold ``self._lock``."""
        await asyncio.to_thread(self._registry.save, self._registry_path)

    @staticmethod
    async def _io(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run blocking filesystem work off the loop, wrapping OS failures."""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except OSError as exc:
            raise VaultIOError(str(exc)) from exc

    def _metadata_path(self, vault_path: Path) -> Path:
        return vault_path / self._metadata_dir / self._metadata_file

    def _load_vault(self, vault_path: Path) -> Vault:
        metadata_path = self._metadata_path(vault_path)
        if not metadata_path.is_file():
            raise InvalidVaultError(vault_path, f"{self._metadata_dir}/{self._metadata_file} not found")

        raw = metadata_path.read_bytes()
        try:
            metadata = VaultMetadata.model_validate_json(raw)
        except ValidationError as exc:
            raise InvalidVaultError(vault_path, "unparseable metadata") from exc

        return Vault(
            id=metadata.id,
            name=vault_path.name or UNNAMED_VAULT,
            path=vault_path,
            version=metadata.version,
            created_at=metadata.created_at,
            updated_at=utc_now(),
        )

    def _load_matching(self, known: list[tuple[UUID, Path]]) -> list[Vault]:
        vaults: list[Vault] = []
        for vault_id, path in known:
            try:
                vault = self._load_vault(path)
            except (VaultError, OSError) as exc:
                logger.debug("Skipping registered vault %s at %s: %s", vault_id, path, exc)
                continue
            if vault.id != vault_id:
                logger.debug("Skipping %s: %s now holds vault %s", vault_id, path, vault.id)
                continue
            vaults.append(vault)
        return vaults

    def _create_vault_files(self, vault_path: Path) -> VaultMetadata:
        if vault_path.exists():
            raise VaultAlreadyExistsError(vault_path)
        try:
            vault_path.mkdir(parents=True)
        except FileExistsError:
            raise VaultAlreadyExistsError(vault_path) from None

        metadata_dir = vault_path / self._metadata_dir
        metadata_dir.mkdir()
        _hide_directory(metadata_dir)

        metadata = VaultMetadata()
        self._metadata_path(vault_path).write_text(metadata.model_dump_json(indent=2), encoding="utf-8")
        return metadata

    def _remove_vault_tree(self, vault_id: UUID, path: Path) -> None:
        if not path.exists():
            return
        try:
            current = self._load_vault(path)
        except VaultError:
            current = None
        if current is None or current.id != vault_id:
            # Directory no longer belongs to this vault; only the registry entry goes
            logger.warning("Not removing %s: it does not hold vault %s", path, vault_id)
            return
        shutil.rmtree(path)

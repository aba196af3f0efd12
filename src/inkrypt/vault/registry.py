"""Vault registry — durable ``id -> path`` index of known vaults.

The registry is a cache. The metadata file inside each vault is the source of
truth for identity, so a registry entry only counts when the vault it points
at still carries the same id (checked by the manager, not here).
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path  # noqa: TC003 — Pydantic needs Path at runtime
from uuid import UUID  # noqa: TC003

from pydantic import BaseModel, Field, ValidationError

from inkrypt.vault.errors import VaultIOError, VaultSerializationError

logger = logging.getLogger(__name__)


class _RegistryFile(BaseModel):
    """On-disk shape of ``vaults.json``."""

    vaults: dict[UUID, Path] = Field(default_factory=dict)


class VaultRegistry:
    """In-memory vault index with explicit load/save.

    Only :meth:`load` and :meth:`save` touch the filesystem. Callers are
    responsible for locking; the registry itself is not synchronized.
    """

    def __init__(self, vaults: dict[UUID, Path] | None = None) -> None:
        self._vaults: dict[UUID, Path] = dict(vaults or {})
        # Set when load() fell back to an empty registry
        self.load_error: str | None = None

    @classmethod
    def load(cls, path: Path) -> VaultRegistry:
        """Load the registry at *path*, or start empty.

        A file that exists but cannot be read or parsed is treated as empty.
        The condition is logged and kept on ``load_error``.
        """
        if not path.exists():
            return cls()

        try:
            data = _RegistryFile.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as exc:
            logger.warning("Vault registry %s is unreadable, starting empty: %s", path, exc)
            registry = cls()
            registry.load_error = f"{type(exc).__name__}: {exc}"
            return registry

        logger.debug("Loaded %d vault(s) from %s", len(data.vaults), path)
        return cls(data.vaults)

    def save(self, path: Path) -> None:
        """Write the registry as pretty-printed JSON, replacing *path* atomically."""
        try:
            payload = _RegistryFile(vaults=self._vaults).model_dump_json(indent=2)
        except ValueError as exc:
            raise VaultSerializationError(f"Cannot encode vault registry: {exc}") from exc

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".vaults-", suffix=".tmp", dir=path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise VaultIOError(f"Cannot write vault registry {path}: {exc}") from exc
        logger.debug("Saved %d vault(s) to %s", len(self._vaults), path)

    def insert(self, vault_id: UUID, path: Path) -> None:
        self._vaults[vault_id] = path

    def remove(self, vault_id: UUID) -> None:
        self._vaults.pop(vault_id, None)

    def lookup(self, vault_id: UUID) -> Path | None:
        return self._vaults.get(vault_id)

    def all(self) -> list[tuple[UUID, Path]]:
        """Snapshot of every ``(id, path)`` pair."""
        return list(self._vaults.items())

    def __len__(self) -> int:
        return len(self._vaults)

    def __contains__(self, vault_id: object) -> bool:
        return vault_id in self._vaults

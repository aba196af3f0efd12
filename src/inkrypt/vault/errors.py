"""Error taxonomy for vault operations."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path
    from uuid import UUID


class VaultError(Exception):
    """Base class for every error raised by vault operations."""


class VaultAlreadyExistsError(VaultError):
    """Raised when a create or rename would collide with an existing path."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"A directory with this name already exists: {path}")


class VaultNotFoundError(VaultError):
    """Raised when a vault id is not present in the registry."""

    def __init__(self, vault_id: UUID) -> None:
        self.vault_id = vault_id
        super().__init__(f"Vault not found: {vault_id}")


class InvalidVaultError(VaultError):
    """Raised when a directory has no readable vault metadata."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Not a valid vault: {path} ({reason})")


class VaultIOError(VaultError):
    """Raised when an underlying filesystem operation fails."""


class VaultSerializationError(VaultError):
    """Raised when registry or metadata encoding/decoding fails."""


class InvalidVaultNameError(VaultError, ValueError):
    """Raised when a vault name is not a single, plain path segment."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Invalid vault name: {name!r}")

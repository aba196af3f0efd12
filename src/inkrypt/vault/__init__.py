"""Vault operations — registry, filesystem CRUD, and change notifications."""

from inkrypt.vault.errors import (
    InvalidVaultError,
    InvalidVaultNameError,
    VaultAlreadyExistsError,
    VaultError,
    VaultIOError,
    VaultNotFoundError,
    VaultSerializationError,
)
from inkrypt.vault.events import VAULT_CHANGES, ChangeEventBus, batch_to_payload
from inkrypt.vault.manager import VaultManager
from inkrypt.vault.models import (
    Entry,
    EntryType,
    FileEventType,
    FileSystemEvent,
    Vault,
    VaultMetadata,
)
from inkrypt.vault.pending import PendingOperationSet
from inkrypt.vault.registry import VaultRegistry
from inkrypt.vault.security import PathTraversalError, ProtectedPathError
from inkrypt.vault.watch_handler import ChangeBatcher, deduplicate_events
from inkrypt.vault.watcher import VaultWatcher

__all__ = [
    "VAULT_CHANGES",
    "ChangeBatcher",
    "ChangeEventBus",
    "Entry",
    "EntryType",
    "FileEventType",
    "FileSystemEvent",
    "InvalidVaultError",
    "InvalidVaultNameError",
    "PathTraversalError",
    "PendingOperationSet",
    "ProtectedPathError",
    "Vault",
    "VaultAlreadyExistsError",
    "VaultError",
    "VaultIOError",
    "VaultManager",
    "VaultMetadata",
    "VaultNotFoundError",
    "VaultRegistry",
    "VaultSerializationError",
    "VaultWatcher",
    "batch_to_payload",
    "deduplicate_events",
]

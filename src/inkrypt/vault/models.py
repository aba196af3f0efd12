"""Data models for vaults, directory entries, and change events."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path  # noqa: TC003 — Pydantic needs Path at runtime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from ulid import ULID

METADATA_DIR = ".inkrypt"
METADATA_FILE = "vault.json"
UNNAMED_VAULT = "Unnamed Vault"


def new_vault_id() -> UUID:
    """Time-ordered vault id: a ULID in canonical UUID form."""
    return ULID().to_uuid()


def utc_now() -> datetime:
    return datetime.now(UTC)


class _WireModel(BaseModel):
    """Base for models that cross the UI boundary with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Vault(_WireModel):
    """A vault as seen by callers: identity from metadata, name from the path."""

    id: UUID
    name: str
    path: Path
    version: int = 0
    created_at: datetime
    updated_at: datetime = Field(default_factory=utc_now)


class VaultMetadata(BaseModel):
    """Self-describing identity stored at ``<vault>/.inkrypt/vault.json``."""

    id: UUID = Field(default_factory=new_vault_id)
    version: int = 0
    created_at: datetime = Field(default_factory=utc_now)


class EntryType(StrEnum):
    DIRECTORY = "directory"
    NOTE = "note"


class Entry(_WireModel):
    """One item of a single-level directory listing."""

    name: str
    path: str
    entry_type: EntryType
    created_at: datetime | None = None
    updated_at: datetime | None = None


class FileEventType(StrEnum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"


class FileSystemEvent(_WireModel):
    """A classified change inside the watched vault.

    ``path`` is vault-relative with ``/`` separators. ``old_path`` is only
    set for rename events.
    """

    model_config = ConfigDict(frozen=True)

    event_type: FileEventType
    path: str
    vault_id: UUID
    old_path: str | None = None

"""Path containment checks for entry operations inside a vault."""

from __future__ import annotations

import os
from pathlib import Path

from inkrypt.vault.errors import VaultError


class PathTraversalError(VaultError, ValueError):
    """Raised when a user-supplied path escapes the vault root."""

    def __init__(self, user_path: str, vault_root: Path) -> None:
        self.user_path = user_path
        self.vault_root = vault_root
        super().__init__(
            f"Path traversal blocked: '{user_path}' escapes vault root '{vault_root}'"
        )


class ProtectedPathError(VaultError, ValueError):
    """Raised when a path addresses the vault root or its metadata directory."""

    def __init__(self, user_path: str, reason: str) -> None:
        self.user_path = user_path
        self.reason = reason
        super().__init__(f"Protected path '{user_path}': {reason}")


def validate_vault_path(user_path: str, vault_root: Path) -> Path:
    """Resolve a user-supplied path and verify it stays within the vault root.

    Returns the resolved absolute path if valid.
    Raises PathTraversalError if the resolved path escapes vault_root.
    """
    resolved_root = vault_root.resolve()
    candidate = (resolved_root / user_path).resolve()
    try:
        candidate.relative_to(resolved_root)
    except ValueError:
        raise PathTraversalError(user_path, vault_root) from None
    return candidate


def validate_entry_path(
    user_path: str,
    vault_root: Path,
    metadata_dir: str,
    *,
    follow_symlinks: bool = True,
) -> Path:
    """Like :func:`validate_vault_path`, but also refuses the root and metadata dir.

    Entry mutations must never target the vault directory itself or anything
    under the metadata directory that carries the vault's identity.

    With ``follow_symlinks=False`` only the parent directory is resolved and
    the final segment is kept as given, so a symlink is addressed as the link
    itself rather than its target (used for delete and move).
    """
    resolved_root = vault_root.resolve()
    if follow_symlinks:
        candidate = validate_vault_path(user_path, vault_root)
    else:
        lexical = Path(os.path.normpath(resolved_root / user_path))
        if lexical == resolved_root:
            raise ProtectedPathError(user_path, "addresses the vault root")
        candidate = lexical.parent.resolve() / lexical.name
        if not candidate.is_relative_to(resolved_root):
            raise PathTraversalError(user_path, vault_root)

    rel = candidate.relative_to(resolved_root)
    if not rel.parts:
        raise ProtectedPathError(user_path, "addresses the vault root")
    if rel.parts[0] == metadata_dir:
        raise ProtectedPathError(user_path, f"inside the '{metadata_dir}' metadata directory")
    return candidate

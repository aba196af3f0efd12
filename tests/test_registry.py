"""Tests for VaultRegistry — in-memory index and JSON persistence."""

from __future__ import annotations

import json
from pathlib import Path
from uuid import uuid4

import pytest

from inkrypt.vault.registry import VaultRegistry


@pytest.fixture
def registry_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "vaults.json"


class TestInMemory:
    def test_insert_and_lookup(self) -> None:
        registry = VaultRegistry()
        vault_id = uuid4()
        registry.insert(vault_id, Path("/notes/work"))
        assert registry.lookup(vault_id) == Path("/notes/work")
        assert vault_id in registry
        assert len(registry) == 1

    def test_insert_overwrites(self) -> None:
        registry = VaultRegistry()
        vault_id = uuid4()
        registry.insert(vault_id, Path("/notes/old"))
        registry.insert(vault_id, Path("/notes/new"))
        assert registry.lookup(vault_id) == Path("/notes/new")
        assert len(registry) == 1

    def test_remove(self) -> None:
        registry = VaultRegistry()
        vault_id = uuid4()
        registry.insert(vault_id, Path("/notes/a"))
        registry.remove(vault_id)
        assert registry.lookup(vault_id) is None

    def test_remove_unknown_no_error(self) -> None:
        VaultRegistry().remove(uuid4())  # should not raise

    def test_all_is_snapshot(self) -> None:
        registry = VaultRegistry()
        registry.insert(uuid4(), Path("/a"))
        snapshot = registry.all()
        registry.insert(uuid4(), Path("/b"))
        assert len(snapshot) == 1
        assert len(registry.all()) == 2


class TestPersistence:
    def test_missing_file_starts_empty(self, registry_path: Path) -> None:
        registry = VaultRegistry.load(registry_path)
        assert len(registry) == 0
        assert registry.load_error is None

    def test_roundtrip(self, registry_path: Path) -> None:
        vault_id = uuid4()
        registry = VaultRegistry()
        registry.insert(vault_id, Path("/notes/work"))
        registry.save(registry_path)

        loaded = VaultRegistry.load(registry_path)
        assert loaded.lookup(vault_id) == Path("/notes/work")

    def test_file_shape_is_pretty_printed(self, registry_path: Path) -> None:
        vault_id = uuid4()
        registry = VaultRegistry()
        registry.insert(vault_id, Path("/notes/work"))
        registry.save(registry_path)

        text = registry_path.read_text()
        assert "\n  " in text
        assert json.loads(text) == {"vaults": {str(vault_id): "/notes/work"}}

    def test_save_leaves_no_temp_files(self, registry_path: Path) -> None:
        registry = VaultRegistry()
        registry.insert(uuid4(), Path("/a"))
        registry.save(registry_path)
        registry.save(registry_path)
        assert [p.name for p in registry_path.parent.iterdir()] == ["vaults.json"]

    def test_corrupt_file_loads_empty_with_error(
        self, registry_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        registry_path.parent.mkdir(parents=True)
        registry_path.write_text("{not json")

        registry = VaultRegistry.load(registry_path)

        assert len(registry) == 0
        assert registry.load_error is not None
        assert "unreadable" in caplog.text

    def test_wrong_shape_loads_empty_with_error(self, registry_path: Path) -> None:
        registry_path.parent.mkdir(parents=True)
        registry_path.write_text(json.dumps({"vaults": {"not-a-uuid": "/x"}}))

        registry = VaultRegistry.load(registry_path)
        assert len(registry) == 0
        assert registry.load_error is not None

    def test_corrupt_file_is_overwritten_on_save(self, registry_path: Path) -> None:
        registry_path.parent.mkdir(parents=True)
        registry_path.write_text("garbage")
        registry = VaultRegistry.load(registry_path)

        vault_id = uuid4()
        registry.insert(vault_id, Path("/fresh"))
        registry.save(registry_path)

        assert VaultRegistry.load(registry_path).lookup(vault_id) == Path("/fresh")

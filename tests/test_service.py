"""Tests for VaultService — watch lifecycle and self-write suppression."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import pytest_asyncio

from inkrypt.config import WatchConfig
from inkrypt.service import VaultService, _topmost_missing_parent
from inkrypt.vault.errors import InvalidVaultError, VaultAlreadyExistsError, VaultNotFoundError
from inkrypt.vault.events import VAULT_CHANGES, ChangeBatch, ChangeEventBus
from inkrypt.vault.manager import VaultManager
from inkrypt.vault.watcher import VaultWatcher

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from inkrypt.vault.models import Vault

SETTLE = 0.8


class BatchRecorder:
    def __init__(self) -> None:
        self.batches: list[ChangeBatch] = []

    async def record(self, batch: ChangeBatch) -> None:
        self.batches.append(batch)

    @property
    def paths(self) -> list[str]:
        return [event.path for batch in self.batches for event in batch]


@pytest.fixture
def root(tmp_path: Path) -> Path:
    root = tmp_path / "vaults"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def recorder() -> BatchRecorder:
    return BatchRecorder()


@pytest_asyncio.fixture
async def service(tmp_path: Path, recorder: BatchRecorder) -> AsyncIterator[VaultService]:
    bus = ChangeEventBus()
    bus.subscribe(VAULT_CHANGES, recorder.record)
    manager = VaultManager(tmp_path / "appdata" / "vaults.json")
    watcher = VaultWatcher(bus, config=WatchConfig(debounce_ms=50, pending_ttl_ms=500))
    service = VaultService(manager, watcher, bus)
    yield service
    await service.shutdown()


@pytest_asyncio.fixture
async def opened(service: VaultService, root: Path) -> Vault:
    created = await service.create_vault("Journal", root)
    return await service.open_vault(created.path)


class TestVaultLifecycle:
    @pytest.mark.asyncio
    async def test_create_does_not_watch(self, service: VaultService, root: Path) -> None:
        await service.create_vault("Journal", root)
        assert not service.watcher.is_watching

    @pytest.mark.asyncio
    async def test_open_starts_watch(self, service: VaultService, opened: Vault) -> None:
        assert service.watcher.current_vault_id == opened.id
        assert service.watcher.current_path == opened.path

    @pytest.mark.asyncio
    async def test_open_invalid_vault_does_not_watch(self, service: VaultService, root: Path) -> None:
        with pytest.raises(InvalidVaultError):
            await service.open_vault(root)
        assert not service.watcher.is_watching

    @pytest.mark.asyncio
    async def test_open_survives_watch_failure(
        self, service: VaultService, root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from inkrypt.vault.errors import VaultIOError

        async def failing_watch(vault_id: object, path: object) -> None:
            raise VaultIOError("no watches left")

        created = await service.create_vault("Journal", root)
        monkeypatch.setattr(service.watcher, "watch", failing_watch)

        vault = await service.open_vault(created.path)
        assert vault.id == created.id
        assert [v.id for v in await service.list_vaults()] == [created.id]

    @pytest.mark.asyncio
    async def test_close_stops_watch(self, service: VaultService, opened: Vault) -> None:
        await service.close_vault(opened.id)
        assert not service.watcher.is_watching

    @pytest.mark.asyncio
    async def test_delete_unwatches_and_removes(self, service: VaultService, opened: Vault) -> None:
        await service.delete_vault(opened.id)

        assert not service.watcher.is_watching
        assert not opened.path.exists()
        assert await service.list_vaults() == []

    @pytest.mark.asyncio
    async def test_delete_unknown_is_noop(self, service: VaultService, opened: Vault) -> None:
        await service.delete_vault(uuid4())
        assert service.watcher.current_vault_id == opened.id

    @pytest.mark.asyncio
    async def test_entry_ops_on_unknown_vault(self, service: VaultService) -> None:
        with pytest.raises(VaultNotFoundError):
            await service.edit_note(uuid4(), "a.md", "x")

    @pytest.mark.asyncio
    async def test_rename_follows_watch(self, service: VaultService, opened: Vault) -> None:
        renamed = await service.rename_vault(opened.id, "Diary")

        assert renamed.path.name == "Diary"
        assert service.watcher.current_vault_id == opened.id
        assert service.watcher.current_path == renamed.path

    @pytest.mark.asyncio
    async def test_failed_rename_keeps_watch(
        self, service: VaultService, opened: Vault, root: Path
    ) -> None:
        (root / "Taken").mkdir()
        with pytest.raises(VaultAlreadyExistsError):
            await service.rename_vault(opened.id, "Taken")

        assert service.watcher.current_vault_id == opened.id
        assert service.watcher.current_path == opened.path

    @pytest.mark.asyncio
    async def test_rename_unwatched_vault_does_not_watch(self, service: VaultService, root: Path) -> None:
        created = await service.create_vault("Journal", root)
        await service.rename_vault(created.id, "Diary")
        assert not service.watcher.is_watching


class TestSelfWriteSuppression:
    @pytest.mark.asyncio
    async def test_app_writes_not_echoed(
        self, service: VaultService, opened: Vault, recorder: BatchRecorder
    ) -> None:
        await service.create_directory(opened.id, "notes")
        await service.create_note(opened.id, "notes/a.md")
        await service.edit_note(opened.id, "notes/a.md", "# A")
        await service.rename_entry(opened.id, "notes/a.md", "notes/b.md")
        await asyncio.sleep(SETTLE)

        assert recorder.batches == []
        assert await service.read_note(opened.id, "notes/b.md") == "# A"

    @pytest.mark.asyncio
    async def test_delete_directory_not_echoed(
        self, service: VaultService, opened: Vault, recorder: BatchRecorder
    ) -> None:
        await service.write_file(opened.id, "old/deep/x.md", "x")
        await asyncio.sleep(SETTLE)
        assert recorder.batches == []

        await service.delete_entry(opened.id, "old")
        await asyncio.sleep(SETTLE)

        assert recorder.batches == []
        assert [e.name for e in await service.list_entries(opened.id)] == []

    @pytest.mark.asyncio
    async def test_nested_creates_not_echoed(
        self, service: VaultService, opened: Vault, recorder: BatchRecorder
    ) -> None:
        await service.create_directory(opened.id, "a/b/c")
        await service.create_note(opened.id, "x/y/z.md")
        await service.edit_note(opened.id, "p/q.md", "body")
        await service.edit_note(opened.id, "top.md", "body")
        await service.rename_entry(opened.id, "top.md", "archive/2024/top.md")
        await asyncio.sleep(SETTLE)

        assert recorder.batches == []

    @pytest.mark.asyncio
    async def test_symlink_delete_not_echoed_and_target_kept(
        self, service: VaultService, opened: Vault, recorder: BatchRecorder
    ) -> None:
        await service.edit_note(opened.id, "real/keep.md", "keep")
        await asyncio.sleep(SETTLE)
        (opened.path / "link").symlink_to(opened.path / "real", target_is_directory=True)
        await asyncio.sleep(SETTLE)
        recorder.batches.clear()

        await service.delete_entry(opened.id, "link")
        await asyncio.sleep(SETTLE)

        assert recorder.batches == []
        assert await service.read_note(opened.id, "real/keep.md") == "keep"

    @pytest.mark.asyncio
    async def test_external_write_still_reported(
        self, service: VaultService, opened: Vault, recorder: BatchRecorder
    ) -> None:
        await service.edit_note(opened.id, "mine.md", "app")
        (opened.path / "theirs.md").write_text("someone else")
        await asyncio.sleep(SETTLE)

        assert "theirs.md" in recorder.paths
        assert "mine.md" not in recorder.paths


class TestTopmostMissingParent:
    def test_existing_parent(self, tmp_path: Path) -> None:
        assert _topmost_missing_parent(tmp_path / "a.md") is None

    def test_returns_highest_missing(self, tmp_path: Path) -> None:
        assert _topmost_missing_parent(tmp_path / "a" / "b" / "c.md") == tmp_path / "a"

    def test_partially_existing(self, tmp_path: Path) -> None:
        (tmp_path / "a").mkdir()
        assert _topmost_missing_parent(tmp_path / "a" / "b" / "c.md") == tmp_path / "a" / "b"

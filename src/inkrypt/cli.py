"""CLI entry point for inkrypt.

Commands:
    inkrypt create NAME --root DIR   — Create a vault
    inkrypt list                     — List registered vaults
    inkrypt open PATH                — Register an existing vault
    inkrypt watch PATH               — Open a vault and stream change batches
    inkrypt delete ID                — Delete a vault
    inkrypt rename ID NAME           — Rename a vault
    inkrypt ls ID [DIR]              — List one directory level
    inkrypt read ID PATH             — Print a note
    inkrypt write ID PATH            — Write a note (content from --content or stdin)
    inkrypt touch ID PATH            — Create an empty note
    inkrypt mkdir ID PATH            — Create a directory
    inkrypt rm ID PATH               — Delete a note or directory
    inkrypt mv ID OLD NEW            — Move a note or directory
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from inkrypt import __version__

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from uuid import UUID

    from inkrypt.service import VaultService
    from inkrypt.vault.events import ChangeBatch

T = TypeVar("T")

console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _create_service(ctx: click.Context) -> VaultService:
    """Build a VaultService from settings, reporting a damaged registry."""
    from inkrypt.config import load_settings
    from inkrypt.service import VaultService

    settings = load_settings(ctx.obj.get("config_path"))
    service = VaultService.from_settings(settings)
    load_error = service.manager.registry.load_error
    if load_error:
        console.print(
            f"[yellow]![/yellow] Vault registry {service.manager.registry_path} "
            f"could not be read and was reset: {load_error}"
        )
    return service


def _run(ctx: click.Context, op: Callable[[VaultService], Awaitable[T]]) -> T:
    """Run one service operation, reducing vault errors to a message."""
    from inkrypt.vault.errors import VaultError

    service = _create_service(ctx)

    async def _main() -> T:
        try:
            return await op(service)
        finally:
            await service.shutdown()

    try:
        return asyncio.run(_main())
    except VaultError as exc:
        console.print(f"[red]✗[/red] {exc}")
        sys.exit(1)


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("-c", "--config", type=click.Path(exists=True), help="Config file path")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str | None) -> None:
    """inkrypt — local note vaults."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else None


@cli.command()
@click.argument("name")
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path.cwd,
    help="Directory to create the vault in (default: current directory)",
)
@click.pass_context
def create(ctx: click.Context, name: str, root: Path) -> None:
    """Create a new vault."""
    vault = _run(ctx, lambda s: s.create_vault(name, root))
    console.print(f"[green]✓[/green] Created vault {vault.name}")
    console.print(f"  id:   {vault.id}")
    console.print(f"  path: {vault.path}")


@cli.command("list")
@click.pass_context
def list_cmd(ctx: click.Context) -> None:
    """List registered vaults."""
    vaults = _run(ctx, lambda s: s.list_vaults())
    if not vaults:
        console.print("No vaults registered.")
        return

    table = Table("id", "name", "path", "created")
    for vault in vaults:
        table.add_row(str(vault.id), vault.name, str(vault.path), vault.created_at.isoformat())
    console.print(table)


@cli.command("open")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_context
def open_cmd(ctx: click.Context, path: Path) -> None:
    """Open an existing vault and register it."""
    vault = _run(ctx, lambda s: s.manager.open_vault(path))
    console.print(f"[green]✓[/green] Opened vault {vault.name} ({vault.id})")


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_context
def watch(ctx: click.Context, path: Path) -> None:
    """Open a vault and print change batches as JSON until interrupted."""
    from inkrypt.vault.errors import VaultError
    from inkrypt.vault.events import VAULT_CHANGES, batch_to_payload

    service = _create_service(ctx)

    async def _print_batch(batch: ChangeBatch) -> None:
        console.print_json(data=batch_to_payload(batch))

    service.bus.subscribe(VAULT_CHANGES, _print_batch)

    async def _run_watch() -> None:
        vault = await service.open_vault(path)
        if not service.watcher.is_watching:
            console.print(f"[red]✗[/red] Could not watch {vault.path}")
            return
        console.print(f"[green]✓[/green] Watching {vault.name} at {vault.path}")
        console.print(f"  Debounce: {service.watcher.debounce_seconds * 1000:.0f}ms")
        try:
            while True:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await service.shutdown()

    try:
        asyncio.run(_run_watch())
    except KeyboardInterrupt:
        console.print("\n[yellow]Watcher stopped.[/yellow]")
    except VaultError as exc:
        console.print(f"[red]✗[/red] {exc}")
        sys.exit(1)


@cli.command()
@click.argument("vault_id", type=click.UUID)
@click.confirmation_option(prompt="Delete this vault and everything in it?")
@click.pass_context
def delete(ctx: click.Context, vault_id: UUID) -> None:
    """Delete a vault directory and forget it."""
    _run(ctx, lambda s: s.delete_vault(vault_id))
    console.print(f"[green]✓[/green] Deleted vault {vault_id}")


@cli.command()
@click.argument("vault_id", type=click.UUID)
@click.argument("new_name")
@click.pass_context
def rename(ctx: click.Context, vault_id: UUID, new_name: str) -> None:
    """Rename a vault directory."""
    vault = _run(ctx, lambda s: s.rename_vault(vault_id, new_name))
    console.print(f"[green]✓[/green] Renamed vault to {vault.name} ({vault.path})")


@cli.command()
@click.argument("vault_id", type=click.UUID)
@click.argument("directory", required=False)
@click.pass_context
def ls(ctx: click.Context, vault_id: UUID, directory: str | None) -> None:
    """List one directory level of a vault."""
    entries = _run(ctx, lambda s: s.list_entries(vault_id, directory))

    table = Table("type", "path", "modified")
    for entry in entries:
        modified = entry.updated_at.isoformat() if entry.updated_at else ""
        table.add_row(entry.entry_type.value, entry.path, modified)
    console.print(table)


@cli.command()
@click.argument("vault_id", type=click.UUID)
@click.argument("note_path")
@click.pass_context
def read(ctx: click.Context, vault_id: UUID, note_path: str) -> None:
    """Print a note's content."""
    content = _run(ctx, lambda s: s.read_note(vault_id, note_path))
    click.echo(content, nl=False)


@cli.command()
@click.argument("vault_id", type=click.UUID)
@click.argument("note_path")
@click.option("--content", default=None, help="Note content (default: read stdin)")
@click.pass_context
def write(ctx: click.Context, vault_id: UUID, note_path: str, content: str | None) -> None:
    """Write a note, replacing its content."""
    if content is None:
        content = click.get_text_stream("stdin").read()
    _run(ctx, lambda s: s.edit_note(vault_id, note_path, content))
    console.print(f"[green]✓[/green] Wrote {note_path}")


@cli.command()
@click.argument("vault_id", type=click.UUID)
@click.argument("note_path")
@click.pass_context
def touch(ctx: click.Context, vault_id: UUID, note_path: str) -> None:
    """Create an empty note."""
    _run(ctx, lambda s: s.create_note(vault_id, note_path))
    console.print(f"[green]✓[/green] Created {note_path}")


@cli.command()
@click.argument("vault_id", type=click.UUID)
@click.argument("directory")
@click.pass_context
def mkdir(ctx: click.Context, vault_id: UUID, directory: str) -> None:
    """Create a directory (and missing parents)."""
    _run(ctx, lambda s: s.create_directory(vault_id, directory))
    console.print(f"[green]✓[/green] Created {directory}/")


@cli.command()
@click.argument("vault_id", type=click.UUID)
@click.argument("entry_path")
@click.pass_context
def rm(ctx: click.Context, vault_id: UUID, entry_path: str) -> None:
    """Delete a note, or a directory with everything in it."""
    _run(ctx, lambda s: s.delete_entry(vault_id, entry_path))
    console.print(f"[green]✓[/green] Deleted {entry_path}")


@cli.command()
@click.argument("vault_id", type=click.UUID)
@click.argument("old_path")
@click.argument("new_path")
@click.pass_context
def mv(ctx: click.Context, vault_id: UUID, old_path: str, new_path: str) -> None:
    """Move or rename a note or directory."""
    _run(ctx, lambda s: s.rename_entry(vault_id, old_path, new_path))
    console.print(f"[green]✓[/green] Moved {old_path} → {new_path}")


if __name__ == "__main__":
    cli()

from __future__ import annotations

from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.text import Text

from .output import echo, rich_table, RichDateField
from .common import convert_api_errors, inject_vaultsync

if TYPE_CHECKING:
    from ..main import VaultSync


@click.command(help="Show the sync status and index summary.")
@inject_vaultsync(existing_config=True)
@convert_api_errors
def status(m: VaultSync) -> None:
    stats = m.get_stats()

    n_errors = stats.files_with_errors
    n_conflicts = stats.files_with_conflicts

    last_sync = (
        RichDateField(stats.last_full_sync) if stats.last_full_sync else "Never"
    )

    status_table = rich_table()
    status_table.add_row("Status", m.status)
    status_table.add_row("Vault", m.vault_path or "--")
    status_table.add_row("Vault ID", m.vault_id or "--")
    status_table.add_row("Last full sync", last_sync)
    status_table.add_row("Files", str(stats.total_files))
    status_table.add_row("Folders", str(stats.total_folders))
    status_table.add_row("Never synced", str(stats.never_synced))
    status_table.add_row("Pending changes", str(len(m.pending_changes)))
    status_table.add_row(
        "Sync errors", Text(str(n_errors), style="red" if n_errors else "green")
    )
    status_table.add_row(
        "Conflicts", Text(str(n_conflicts), style="red" if n_conflicts else "green")
    )

    console = Console()

    console.print("")
    console.print(status_table, highlight=False)
    console.print("")


@click.command(help="List files whose last sync failed.")
@inject_vaultsync(existing_config=True)
def errors(m: VaultSync) -> None:
    sync_errors = m.get_sync_errors()

    if len(sync_errors) == 0:
        echo("No sync errors.")
        return

    table = rich_table("Path", "Error")

    for path, message in sync_errors:
        table.add_row(path, message)

    Console().print(table, highlight=False)


@click.command(help="List files with conflicts.")
@inject_vaultsync(existing_config=True)
def conflicts(m: VaultSync) -> None:
    records = m.sync.index.get_files_with_conflicts()
    pending = {c.path: c for c in m.pending_conflicts}

    if len(records) == 0 and len(pending) == 0:
        echo("No conflicts.")
        return

    table = rich_table("Path", "Conflicts", "Last synced", "Pending")

    paths = sorted({r.path for r in records} | set(pending))

    for path in paths:
        record = m.sync.index.get_file(path)
        count = str(record.conflict_count) if record else "--"
        last_synced = (
            RichDateField(record.last_synced_time)
            if record and record.last_synced_time
            else "Never"
        )
        conflict = pending.get(path)
        table.add_row(path, count, last_synced, conflict.id if conflict else "--")

    Console().print(table, highlight=False)

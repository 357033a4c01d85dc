from __future__ import annotations

import sys
import time
from typing import TYPE_CHECKING

import click

from .output import warn, ok, echo
from .common import (
    convert_api_errors,
    existing_config_option,
    inject_vaultsync,
)

if TYPE_CHECKING:
    from ..main import VaultSync


@click.command(help="Start syncing in the foreground. Press Ctrl-C to stop.")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Print log messages to stderr.",
)
@existing_config_option
@convert_api_errors
def start(verbose: bool, config_name: str) -> None:
    from ..main import VaultSync

    m = VaultSync(config_name, log_to_stderr=verbose)
    m.start_sync()

    ok(f"Syncing {m.vault_path}. Press Ctrl-C to stop.")

    try:
        while m.running:
            time.sleep(1)
    except KeyboardInterrupt:
        echo("")
    finally:
        m.stop_sync()

    ok("Syncing stopped.")


@click.command(help="Run a single full sync pass.")
@inject_vaultsync(existing_config=True)
@convert_api_errors
def sync(m: VaultSync) -> None:
    result = m.sync_now()

    if not result.success:
        warn(f"Sync failed: {result.message}")
        sys.exit(1)

    ok(result.message)

    for conflict in m.pending_conflicts:
        warn(f"Conflict awaits resolution: {conflict.path}")


@click.command(
    help="""
Reconcile the sync index with the local vault.

Untracked files are added to the index and uploaded, stale index entries for files
which were never synced are removed.
""",
)
@inject_vaultsync(existing_config=True)
@convert_api_errors
def reconcile(m: VaultSync) -> None:
    uploaded = m.reconcile()
    ok(f"Reconciliation completed, {uploaded} file(s) uploaded.")


@click.command(
    help="""
Reset the sync state.

Clears the sync index. The next sync compares all files by their modification time
only. Local and remote files are not affected.
""",
)
@click.option(
    "--yes", "-Y", is_flag=True, default=False, help="Skip confirmation prompt."
)
@inject_vaultsync(existing_config=True)
@convert_api_errors
def reset(m: VaultSync, yes: bool) -> None:
    if not yes:
        yes = click.confirm("Are you sure you want to reset the sync state?")

    if yes:
        m.reset_sync_state()
        ok("Sync state reset.")


@click.group(help="Link, unlink and view the remote drive account.")
def auth() -> None:
    pass


@auth.command(name="link", help="Link a remote drive with an access token.")
@click.option(
    "--token",
    "-t",
    help="OAuth access token. You will be prompted if not given.",
)
@click.option(
    "--relink",
    "-r",
    is_flag=True,
    default=False,
    help="Replace the stored access token. Keeps the sync state.",
)
@inject_vaultsync(existing_config=False)
@convert_api_errors
def auth_link(m: VaultSync, token: str | None, relink: bool) -> None:
    if m.is_linked and not relink:
        echo(
            "vaultsync is already linked. Use '-r' to replace the access token or "
            "specify a new config name with '-c'."
        )
        return

    if not token:
        token = click.prompt("Access token", hide_input=True)

    res = m.link(token.strip())

    if res == 0:
        ok("Linked remote drive.")
    elif res == 1:
        warn("Invalid token, please try again.")
        sys.exit(1)
    else:
        warn("Could not connect to the remote drive, please try again.")
        sys.exit(1)


@auth.command(
    name="unlink",
    help="""
Unlink the remote drive.

Removes the access token and the sync index. Local files are kept.
""",
)
@click.option(
    "--yes", "-Y", is_flag=True, default=False, help="Skip confirmation prompt."
)
@inject_vaultsync(existing_config=True)
@convert_api_errors
def auth_unlink(m: VaultSync, yes: bool) -> None:
    if not yes:
        yes = click.confirm("Are you sure you want to unlink the remote drive?")

    if yes:
        m.unlink()
        ok("Unlinked vaultsync.")


@auth.command(name="status", help="View authentication status.")
@inject_vaultsync(existing_config=True)
@convert_api_errors
def auth_status(m: VaultSync) -> None:
    echo(m.check_auth())

"""CLI interface for the CloudImega sync client."""

import logging
import time
from pathlib import Path
from typing import Any, Optional

import click

from .api import ImegaClient
from .config import config
from .exceptions import (
    ImegaAPIError,
    ImegaAuthenticationError,
    ImegaConfigError,
    ImegaNetworkError,
)
from .output import OutputFormatter
from .sync import (
    ActivityLog,
    LoadOutcome,
    SyncActivity,
    SyncEngine,
    SyncManager,
    SyncStateManager,
    SyncStatus,
)
from .utils import format_size

logger = logging.getLogger(__name__)


def _build_client() -> ImegaClient:
    """Create an API client that stores refreshed tokens in the config."""
    return ImegaClient(
        server_url=config.server_url,
        access_token=config.access_token,
        refresh_token=config.refresh_token,
        on_tokens_changed=config.save_tokens,
    )


def _require_session(ctx: Any, out: OutputFormatter) -> None:
    if not config.is_configured():
        out.error("Not logged in.")
        out.info("Run 'imegasync login' to connect your account")
        ctx.exit(1)


def _build_manager(
    client: ImegaClient,
    workers: Optional[int] = None,
    propagate_deletions: Optional[bool] = None,
    interval: Optional[int] = None,
) -> SyncManager:
    state_manager = SyncStateManager(config.get_state_path())
    activity_log = ActivityLog()
    engine = SyncEngine(
        client,
        state_manager,
        activity_log=activity_log,
        max_workers=workers or config.max_workers,
        propagate_deletions=(
            config.propagate_deletions
            if propagate_deletions is None
            else propagate_deletions
        ),
    )
    return SyncManager(
        client,
        state_manager,
        config.sync_folder,
        auto_sync=config.auto_sync,
        sync_interval=interval or config.sync_interval,
        engine=engine,
        activity_log=activity_log,
    )


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="imegasync")
@click.pass_context
def main(ctx: Any, quiet: bool, json: bool, verbose: bool) -> None:
    """imegasync - Keep a local folder in sync with your CloudImega account."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("imegasync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option("--email", "-e", prompt="Email", help="CloudImega account email")
@click.option(
    "--password",
    "-p",
    prompt="Password",
    hide_input=True,
    help="CloudImega account password",
)
@click.option("--server", "-s", help="Server URL (default: https://cloudimega.com)")
@click.pass_context
def login(ctx: Any, email: str, password: str, server: Optional[str]) -> None:
    """Log in to CloudImega and prepare the sync folder.

    The session is stored in ~/.config/imegasync/config.json.
    """
    out: OutputFormatter = ctx.obj["out"]

    if server:
        config.save_settings(server_url=server.rstrip("/"))

    client = ImegaClient(
        server_url=config.server_url,
        access_token="",
        refresh_token="",
        on_tokens_changed=config.save_tokens,
    )
    try:
        out.info("Logging in...")
        user = client.login(email, password)
    except ImegaAuthenticationError:
        out.error("Login failed: invalid email or password")
        ctx.exit(1)
        return
    except ImegaAPIError as e:
        out.error(f"Login failed: {e}")
        ctx.exit(1)
        return

    manager = _build_manager(client)
    sync_folder = manager.prepare_sync_folder()

    out.print_summary(
        "Login Complete",
        [
            ("User", user.email),
            ("Sync folder", str(sync_folder)),
            ("Config file", str(config.get_config_path())),
            ("Note", "Run 'imegasync sync' or 'imegasync watch' to start syncing"),
        ],
    )


@main.command()
@click.pass_context
def logout(ctx: Any) -> None:
    """Forget the stored session."""
    out: OutputFormatter = ctx.obj["out"]
    config.clear_tokens()
    out.success("Logged out.")


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show account, connection and sync status."""
    out: OutputFormatter = ctx.obj["out"]

    state_manager = SyncStateManager(config.get_state_path())
    load_result = state_manager.load()
    state = state_manager.state

    sync_status = SyncStatus.idle()
    user_email = None
    storage = None
    if not config.is_configured():
        sync_status = SyncStatus.error("Not authenticated")
    else:
        client = _build_client()
        try:
            user = client.get_profile()
            user_email = user.email
            if user.storage_quota:
                storage = (
                    f"{format_size(user.storage_used)} of "
                    f"{format_size(user.storage_quota)}"
                )
        except ImegaNetworkError:
            sync_status = SyncStatus.offline()
        except ImegaAuthenticationError:
            sync_status = SyncStatus.error("Session expired, please log in again")
        except ImegaAPIError as e:
            sync_status = SyncStatus.error(str(e))
        finally:
            client.close()

    if out.json_output:
        out.output_json(
            {
                "status": sync_status.kind.value,
                "message": sync_status.message,
                "user": user_email,
                "sync_folder": str(config.sync_folder),
                "synced_files": len(state.synced_files),
                "last_sync": state.last_sync_timestamp,
                "state": load_result.outcome.value,
            }
        )
        return

    items = [
        ("Status", sync_status.description),
        ("User", user_email or "-"),
        ("Server", config.server_url),
        ("Sync folder", str(config.sync_folder)),
        ("Synced files", str(len(state.synced_files))),
        ("Last sync", state.last_sync_timestamp or "never"),
    ]
    if storage:
        items.insert(2, ("Storage", storage))
    out.print_summary("CloudImega Sync", items)
    if load_result.outcome == LoadOutcome.CORRUPT:
        out.warning("Sync state file was unreadable and will be rebuilt on next sync")


@main.command()
@click.option(
    "--workers",
    "-j",
    type=int,
    default=None,
    help="Number of parallel transfers per folder (default: from config)",
)
@click.option(
    "--propagate-deletions/--no-propagate-deletions",
    default=None,
    help="Mirror deletions of previously synced files to the other side",
)
@click.pass_context
def sync(
    ctx: Any, workers: Optional[int], propagate_deletions: Optional[bool]
) -> None:
    """Run one full sync of the sync folder with your CloudImega root folder.

    Local files newer than their cloud copy are uploaded, new local files are
    uploaded and cloud files missing locally are downloaded.

    Examples:
        imegasync sync
        imegasync sync -j 4
        imegasync --json sync
    """
    out: OutputFormatter = ctx.obj["out"]
    _require_session(ctx, out)

    if workers is not None and workers < 1:
        out.error("Workers must be at least 1")
        ctx.exit(1)

    client = _build_client()
    manager = _build_manager(
        client, workers=workers, propagate_deletions=propagate_deletions
    )
    load_result = manager.state.load()
    if load_result.outcome == LoadOutcome.CORRUPT:
        out.warning("Sync state file was unreadable, starting from an empty state")

    out.info(f"Syncing {manager.sync_folder}...")
    try:
        ok = manager.sync_now()
    except KeyboardInterrupt:
        manager.cancel()
        out.warning("\nSync cancelled by user")
        ctx.exit(130)
        return
    finally:
        client.close()

    stats = manager.last_stats or {}
    activities = manager.activity.entries()
    if out.json_output:
        out.output_json(
            {
                "success": ok,
                "status": manager.status.kind.value,
                "message": manager.status.message,
                "stats": stats,
                "activities": [a.to_dict() for a in activities],
            }
        )
    else:
        out.print_activities(activities)
        if ok:
            out.print_summary(
                "Sync Complete",
                [
                    ("Uploaded", str(stats.get("uploads", 0))),
                    ("Downloaded", str(stats.get("downloads", 0))),
                    ("Folders created", str(stats.get("folders_created", 0))),
                    (
                        "Deleted",
                        str(
                            stats.get("deletes_local", 0)
                            + stats.get("deletes_remote", 0)
                        ),
                    ),
                    ("Errors", str(stats.get("errors", 0))),
                ],
            )

    if not ok:
        out.error(f"Sync failed: {manager.status.message or 'unknown error'}")
        ctx.exit(1)
    if stats.get("errors"):
        out.warning(f"{stats['errors']} file(s) could not be synced")


@main.command()
@click.option(
    "--interval",
    "-i",
    type=int,
    default=None,
    help="Seconds between full syncs (default: from config)",
)
@click.pass_context
def watch(ctx: Any, interval: Optional[int]) -> None:
    """Keep syncing in the foreground until interrupted.

    Changes in the sync folder are uploaded as they happen and a full sync
    runs periodically.
    """
    out: OutputFormatter = ctx.obj["out"]
    _require_session(ctx, out)

    if interval is not None and interval < 1:
        out.error("Interval must be at least 1 second")
        ctx.exit(1)

    client = _build_client()
    manager = _build_manager(client, interval=interval)

    def _report(activity: SyncActivity) -> None:
        if activity.message:
            out.warning(f"{activity.kind.value}: {activity.file_name} ({activity.message})")
        else:
            out.info(f"{activity.kind.value}: {activity.file_name}")

    manager.activity.add_listener(_report)
    manager.add_status_listener(lambda s: logger.info(f"Status: {s.description}"))

    manager.start()
    out.info(f"Watching {manager.sync_folder} (Ctrl+C to stop)")
    try:
        manager.sync_now()
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        out.info("\nStopping...")
    finally:
        manager.shutdown()
        client.close()


@main.command(name="config")
@click.option("--sync-folder", type=click.Path(file_okay=False), help="Local sync folder")
@click.option("--server", help="Server URL")
@click.option("--auto-sync/--no-auto-sync", default=None, help="Enable automatic sync")
@click.option("--interval", type=int, default=None, help="Seconds between full syncs")
@click.option("--workers", type=int, default=None, help="Parallel transfers per folder")
@click.option(
    "--propagate-deletions/--no-propagate-deletions",
    default=None,
    help="Mirror deletions of previously synced files",
)
@click.pass_context
def config_command(
    ctx: Any,
    sync_folder: Optional[str],
    server: Optional[str],
    auto_sync: Optional[bool],
    interval: Optional[int],
    workers: Optional[int],
    propagate_deletions: Optional[bool],
) -> None:
    """Show or change settings.

    Without options, the current settings are printed.

    Examples:
        imegasync config
        imegasync config --sync-folder ~/CloudImega --interval 600
        imegasync config --no-auto-sync
    """
    out: OutputFormatter = ctx.obj["out"]

    updates: dict[str, Any] = {}
    if sync_folder is not None:
        updates["sync_folder"] = str(Path(sync_folder).expanduser())
    if server is not None:
        updates["server_url"] = server.rstrip("/")
    if auto_sync is not None:
        updates["auto_sync"] = auto_sync
    if interval is not None:
        if interval < 1:
            out.error("Interval must be at least 1 second")
            ctx.exit(1)
        updates["sync_interval"] = interval
    if workers is not None:
        if workers < 1:
            out.error("Workers must be at least 1")
            ctx.exit(1)
        updates["max_workers"] = workers
    if propagate_deletions is not None:
        updates["propagate_deletions"] = propagate_deletions

    if updates:
        try:
            config.save_settings(**updates)
        except (ImegaConfigError, OSError) as e:
            out.error(f"Could not save settings: {e}")
            ctx.exit(1)
        out.success("Settings saved.")

    settings = config.as_dict()
    if out.json_output:
        out.output_json(settings)
        return
    out.print_summary(
        "Settings",
        [(key.replace("_", " ").capitalize(), str(value)) for key, value in settings.items()],
    )


@main.command(name="reset-state")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def reset_state(ctx: Any, yes: bool) -> None:
    """Forget what was synced before.

    Files are not deleted; the next sync compares both sides from scratch.
    """
    out: OutputFormatter = ctx.obj["out"]

    if not yes and not click.confirm("Forget the sync state?", default=False):
        out.warning("Cancelled.")
        return

    SyncStateManager(config.get_state_path()).clear()
    out.success("Sync state cleared.")


@main.command(name="open")
@click.pass_context
def open_folder(ctx: Any) -> None:
    """Open the sync folder in the file manager."""
    out: OutputFormatter = ctx.obj["out"]
    folder = config.sync_folder
    if not folder.is_dir():
        out.error(f"Sync folder does not exist: {folder}")
        ctx.exit(1)
    click.launch(str(folder))


if __name__ == "__main__":
    main()

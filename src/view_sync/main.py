"""CLI entrypoint for view-sync."""

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from view_sync import __version__
from view_sync.controllers import (
    AdminBulkDeleteCommand,
    CommandResult,
    LedgerCliController,
    LedgerExportCommand,
    LedgerImportCommand,
    LedgerMutateCommand,
    LedgerShowCommand,
    LedgerStatsCommand,
    SyncCliController,
    SyncRefreshAllCommand,
    SyncRunCommand,
    SyncServerRefreshCommand,
)

click.rich_click.USE_MARKDOWN = True
SYNC_CONTROLLER = SyncCliController()
LEDGER_CONTROLLER = LedgerCliController()

T = TypeVar("T")


@click.group()
@click.version_option(version=__version__, prog_name="view-sync")
def view_sync() -> None:
    """View count synchronization CLI."""


@view_sync.group()
def sync() -> None:
    """Refresh view counts from the provider or the backing store."""


@sync.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--video-id",
    "video_ids",
    multiple=True,
    required=True,
    help="Video id to refresh. Can be repeated.",
)
def sync_run(db_path: Path | None, video_ids: tuple[str, ...]) -> None:
    """Fetch views sequentially, serving fresh cache entries without provider calls."""

    result = _invoke(
        SYNC_CONTROLLER.run,
        SyncRunCommand(db_path=db_path, video_ids=video_ids),
    )
    _emit_result(result, failure="Every video failed to sync.")


@sync.command("server-refresh")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--video-id",
    "video_ids",
    multiple=True,
    required=True,
    help="Video id to refresh on the server. Can be repeated.",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1, max=20),
    default=None,
    help="Parallel refresh requests (defaults to VIEW_SYNC_SERVER_REFRESH_CONCURRENCY).",
)
def sync_server_refresh(
    db_path: Path | None,
    video_ids: tuple[str, ...],
    concurrency: int | None,
) -> None:
    """Ask the backing store to refresh views per video with bounded concurrency."""

    result = _invoke(
        SYNC_CONTROLLER.server_refresh,
        SyncServerRefreshCommand(db_path=db_path, video_ids=video_ids, concurrency=concurrency),
    )
    _emit_result(result, failure="Server refresh failed for every video.")


@sync.command("refresh-all")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def sync_refresh_all(db_path: Path | None) -> None:
    """Trigger the server-wide view refresh and clear the local cache."""

    result = _invoke(SYNC_CONTROLLER.refresh_all, SyncRefreshAllCommand(db_path=db_path))
    _emit_result(result, failure="Server-wide refresh failed.")


@view_sync.group()
def ledger() -> None:
    """Inspect and maintain the durable views ledger."""


@ledger.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def ledger_stats(db_path: Path | None) -> None:
    """Show record counts and total views."""

    _emit_lines(_invoke(LEDGER_CONTROLLER.stats, LedgerStatsCommand(db_path=db_path)))


@ledger.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("video_id")
def ledger_show(db_path: Path | None, video_id: str) -> None:
    """Show the ledger record and cache entry of one video."""

    _emit_lines(
        _invoke(LEDGER_CONTROLLER.show, LedgerShowCommand(db_path=db_path, video_id=video_id)),
    )


@ledger.command("export")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--output",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Write JSON to this file instead of stdout.",
)
def ledger_export(db_path: Path | None, output: Path | None) -> None:
    """Export every ledger record as JSON."""

    _emit_lines(
        _invoke(LEDGER_CONTROLLER.export, LedgerExportCommand(db_path=db_path, output=output)),
    )


@ledger.command("import")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("input_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
def ledger_import(db_path: Path | None, input_path: Path) -> None:
    """Merge a previously exported ledger JSON file."""

    _emit_lines(
        _invoke(
            LEDGER_CONTROLLER.import_,
            LedgerImportCommand(db_path=db_path, input_path=input_path),
        ),
    )


@ledger.command("mark-deleted")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("video_id")
def ledger_mark_deleted(db_path: Path | None, video_id: str) -> None:
    """Flag a video as deleted while keeping its last known views."""

    _emit_lines(
        _invoke(
            LEDGER_CONTROLLER.mark_deleted,
            LedgerMutateCommand(db_path=db_path, video_id=video_id),
        ),
    )


@ledger.command("override")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("video_id")
@click.argument("views", type=click.IntRange(min=0))
def ledger_override(db_path: Path | None, video_id: str, views: int) -> None:
    """Replace the stored view count, bypassing the monotonic guard."""

    _emit_lines(
        _invoke(
            LEDGER_CONTROLLER.override,
            LedgerMutateCommand(db_path=db_path, video_id=video_id, views=views),
        ),
    )


@view_sync.group()
def admin() -> None:
    """Bulk operations against the backing store."""


@admin.command("bulk-delete-videos")
@click.argument("video_ids", nargs=-1, required=True)
def admin_bulk_delete_videos(video_ids: tuple[str, ...]) -> None:
    """Delete several video records in one request."""

    result = _invoke(
        SYNC_CONTROLLER.bulk_delete_videos,
        AdminBulkDeleteCommand(ids=video_ids),
    )
    _emit_result(result, failure="Bulk delete failed.")


@admin.command("bulk-delete-leads")
@click.argument("lead_ids", nargs=-1, required=True)
def admin_bulk_delete_leads(lead_ids: tuple[str, ...]) -> None:
    """Delete several leads in one request."""

    result = _invoke(
        SYNC_CONTROLLER.bulk_delete_leads,
        AdminBulkDeleteCommand(ids=lead_ids),
    )
    _emit_result(result, failure="Bulk delete failed.")


def _invoke(handler: Callable[..., T], command: object) -> T:
    try:
        return handler(command)
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_result(result: CommandResult, *, failure: str) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(failure)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    view_sync()

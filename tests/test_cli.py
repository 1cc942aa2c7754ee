from __future__ import annotations

import json
from pathlib import Path

import allure
import httpx
from click.testing import CliRunner

from view_sync import __version__, main
from view_sync.controllers import SyncCliController
from view_sync.main import view_sync

pytestmark = [
    allure.epic("Command Line"),
    allure.feature("view-sync CLI"),
]


async def _no_sleep(_: float) -> None:
    return None


def _install_network(monkeypatch, handler) -> None:
    monkeypatch.setattr(
        main,
        "SYNC_CONTROLLER",
        SyncCliController(transport=httpx.MockTransport(handler), sleep=_no_sleep),
    )


def test_version_option() -> None:
    result = CliRunner().invoke(view_sync, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_ledger_override_show_and_stats(tmp_path: Path) -> None:
    db_path = str(tmp_path / "cli.db")
    runner = CliRunner()

    override = runner.invoke(view_sync, ["ledger", "override", "--db-path", db_path, "vid", "120"])
    assert override.exit_code == 0, override.output
    assert "vid views=120 status=active" in override.output

    marked = runner.invoke(view_sync, ["ledger", "mark-deleted", "--db-path", db_path, "vid"])
    assert "status=deleted" in marked.output

    shown = runner.invoke(view_sync, ["ledger", "show", "--db-path", db_path, "vid"])
    assert "views=120 status=deleted" in shown.output

    stats = runner.invoke(view_sync, ["ledger", "stats", "--db-path", db_path])
    assert "total=1 active=0 deleted=1 total_views=120" in stats.output


def test_ledger_export_and_import_are_idempotent(tmp_path: Path) -> None:
    db_path = str(tmp_path / "cli.db")
    export_path = tmp_path / "ledger.json"
    runner = CliRunner()
    runner.invoke(view_sync, ["ledger", "override", "--db-path", db_path, "a", "5"])

    exported = runner.invoke(
        view_sync,
        ["ledger", "export", "--db-path", db_path, "--output", str(export_path)],
    )
    assert "Exported 1 ledger record(s)" in exported.output
    assert json.loads(export_path.read_text(encoding="utf-8"))["a"]["views"] == 5

    imported = runner.invoke(view_sync, ["ledger", "import", "--db-path", db_path, str(export_path)])
    assert imported.exit_code == 0, imported.output
    assert "changed=0" in imported.output


def test_ledger_import_rejects_invalid_json(tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text("{oops", encoding="utf-8")

    result = CliRunner().invoke(
        view_sync,
        ["ledger", "import", "--db-path", str(tmp_path / "cli.db"), str(bad)],
    )
    assert result.exit_code != 0


def test_sync_run_fetches_views_and_renders_dash_for_failures(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("VIEW_SYNC_PROVIDER_API_KEY", "key")
    monkeypatch.setenv("VIEW_SYNC_REQUEST_DELAY_SECONDS", "0")

    def handler(request: httpx.Request) -> httpx.Response:
        video_id = request.url.params["id"]
        if video_id == "good":
            return httpx.Response(200, json={"items": [{"statistics": {"viewCount": "321"}}]})
        return httpx.Response(400, json={"error": {"message": "bad request"}})

    _install_network(monkeypatch, handler)

    result = CliRunner().invoke(
        view_sync,
        [
            "sync",
            "run",
            "--db-path",
            str(tmp_path / "cli.db"),
            "--video-id",
            "good",
            "--video-id",
            "bad",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "good views=321 source=live" in result.output
    assert "bad views=- source=ledger(error=http_400)" in result.output
    assert "fetched=1" in result.output


def test_sync_run_requires_api_key(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        view_sync,
        ["sync", "run", "--db-path", str(tmp_path / "cli.db"), "--video-id", "a"],
    )
    assert result.exit_code != 0
    assert "VIEW_SYNC_PROVIDER_API_KEYS" in result.output


def test_refresh_all_failure_surfaces_click_exception(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("VIEW_SYNC_BACKING_STORE_URL", "https://store.example.com")
    monkeypatch.setenv("VIEW_SYNC_MAX_ATTEMPTS", "1")
    _install_network(monkeypatch, lambda request: httpx.Response(500))

    result = CliRunner().invoke(
        view_sync,
        ["sync", "refresh-all", "--db-path", str(tmp_path / "cli.db")],
    )

    assert result.exit_code != 0
    assert "Refresh failed" in result.output


def test_admin_bulk_delete_videos(monkeypatch) -> None:
    monkeypatch.setenv("VIEW_SYNC_BACKING_STORE_URL", "https://store.example.com")
    monkeypatch.setenv("VIEW_SYNC_BACKING_STORE_TOKEN", "token")
    seen: list[tuple[str, str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"ok": True})

    _install_network(monkeypatch, handler)

    result = CliRunner().invoke(
        view_sync,
        ["admin", "bulk-delete-videos", "a", "b"],
    )

    assert result.exit_code == 0, result.output
    assert "Deleted 2 video(s)." in result.output
    assert seen == [("DELETE", "/videos/bulk", {"ids": ["a", "b"]})]


def test_admin_commands_do_not_take_a_database_path(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        view_sync,
        ["admin", "bulk-delete-leads", "--db-path", str(tmp_path / "cli.db"), "l1"],
    )

    assert result.exit_code == 2


def test_server_refresh_updates_ledger(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("VIEW_SYNC_BACKING_STORE_URL", "https://store.example.com")
    db_path = str(tmp_path / "cli.db")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True, "views": 900})

    _install_network(monkeypatch, handler)
    runner = CliRunner()

    result = runner.invoke(
        view_sync,
        ["sync", "server-refresh", "--db-path", db_path, "--video-id", "v1", "--concurrency", "2"],
    )
    assert result.exit_code == 0, result.output
    assert "succeeded=1" in result.output

    shown = runner.invoke(view_sync, ["ledger", "show", "--db-path", db_path, "v1"])
    assert "views=900" in shown.output
    assert "cache: views=900" in shown.output

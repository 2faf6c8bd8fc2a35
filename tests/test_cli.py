from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from flatwatch.admin import main as admin_main
from flatwatch.monitor import main as monitor_main


runner = CliRunner()
FEED = "https://gw.yad2.co.il/realestate-feed/rent/map?city=5000"


@pytest.fixture
def admin_settings(monkeypatch, make_settings, sqlite_url):
    app_settings = make_settings(database_url=sqlite_url, require_database=True)
    monkeypatch.setattr(admin_main, "settings", app_settings)
    return app_settings


def test_admin_url_lifecycle(admin_settings) -> None:
    added = runner.invoke(admin_main.app, ["urls", "add", FEED, "Tel Aviv"])
    assert added.exit_code == 0, added.output
    assert "Added URL [1]" in added.output

    duplicate = runner.invoke(admin_main.app, ["urls", "add", FEED])
    assert duplicate.exit_code == 1
    assert "already exists" in duplicate.output

    deactivated = runner.invoke(admin_main.app, ["urls", "deactivate", "1"])
    assert deactivated.exit_code == 0, deactivated.output

    listed = runner.invoke(admin_main.app, ["urls", "list"])
    assert "inactive" in listed.output
    assert "(Tel Aviv)" in listed.output

    renamed = runner.invoke(admin_main.app, ["urls", "rename", "1", "TLV"])
    assert "Renamed [1] to TLV" in renamed.output

    deleted = runner.invoke(admin_main.app, ["urls", "delete", "1"])
    assert deleted.exit_code == 0
    missing = runner.invoke(admin_main.app, ["urls", "delete", "1"])
    assert missing.exit_code == 1


def test_admin_settings(admin_settings) -> None:
    updated = runner.invoke(
        admin_main.app, ["settings", "set", "--no-send-emails", "--recipients", "ops@example.test"]
    )
    assert updated.exit_code == 0, updated.output

    shown = runner.invoke(admin_main.app, ["settings", "show"])
    assert "send_emails: false" in shown.output
    assert "email_recipients: ops@example.test" in shown.output

    empty = runner.invoke(admin_main.app, ["settings", "set"])
    assert empty.exit_code == 2


def test_admin_history_commands(admin_settings) -> None:
    stats = runner.invoke(admin_main.app, ["stats"])
    assert stats.exit_code == 0, stats.output
    assert "total_ads: 0" in stats.output

    ads = runner.invoke(admin_main.app, ["ads", "list", "--page", "1", "--limit", "5"])
    assert "page 1/1, total 0" in ads.output

    cleanup = runner.invoke(admin_main.app, ["cleanup", "--days", "7"])
    assert "Deleted 0 listings older than 7 days" in cleanup.output

    check = runner.invoke(admin_main.app, ["check-db"])
    assert "Storage OK: database" in check.output


def test_admin_without_database_is_read_only(monkeypatch, make_settings) -> None:
    monkeypatch.setattr(admin_main, "settings", make_settings(tracker_urls=FEED))

    listed = runner.invoke(admin_main.app, ["urls", "list"])
    assert FEED in listed.output

    added = runner.invoke(admin_main.app, ["urls", "add", "https://other.test"])
    assert added.exit_code == 1
    assert "DATABASE_URL" in added.output


def test_check_email_without_credentials(monkeypatch, make_settings) -> None:
    monkeypatch.setattr(admin_main, "settings", make_settings())

    result = runner.invoke(admin_main.app, ["check-email"])

    assert result.exit_code == 1


def test_tracker_exits_when_database_required(monkeypatch, make_settings) -> None:
    monkeypatch.setattr(monitor_main, "settings", make_settings(require_database=True))

    result = runner.invoke(monitor_main.app, [])

    assert result.exit_code == 1


def test_tracker_single_run_with_mock_payload(monkeypatch, make_settings, tmp_path, marker_factory) -> None:
    app_settings = make_settings(tracker_urls=FEED, fetcher="mock")
    (tmp_path / "mock_payload.json").write_text(
        json.dumps({"data": {"markers": [marker_factory("m1"), marker_factory("m2", ad_type="agency")]}}),
        encoding="utf-8",
    )
    monkeypatch.setattr(monitor_main, "settings", app_settings)

    result = runner.invoke(monitor_main.app, [])

    assert result.exit_code == 0, result.output
    assert json.loads((tmp_path / "seen_ads.json").read_text(encoding="utf-8")) == ["m1"]

from __future__ import annotations

import asyncio
import json

from openpyxl import load_workbook
from typer.testing import CliRunner

from rsvpdesk import cli
from rsvpdesk.records import RSVPS_PATH
from rsvpdesk.remote import RemoteStore
from rsvpdesk.storage import fetch_root_token

runner = CliRunner()


def test_admin_token_prints_current_token():
    result = runner.invoke(cli.app, ["admin-token"])
    assert result.exit_code == 0
    assert result.output.strip() == fetch_root_token()


def test_rotate_admin_token_changes_token():
    before = fetch_root_token()
    result = runner.invoke(cli.app, ["rotate-admin-token"])
    assert result.exit_code == 0
    assert result.output.strip() != before
    assert result.output.strip() == fetch_root_token()


def test_seed_data_pushes_fake_rsvps():
    result = runner.invoke(cli.app, ["seed-data", "--count", "4", "--days-back", "2"])
    assert result.exit_code == 0
    assert "4 RSVPs created" in result.output

    snapshot = asyncio.run(RemoteStore().get(RSVPS_PATH))
    values = [value for _, value in snapshot.children()]
    assert len(values) == 4
    assert all(1 <= value["guests"] <= 5 for value in values)
    assert all(value["submittedAt"].endswith("Z") for value in values)


def test_export_writes_spreadsheet(tmp_path):
    runner.invoke(cli.app, ["seed-data", "--count", "3"])
    target = tmp_path / "guests.xlsx"
    result = runner.invoke(cli.app, ["export", "xlsx", "--output", str(target)])
    assert result.exit_code == 0
    assert "Exported 3 RSVPs" in result.output
    rows = list(load_workbook(target)["RSVPs"].iter_rows(values_only=True))
    assert len(rows) == 4


def test_export_rejects_unknown_format():
    result = runner.invoke(cli.app, ["export", "csv"])
    assert result.exit_code == 1


def test_config_show_reads_given_file(tmp_path):
    config_path = tmp_path / "rsvpdesk.toml"
    config_path.write_text("rsvps_per_page = 7\n")
    result = runner.invoke(cli.app, ["config", "--config-path", str(config_path)])
    assert result.exit_code == 0
    effective = json.loads(result.output)
    assert effective["rsvps_per_page"] == 7
    assert effective["config_path"] == str(config_path)

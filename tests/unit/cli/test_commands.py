# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from cfshare.cli import commands
from cfshare.cli.main import cli
from cfshare.controller import ShareStatus
from cfshare.exceptions import NameConflictError, NoActiveShareError, PathNotFoundError
from cfshare.state import AccessRecord, Credentials, ShareItem, ShareState, ShareType
from cfshare.stats import AccessStats

ITEMS = [
    ShareItem(path="/srv/a.txt", name="a.txt", share_type=ShareType.FILE, size=2048),
    ShareItem(path="/srv/docs", name="docs", share_type=ShareType.DIR),
]
STATE = ShareState(
    share_id="1700000000",
    port=8787,
    items=ITEMS,
    credentials=Credentials(username="dl", password="s3cret"),
    server_pid=100,
    tunnel_pid=200,
    start_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
    public_url="https://files.example.com",
)
STATS = AccessStats(
    request_count=3,
    last_access=datetime(2024, 1, 1, 1, tzinfo=timezone.utc),
    recent_access=[
        AccessRecord(
            time=datetime(2024, 1, 1, 1, tzinfo=timezone.utc),
            path="/a.txt",
            status_code=200,
            bytes_sent=2048,
            remote_addr="10.0.0.1",
        )
    ],
)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def controller():
    with patch("cfshare.cli.commands.ShareController") as mock_class:
        yield mock_class.return_value


def test_share(runner, controller):
    controller.share.return_value = STATE
    result = runner.invoke(commands.share, ["/srv/a.txt", "/srv/docs", "--port", "9000"])
    assert result.exit_code == 0, result.output
    controller.share.assert_called_once_with(
        ["/srv/a.txt", "/srv/docs"],
        public=False,
        password=None,
        port=9000,
        tunnel_name=None,
        public_url=None,
    )
    assert "https://files.example.com" in result.output
    assert "Password: s3cret" in result.output
    assert "docs/" in result.output


def test_share_public_conflicts_with_password(runner, controller):
    result = runner.invoke(commands.share, ["/srv/a.txt", "--public", "--pass", "x"])
    assert result.exit_code == 2
    controller.share.assert_not_called()


def test_share_requires_paths(runner, controller):
    result = runner.invoke(commands.share, [])
    assert result.exit_code == 2


def test_share_error(runner, controller):
    controller.share.side_effect = PathNotFoundError("/srv/missing")
    result = runner.invoke(commands.share, ["/srv/missing"])
    assert result.exit_code == 1
    assert "path does not exist: /srv/missing" in result.output


def test_status_value(runner, controller):
    controller.status.return_value = ShareStatus(STATE, True, False, STATS)
    result = runner.invoke(commands.status, [])
    assert result.exit_code == 0, result.output
    assert "Server: running (PID 100)" in result.output
    assert "Tunnel: stopped (PID 200)" in result.output
    assert "Requests: 3" in result.output


def test_status_table(runner, controller):
    controller.status.return_value = ShareStatus(STATE, True, True, STATS)
    result = runner.invoke(commands.status, ["-f", "table"])
    assert result.exit_code == 0, result.output
    assert "/srv/docs" in result.output
    assert "2.00 KB" in result.output
    assert "10.0.0.1" in result.output


def test_status_json(runner, controller):
    controller.status.return_value = ShareStatus(STATE, True, True, STATS)
    result = runner.invoke(commands.status, ["-f", "json"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["active"] is True
    assert data["mode"] == "protected"
    assert data["request_count"] == 3
    assert [item["name"] for item in data["items"]] == ["a.txt", "docs"]


def test_status_without_share(runner, controller):
    controller.status.return_value = ShareStatus(None, False, False, AccessStats())
    result = runner.invoke(commands.status, ["-f", "json-indent"])
    assert json.loads(result.output)["active"] is False
    result = runner.invoke(commands.status, [])
    assert "No active share" in result.output


def test_add(runner, controller):
    controller.add.return_value = (STATE, [ITEMS[1]])
    result = runner.invoke(commands.add, ["/srv/docs"])
    assert result.exit_code == 0, result.output
    controller.add.assert_called_once_with(["/srv/docs"])
    assert "Added docs" in result.output
    assert "a.txt, docs" in result.output


def test_add_conflict(runner, controller):
    controller.add.side_effect = NameConflictError("a.txt", "/srv/a.txt", "/tmp/a.txt")
    result = runner.invoke(commands.add, ["/tmp/a.txt"])
    assert result.exit_code == 1
    assert "name conflict" in result.output


def test_remove(runner, controller):
    controller.remove.return_value = (STATE, ["old.txt"])
    result = runner.invoke(commands.remove, ["old.txt"])
    assert result.exit_code == 0, result.output
    controller.remove.assert_called_once_with(["old.txt"])
    assert "Removed old.txt" in result.output


def test_remove_without_share(runner, controller):
    controller.remove.side_effect = NoActiveShareError()
    result = runner.invoke(commands.remove, ["a.txt"])
    assert result.exit_code == 1
    assert "no active share" in result.output


@pytest.mark.parametrize("stopped,message", [(True, "Share stopped"), (False, "No active share")])
def test_stop(runner, controller, stopped, message):
    controller.stop.return_value = stopped
    result = runner.invoke(commands.stop, ["--force"])
    assert result.exit_code == 0
    controller.stop.assert_called_once_with(force=True)
    assert message in result.output


def test_setup(runner, controller):
    controller.setup.return_value = None
    result = runner.invoke(commands.setup, ["--tunnel", "mine"])
    assert result.exit_code == 0
    controller.setup.assert_called_once_with("mine")
    assert "pass --url" in result.output


def test_logs(runner, controller):
    controller.logs.return_value = ['{"path": "/a.txt"}']
    result = runner.invoke(commands.logs, ["-n", "5"])
    assert result.exit_code == 0
    controller.logs.assert_called_once_with(5)
    assert '{"path": "/a.txt"}' in result.output


def test_group_defaults_to_status(runner):
    with patch("cfshare.cli.main.get_controller") as get_controller:
        get_controller.return_value.status.return_value = ShareStatus(
            None, False, False, AccessStats()
        )
        result = runner.invoke(cli, [])
    assert result.exit_code == 0, result.output
    assert "No active share" in result.output

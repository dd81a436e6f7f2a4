# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import json
import logging
from datetime import datetime, timezone

import click
import prettytable

from cfshare.cli.common import (
    JSON_FORMAT,
    JSON_INDENT_FORMAT,
    TABLE_FORMAT,
    VALUE_FORMAT,
    click_option_format,
    handle_errors,
)
from cfshare.config import ConfigPaths
from cfshare.controller import ShareController, ShareStatus
from cfshare.fileserver.utils import format_size
from cfshare.state import ShareMode, ShareState

logger = logging.getLogger(__name__)


def get_controller() -> ShareController:
    """Controller bound to the per-user configuration directory."""
    return ShareController(ConfigPaths())


def _uptime(start_time: datetime) -> str:
    seconds = int((datetime.now(timezone.utc) - start_time).total_seconds())
    hours, rest = divmod(max(seconds, 0), 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}h{minutes:02d}m{seconds:02d}s"


def _running(alive: bool) -> str:
    return "running" if alive else "stopped"


def _echo_share(state: ShareState) -> None:
    click.echo(f"Sharing {len(state.items)} item(s):")
    for item in state.items:
        suffix = "/" if item.is_dir else f" ({format_size(item.size)})"
        click.echo(f"  {item.name}{suffix}")
    click.echo(f"URL: {state.public_url}")
    if state.credentials is not None:
        click.echo(f"Username: {state.credentials.username}")
        click.echo(f"Password: {state.credentials.password}")
    else:
        click.echo("Mode: public (no authentication)")


def status_to_dict(status: ShareStatus) -> dict:
    """JSON-friendly view of a status snapshot."""
    state = status.state
    data = {
        "active": state is not None,
        "server_running": status.server_running,
        "tunnel_running": status.tunnel_running,
        "request_count": status.stats.request_count,
        "last_access": status.stats.last_access.isoformat() if status.stats.last_access else None,
        "recent_access": [r.model_dump(mode="json") for r in status.stats.recent_access],
    }
    if state is not None:
        data.update(
            {
                "share_id": state.share_id,
                "mode": state.mode.value,
                "url": state.public_url,
                "port": state.port,
                "items": [item.model_dump(mode="json") for item in state.items],
                "server_pid": state.server_pid,
                "tunnel_pid": state.tunnel_pid,
                "start_time": state.start_time.isoformat(),
            }
        )
        if state.credentials is not None:
            data["username"] = state.credentials.username
            data["password"] = state.credentials.password
    return data


def display_status(status: ShareStatus, format: str) -> None:
    """Display the result depending on the format."""
    if format in (JSON_FORMAT, JSON_INDENT_FORMAT):
        indent = 2 if format == JSON_INDENT_FORMAT else None
        click.echo(json.dumps(status_to_dict(status), indent=indent))
        return

    state = status.state
    if state is None:
        click.echo("No active share")
        return

    if format == TABLE_FORMAT:
        table = prettytable.PrettyTable()
        table.title = f"Share {state.share_id}"
        table.field_names = ["Name", "Type", "Size", "Path"]
        table.align = "l"
        for item in state.items:
            size = "-" if item.is_dir else format_size(item.size)
            table.add_row([item.name, item.share_type.value, size, item.path])
        click.echo(table)
    else:
        _echo_share(state)

    click.echo(f"Server: {_running(status.server_running)} (PID {state.server_pid})")
    click.echo(f"Tunnel: {_running(status.tunnel_running)} (PID {state.tunnel_pid})")
    click.echo(f"Uptime: {_uptime(state.start_time)}")
    click.echo(f"Requests: {status.stats.request_count}")
    if status.stats.last_access is not None:
        click.echo(f"Last access: {status.stats.last_access.isoformat()}")

    if format == TABLE_FORMAT and status.stats.recent_access:
        table = prettytable.PrettyTable()
        table.title = "Recent access"
        table.field_names = ["Time", "Path", "Status", "Bytes", "Remote"]
        table.align = "l"
        for record in status.stats.recent_access:
            table.add_row(
                [
                    record.time.isoformat(timespec="seconds"),
                    record.path,
                    record.status_code,
                    record.bytes_sent,
                    record.remote_addr,
                ]
            )
        click.echo(table)


@click.command("share")
@click.argument("paths", nargs=-1, required=True, type=click.Path())
@click.option("--public", is_flag=True, help="Share without authentication")
@click.option("--pass", "password", help="Password to use instead of a generated one")
@click.option("--port", type=click.IntRange(1, 65535), help="Local port of the file server")
@click.option("--tunnel", "tunnel_name", help="Name of the cloudflared tunnel")
@click.option("--url", "public_url", help="Public URL, when it cannot be discovered")
@handle_errors
def share(paths, public: bool, password, port, tunnel_name, public_url):
    """Share one or more files or directories."""
    if public and password:
        raise click.UsageError("--public and --pass are mutually exclusive")
    state = get_controller().share(
        list(paths),
        public=public,
        password=password,
        port=port,
        tunnel_name=tunnel_name,
        public_url=public_url,
    )
    logger.debug("Share %s started with %d item(s)", state.share_id, len(state.items))
    _echo_share(state)
    if state.mode == ShareMode.PUBLIC:
        click.echo("Warning: anyone with the URL can download the shared items", err=True)


@click.command("status")
@click_option_format
@handle_errors
def status(format: str):
    """Show the active share."""
    display_status(get_controller().status(), format)


@click.command("add")
@click.argument("paths", nargs=-1, required=True, type=click.Path())
@handle_errors
def add(paths):
    """Add files or directories to the active share."""
    state, added = get_controller().add(list(paths))
    for item in added:
        click.echo(f"Added {item.name}")
    click.echo(f"Now sharing {len(state.items)} item(s): {', '.join(state.item_names())}")


@click.command("remove")
@click.argument("names", nargs=-1, required=True)
@handle_errors
def remove(names):
    """Remove items, by name, from the active share."""
    state, removed = get_controller().remove(list(names))
    for name in removed:
        click.echo(f"Removed {name}")
    click.echo(f"Now sharing {len(state.items)} item(s): {', '.join(state.item_names())}")


@click.command("stop")
@click.option("--force", is_flag=True, help="Kill the processes, discarding unreadable state")
@handle_errors
def stop(force: bool):
    """Stop the active share."""
    if get_controller().stop(force=force):
        click.echo("Share stopped")
    else:
        click.echo("No active share")


@click.command("setup")
@click.option("--tunnel", "tunnel_name", help="Name of the cloudflared tunnel")
@handle_errors
def setup(tunnel_name):
    """Check that cloudflared and the tunnel are ready."""
    url = get_controller().setup(tunnel_name)
    click.echo("Tunnel is configured")
    if url:
        click.echo(f"Public URL: {url}")
    else:
        click.echo("Public URL could not be determined, pass --url when sharing")


@click.command("logs")
@click.option("-n", "--lines", default=20, show_default=True, type=int, help="Number of lines")
@handle_errors
def logs(lines: int):
    """Show the last entries of the access log."""
    entries = get_controller().logs(lines)
    if not entries:
        click.echo("No access recorded")
        return
    for entry in entries:
        click.echo(entry)

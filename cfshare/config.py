# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Configuration options and per-user file locations.

Options are registered on the global ``oslo_config`` object so that both the
controlling CLI and the detached file server read the same settings. The
optional ``cfshare.conf`` file is picked up through oslo.config's default
search path (``~/.cfshare/cfshare.conf`` among others).
"""

import os
from pathlib import Path

from oslo_config import cfg

CONF = cfg.CONF

CONFIG_FILE_NAME = "cfshare.conf"
STATE_FILE_NAME = "state.json"
STATE_LOCK_FILE_NAME = "state.lock"
STATS_FILE_NAME = "stats.json"
ACCESS_LOG_FILE_NAME = "access.log"
SERVER_PID_FILE_NAME = "server.pid"
TUNNEL_PID_FILE_NAME = "tunnel.pid"
SERVER_LOG_FILE_NAME = "server.log"
TUNNEL_LOG_FILE_NAME = "tunnel.log"
CLI_LOG_FILE_NAME = "cfshare.log"

share_opts = [
    cfg.PortOpt("port", default=8787, help="Local port the file server listens on"),
    cfg.StrOpt("username", default="dl", help="Username for protected shares"),
    cfg.IntOpt(
        "password_length",
        default=16,
        min=8,
        help="Length of generated passwords for protected shares",
    ),
    cfg.StrOpt("tunnel_name", default="cfshare", help="Name of the cloudflared tunnel"),
    cfg.FloatOpt(
        "settle_delay",
        default=0.5,
        min=0,
        help="Seconds to wait after spawning a process before checking it is alive",
    ),
    cfg.FloatOpt(
        "stop_timeout",
        default=5.0,
        min=0,
        help="Seconds to wait for the tunnel to exit before killing it",
    ),
    cfg.FloatOpt(
        "server_stop_timeout",
        default=3.0,
        min=0,
        help="Seconds to wait for the file server to exit before killing it",
    ),
    cfg.FloatOpt(
        "restart_delay",
        default=0.3,
        min=0,
        help="Seconds to wait between stopping and respawning the file server",
    ),
]

fileserver_opts = [
    cfg.HostAddressOpt(
        "host",
        default=os.environ.get("CFSHARE_HOST", "127.0.0.1"),
        help="Listen address for the file server",
    ),
    cfg.IntOpt(
        "stats_lock_retries",
        default=5,
        min=1,
        help="Attempts at locking the statistics file before skipping an update",
    ),
    cfg.FloatOpt(
        "stats_lock_interval",
        default=0.01,
        min=0,
        help="Seconds between attempts at locking the statistics file",
    ),
    cfg.IntOpt(
        "recent_access_limit",
        default=10,
        min=1,
        help="Number of recent access records kept in the statistics file",
    ),
]

CONF.register_opts(share_opts, group="share")
CONF.register_opts(fileserver_opts, group="fileserver")


def get_config_dir() -> Path:
    """Return the per-user directory holding state, PID and log files."""
    home = os.environ.get("CFSHARE_HOME")
    if home:
        return Path(home)
    try:
        return Path.home() / ".cfshare"
    except RuntimeError:
        return Path(".cfshare")


def default_config_files() -> list[str] | None:
    """Config files to parse, or None to use oslo.config's default search."""
    candidate = get_config_dir() / CONFIG_FILE_NAME
    if "CFSHARE_HOME" in os.environ:
        return [str(candidate)] if candidate.exists() else []
    return None


class ConfigPaths:
    """Locations of every file cfshare keeps in its configuration directory."""

    def __init__(self, base: Path | None = None):
        self.base = Path(base) if base is not None else get_config_dir()

    def ensure(self) -> Path:
        self.base.mkdir(mode=0o700, parents=True, exist_ok=True)
        return self.base

    @property
    def state(self) -> Path:
        return self.base / STATE_FILE_NAME

    @property
    def state_lock(self) -> Path:
        return self.base / STATE_LOCK_FILE_NAME

    @property
    def stats(self) -> Path:
        return self.base / STATS_FILE_NAME

    @property
    def access_log(self) -> Path:
        return self.base / ACCESS_LOG_FILE_NAME

    @property
    def server_pid(self) -> Path:
        return self.base / SERVER_PID_FILE_NAME

    @property
    def tunnel_pid(self) -> Path:
        return self.base / TUNNEL_PID_FILE_NAME

    @property
    def server_log(self) -> Path:
        return self.base / SERVER_LOG_FILE_NAME

    @property
    def tunnel_log(self) -> Path:
        return self.base / TUNNEL_LOG_FILE_NAME

    @property
    def cli_log(self) -> Path:
        return self.base / CLI_LOG_FILE_NAME

# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Lifecycle of the external tunnel client publishing the local server.

Only ``cloudflared`` is supported. The tunnel itself (credentials, DNS
routes, ingress rules) is configured outside of cfshare; this module starts
and stops the client and tries to discover the public hostname from its
configuration.
"""

import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import Iterable, Optional

import yaml

from .config import ConfigPaths
from .exceptions import TunnelError
from .process import ProcessSupervisor, remove_pid_file

logger = logging.getLogger(__name__)

CLOUDFLARED = "cloudflared"
INSTALL_URL = (
    "https://developers.cloudflare.com/cloudflare-one/connections/connect-networks/downloads/"
)
CLOUDFLARED_CONFIGS = (
    Path("~/.cloudflared/config.yml"),
    Path("~/.cloudflared/config.yaml"),
    Path("/etc/cloudflared/config.yml"),
    Path("/etc/cloudflared/config.yaml"),
)
HOSTNAME_RE = re.compile(r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}$", re.I)


class TunnelGateway:
    """Interface the controller expects from a tunnel client."""

    def start(self) -> int:
        """Start the client, or return the PID of the one already running."""
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def force_stop(self) -> None:
        raise NotImplementedError

    def is_running(self) -> bool:
        raise NotImplementedError

    def get_public_url(self) -> str:
        """Return the public URL; raises TunnelError when it cannot be found."""
        raise NotImplementedError

    def check_setup(self) -> None:
        """Verify the client is installed and configured."""


def _usable_hostname(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    hostname = value.strip().strip("\"'")
    if not hostname or hostname.startswith("*"):
        return None
    return hostname


def hostname_from_config(path: Path) -> Optional[str]:
    """Return the first concrete hostname declared in a cloudflared config."""
    try:
        with open(path.expanduser(), encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError):
        return None
    if not isinstance(data, dict):
        return None
    hostname = _usable_hostname(data.get("hostname"))
    if hostname:
        return hostname
    for rule in data.get("ingress") or []:
        if isinstance(rule, dict):
            hostname = _usable_hostname(rule.get("hostname"))
            if hostname:
                return hostname
    return None


def hostname_from_tunnel_info(output: str) -> Optional[str]:
    """Pick a hostname out of ``cloudflared tunnel info`` output."""
    for line in output.splitlines():
        if "connector" in line.lower():
            continue
        for token in line.split():
            token = token.strip("\"',")
            if HOSTNAME_RE.match(token):
                return token
    return None


class CloudflaredTunnel(TunnelGateway):
    """TunnelGateway running ``cloudflared tunnel run <name>`` detached."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        paths: ConfigPaths,
        tunnel_name: str,
        executable: str = CLOUDFLARED,
        config_files: Iterable[Path] = CLOUDFLARED_CONFIGS,
    ):
        self.supervisor = supervisor
        self.paths = paths
        self.tunnel_name = tunnel_name
        self.executable = executable
        self.config_files = tuple(config_files)

    def _find_executable(self) -> str:
        path = shutil.which(self.executable)
        if path is None:
            raise TunnelError(
                f"{self.executable} not found in PATH, install it first: {INSTALL_URL}"
            )
        return path

    def running_pid(self) -> int:
        return self.supervisor.running_pid(self.paths.tunnel_pid)

    def start(self) -> int:
        """Start the tunnel client detached, reusing a running one."""
        executable = self._find_executable()
        pid = self.running_pid()
        if pid:
            logger.debug("Tunnel already running as PID %d", pid)
            return pid
        # http2 rather than QUIC, which some networks block.
        cmd = [executable, "tunnel", "--protocol", "http2", "run", self.tunnel_name]
        self.paths.ensure()
        return self.supervisor.spawn(cmd, self.paths.tunnel_log, self.paths.tunnel_pid)

    def stop(self) -> None:
        pid = self.running_pid()
        if pid:
            self.supervisor.stop(pid)
        remove_pid_file(self.paths.tunnel_pid)

    def force_stop(self) -> None:
        pid = self.running_pid()
        if pid:
            self.supervisor.force_stop(pid)
        remove_pid_file(self.paths.tunnel_pid)

    def is_running(self) -> bool:
        return self.running_pid() > 0

    def get_public_url(self) -> str:
        """Public URL from the cloudflared config, else from ``tunnel info``."""
        for config_file in self.config_files:
            hostname = hostname_from_config(config_file)
            if hostname:
                return f"https://{hostname}"
        try:
            output = subprocess.run(
                [self.executable, "tunnel", "info", self.tunnel_name],
                capture_output=True,
                text=True,
                check=True,
            ).stdout
        except (OSError, subprocess.CalledProcessError) as e:
            raise TunnelError(f"could not determine public URL, pass it explicitly: {e}")
        hostname = hostname_from_tunnel_info(output)
        if hostname is None:
            raise TunnelError("could not determine public URL, pass it explicitly")
        return f"https://{hostname}"

    def check_setup(self) -> None:
        """Check that cloudflared is installed and the named tunnel exists."""
        executable = self._find_executable()
        try:
            output = subprocess.run(
                [executable, "tunnel", "list"],
                capture_output=True,
                text=True,
                check=True,
            ).stdout
        except (OSError, subprocess.CalledProcessError) as e:
            raise TunnelError(
                f"cannot list tunnels ({e}), log in first with: cloudflared tunnel login"
            )
        if self.tunnel_name not in output.split():
            raise TunnelError(
                f"tunnel '{self.tunnel_name}' does not exist, create it with: "
                f"cloudflared tunnel create {self.tunnel_name} "
                "and configure its DNS route and config.yml"
            )

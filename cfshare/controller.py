# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Share lifecycle: start, mutate, inspect and stop the active share."""

import logging
import os
import secrets
import string
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from .config import CONF, ConfigPaths
from .exceptions import (
    CfshareError,
    NoActiveShareError,
    ProcessSpawnError,
    ShareItemError,
    StateLoadError,
)
from .fileserver.namespace import VirtualNamespace, build_share_items
from .fileserver.server import PASSWORD_ENV, USERNAME_ENV
from .fileserver.utils import encode_paths
from .process import ProcessSupervisor, read_pid_file, remove_pid_file
from .state import Credentials, ShareItem, ShareState, StateStore
from .stats import AccessStats, AccessStatsStore
from .tunnel import CloudflaredTunnel, TunnelGateway

logger = logging.getLogger(__name__)

SERVER_MODULE = "cfshare.fileserver"
PASSWORD_ALPHABET = string.ascii_letters + string.digits


def generate_password(length: int) -> str:
    """Random alphanumeric password."""
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


@dataclass
class ShareStatus:
    """Snapshot returned by :meth:`ShareController.status`."""

    state: Optional[ShareState]
    server_running: bool
    tunnel_running: bool
    stats: AccessStats


class ShareController:
    """Orchestrates the persisted state, the file server and the tunnel.

    :param paths: locations of the per-user files
    :param store: state store, built from ``paths`` when omitted
    :param stats: access statistics store, built from ``paths`` when omitted
    :param supervisor: process supervisor shared by server and tunnel
    :param tunnel_factory: callable returning a TunnelGateway for a tunnel name
    """

    def __init__(
        self,
        paths: ConfigPaths,
        store: Optional[StateStore] = None,
        stats: Optional[AccessStatsStore] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        tunnel_factory: Optional[Callable[[str], TunnelGateway]] = None,
    ):
        self.paths = paths
        self.store = store or StateStore(paths)
        self.stats = stats or AccessStatsStore(paths.stats)
        self.supervisor = supervisor or ProcessSupervisor(
            settle_delay=CONF.share.settle_delay, stop_timeout=CONF.share.stop_timeout
        )
        self.tunnel_factory = tunnel_factory or self._cloudflared

    def _cloudflared(self, tunnel_name: str) -> TunnelGateway:
        return CloudflaredTunnel(self.supervisor, self.paths, tunnel_name)

    def _server_command(self, state: ShareState) -> List[str]:
        return [
            sys.executable,
            "-m",
            SERVER_MODULE,
            encode_paths(state.item_paths),
            "--port",
            str(state.port),
        ]

    def _server_env(self, state: ShareState) -> dict:
        env = dict(os.environ)
        env.pop(USERNAME_ENV, None)
        env.pop(PASSWORD_ENV, None)
        env["CFSHARE_HOME"] = str(self.paths.base)
        if state.credentials is not None:
            env[USERNAME_ENV] = state.credentials.username
            env[PASSWORD_ENV] = state.credentials.password
        return env

    def spawn_server(self, state: ShareState) -> int:
        """Start a detached file server for ``state``'s items."""
        self.paths.ensure()
        pid = self.supervisor.spawn(
            self._server_command(state),
            self.paths.server_log,
            self.paths.server_pid,
            env=self._server_env(state),
        )
        logger.info("File server started as PID %d on port %d", pid, state.port)
        return pid

    def stop_server(self, pid: int, force: bool = False) -> None:
        if force:
            self.supervisor.force_stop(pid)
        else:
            self.supervisor.stop(pid, CONF.share.server_stop_timeout)
        remove_pid_file(self.paths.server_pid)

    def _require_running(self) -> ShareState:
        state = self.store.load()
        if state is None or not self.supervisor.is_alive(state.server_pid):
            raise NoActiveShareError()
        return state

    def restart_server(self, updated: ShareState, previous: ShareState) -> None:
        """Replace the running server with one serving ``updated``'s items.

        The tunnel is left alone. When the new server fails to start, a
        server for ``previous`` is brought back and the error re-raised.
        """
        self.stop_server(previous.server_pid)
        time.sleep(CONF.share.restart_delay)
        try:
            updated.server_pid = self.spawn_server(updated)
        except ProcessSpawnError:
            logger.error("New file server failed to start, restoring the previous items")
            try:
                previous.server_pid = self.spawn_server(previous)
            except ProcessSpawnError:
                logger.exception("Could not restore the previous file server")
                previous.server_pid = 0
            self.store.save(previous)
            raise

    def share(
        self,
        paths: Sequence[str],
        public: bool = False,
        password: Optional[str] = None,
        port: Optional[int] = None,
        tunnel_name: Optional[str] = None,
        public_url: Optional[str] = None,
    ) -> ShareState:
        """Start a new share of ``paths``, replacing any running one."""
        if not paths:
            raise ShareItemError("nothing to share")
        items = build_share_items(paths)
        VirtualNamespace(items)
        tunnel = self.tunnel_factory(tunnel_name or CONF.share.tunnel_name)

        with self.store.transaction():
            existing = self.store.load()
            if existing is not None and self.supervisor.is_alive(existing.server_pid):
                logger.info("Stopping the running share %s first", existing.share_id)
                self._stop_processes(existing.server_pid, tunnel, force=False)
                self.store.clear()
                time.sleep(CONF.share.restart_delay)

            credentials = None
            if not public:
                credentials = Credentials(
                    username=CONF.share.username,
                    password=password or generate_password(CONF.share.password_length),
                )
            if not public_url:
                public_url = tunnel.get_public_url()

            now = datetime.now(timezone.utc)
            state = ShareState(
                share_id=str(int(now.timestamp())),
                port=port or CONF.share.port,
                items=items,
                credentials=credentials,
                start_time=now,
                public_url=public_url,
            )
            self.stats.clear()
            state.server_pid = self.spawn_server(state)
            try:
                state.tunnel_pid = tunnel.start()
            except CfshareError:
                logger.error("Tunnel failed to start, stopping file server %d", state.server_pid)
                self.stop_server(state.server_pid, force=True)
                raise
            self.store.save(state)
        return state

    def add(self, paths: Sequence[str]) -> Tuple[ShareState, List[ShareItem]]:
        """Add ``paths`` to the running share and restart its server."""
        with self.store.transaction():
            state = self._require_running()
            new_items = build_share_items(paths)
            VirtualNamespace([*state.items, *new_items])
            updated = state.model_copy(update={"items": [*state.items, *new_items]})
            self.restart_server(updated, state)
            self.store.save(updated)
        return updated, new_items

    def remove(self, names: Sequence[str]) -> Tuple[ShareState, List[str]]:
        """Remove items by display name and restart the server."""
        with self.store.transaction():
            state = self._require_running()
            wanted = set(names)
            remaining = [item for item in state.items if item.name not in wanted]
            removed = [item.name for item in state.items if item.name in wanted]
            if not removed:
                raise ShareItemError(
                    f"no shared item named {', '.join(names)}; "
                    f"current items: {', '.join(state.item_names())}"
                )
            if not remaining:
                raise ShareItemError("cannot remove every item, use 'cfshare stop' instead")
            VirtualNamespace(remaining)
            updated = state.model_copy(update={"items": remaining})
            self.restart_server(updated, state)
            self.store.save(updated)
        return updated, removed

    def _stop_processes(self, server_pid: int, tunnel: TunnelGateway, force: bool) -> None:
        if server_pid:
            self.stop_server(server_pid, force=force)
        if force:
            tunnel.force_stop()
        else:
            tunnel.stop()

    def stop(self, force: bool = False) -> bool:
        """Stop the active share; return False when there was none.

        With ``force`` a malformed state file is discarded and the processes
        are found through their PID files instead.
        """
        with self.store.transaction():
            try:
                state = self.store.load()
            except StateLoadError as e:
                if not force:
                    raise
                logger.warning("Discarding unreadable state: %s", e)
                state = None
                server_pid = read_pid_file(self.paths.server_pid)
            else:
                if state is None:
                    return False
                server_pid = state.server_pid

            tunnel = self.tunnel_factory(CONF.share.tunnel_name)
            self._stop_processes(server_pid, tunnel, force=force)
            pid_file_pid = read_pid_file(self.paths.server_pid)
            if pid_file_pid and pid_file_pid != server_pid:
                self.stop_server(pid_file_pid, force=force)
            self.store.clear()
            remove_pid_file(self.paths.server_pid)
            remove_pid_file(self.paths.tunnel_pid)
        return True

    def status(self) -> ShareStatus:
        state = self.store.load()
        stats = self.stats.load()
        if state is None:
            return ShareStatus(None, False, False, stats)
        return ShareStatus(
            state=state,
            server_running=self.supervisor.is_alive(state.server_pid),
            tunnel_running=self.supervisor.is_alive(state.tunnel_pid),
            stats=stats,
        )

    def logs(self, lines: int = 20) -> List[str]:
        """Last ``lines`` entries of the access log."""
        try:
            content = self.paths.access_log.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            raise CfshareError(f"cannot read access log: {e}")
        entries = [line for line in content.splitlines() if line]
        return entries[-lines:] if lines > 0 else entries

    def setup(self, tunnel_name: Optional[str] = None) -> Optional[str]:
        """Check the tunnel configuration; return the public URL if known."""
        tunnel = self.tunnel_factory(tunnel_name or CONF.share.tunnel_name)
        tunnel.check_setup()
        try:
            return tunnel.get_public_url()
        except CfshareError as e:
            logger.warning("Public URL unavailable: %s", e)
            return None

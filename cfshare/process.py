# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Supervision of the detached background processes of a share.

Processes are started in their own session so that they survive the CLI
invocation that launched them and ignore signals sent to its terminal.
Their identifiers are kept in plain-text PID files; nothing else about them
is assumed to be known by later invocations.
"""

import errno
import logging
import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Dict, Optional, Sequence

from .exceptions import ProcessDiedImmediatelyError, ProcessSpawnError

LOG = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


def _proc_state(pid: int) -> str:
    """Single-letter state of ``pid`` from procfs, empty where unavailable."""
    try:
        stat_line = Path(f"/proc/{pid}/stat").read_text()
    except OSError:
        return ""
    # The command name may contain spaces and parentheses.
    fields = stat_line.rpartition(")")[2].split()
    return fields[0] if fields else ""


def read_pid_file(path: Path) -> int:
    """Return the PID stored in ``path``, or 0 when missing or invalid."""
    try:
        return int(Path(path).read_text().strip())
    except (OSError, ValueError):
        return 0


def write_pid_file(path: Path, pid: int) -> None:
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(str(pid))


def remove_pid_file(path: Path) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        LOG.warning("Failed to remove PID file %s: %s", path, exc)


class ProcessSupervisor:
    """Spawn, probe and stop detached processes."""

    def __init__(
        self, settle_delay: float = 0.5, stop_timeout: float = 5.0, kill_wait: float = 1.0
    ):
        self.settle_delay = settle_delay
        self.stop_timeout = stop_timeout
        self.kill_wait = kill_wait

    def spawn(
        self,
        cmd: Sequence[str],
        log_path: Path,
        pid_file: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> int:
        """Start ``cmd`` detached from the current session.

        Output goes to ``log_path`` (appended). After ``settle_delay``
        seconds the process must still be alive, otherwise
        ProcessDiedImmediatelyError is raised.

        :param cmd: command line to execute
        :param log_path: file receiving stdout and stderr
        :param pid_file: where to persist the PID, if anywhere
        :param env: full environment of the child, inherited when None
        :return: PID of the new process
        """
        try:
            log_fd = os.open(str(log_path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        except OSError as exc:
            raise ProcessSpawnError(f"cannot open log file {log_path}: {exc}")
        try:
            proc = subprocess.Popen(
                list(cmd),
                stdin=subprocess.DEVNULL,
                stdout=log_fd,
                stderr=subprocess.STDOUT,
                env=env,
                close_fds=True,
                start_new_session=True,
            )
        except OSError as exc:
            raise ProcessSpawnError(f"cannot start {cmd[0]}: {exc}")
        finally:
            os.close(log_fd)

        pid = proc.pid
        LOG.debug("Spawned %s as PID %d (log: %s)", cmd[0], pid, log_path)
        if pid_file is not None:
            try:
                write_pid_file(pid_file, pid)
            except OSError as exc:
                self.force_stop(pid)
                raise ProcessSpawnError(f"cannot write PID file {pid_file}: {exc}")

        time.sleep(self.settle_delay)
        if proc.poll() is not None:
            if pid_file is not None:
                remove_pid_file(pid_file)
            raise ProcessDiedImmediatelyError(pid, log_path)
        return pid

    def is_alive(self, pid: int) -> bool:
        """Probe ``pid`` with signal 0; the process itself is unaffected."""
        if pid <= 0:
            return False
        try:
            # Children of this process linger as zombies until reaped.
            reaped, _ = os.waitpid(pid, os.WNOHANG)
            if reaped == pid:
                return False
        except ChildProcessError:
            pass
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        except OSError as exc:
            if exc.errno == errno.ESRCH:
                return False
            raise
        # Zombies of other parents still answer signal 0 until reaped.
        return _proc_state(pid) != "Z"

    def wait_for_exit(self, pid: int, timeout: float) -> bool:
        """Poll until ``pid`` is gone; return False if still alive at ``timeout``."""
        deadline = time.monotonic() + timeout
        while self.is_alive(pid):
            if time.monotonic() >= deadline:
                return False
            time.sleep(POLL_INTERVAL)
        return True

    def _signal(self, pid: int, signum: int) -> bool:
        try:
            os.kill(pid, signum)
        except ProcessLookupError:
            return False
        except PermissionError as exc:
            LOG.warning("Not allowed to signal PID %d: %s", pid, exc)
            return False
        return True

    def _escalate(self, pid: int) -> None:
        LOG.warning("PID %d did not exit after SIGTERM, sending SIGKILL", pid)
        self._signal(pid, signal.SIGKILL)

    def stop(self, pid: int, timeout: Optional[float] = None) -> None:
        """Stop ``pid`` with SIGTERM, escalating to SIGKILL after ``timeout``.

        Waiting for the exit and the escalation timer run concurrently; the
        timer sends SIGKILL itself when it fires first. Unknown or already
        stopped processes are ignored.
        """
        if not self.is_alive(pid):
            return
        if timeout is None:
            timeout = self.stop_timeout
        if not self._signal(pid, signal.SIGTERM):
            return

        timer = threading.Timer(timeout, self._escalate, args=(pid,))
        timer.daemon = True
        timer.start()
        try:
            exited = self.wait_for_exit(pid, timeout + self.kill_wait)
        finally:
            timer.cancel()
        if not exited:
            LOG.error("PID %d is still running after SIGKILL", pid)

    def force_stop(self, pid: int) -> None:
        """Send SIGKILL to ``pid`` without a grace period."""
        if not self.is_alive(pid):
            return
        if self._signal(pid, signal.SIGKILL):
            self.wait_for_exit(pid, self.kill_wait)

    def running_pid(self, pid_file: Path) -> int:
        """Return the live PID recorded in ``pid_file``, dropping stale files."""
        pid = read_pid_file(pid_file)
        if pid <= 0:
            return 0
        if not self.is_alive(pid):
            remove_pid_file(pid_file)
            return 0
        return pid

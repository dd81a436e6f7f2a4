# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Cross-process exclusive access to files through advisory locks."""

import contextlib
import fcntl
import logging
import os
import time
from pathlib import Path
from typing import Iterator

from .exceptions import LockTimeoutError

LOG = logging.getLogger(__name__)


@contextlib.contextmanager
def exclusive_lock(path: Path, retries: int = 1, interval: float = 0.0) -> Iterator[int]:
    """Hold an exclusive ``flock`` on ``path`` for the duration of the block.

    The file is created (mode 0600) when missing. The lock is requested
    without blocking up to ``retries`` times, sleeping ``interval`` seconds
    between attempts. The yielded value is the open file descriptor so that
    callers can read and rewrite the locked file in place.

    Raises LockTimeoutError when every attempt fails. The lock is released
    and the descriptor closed on every exit path.
    """
    fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o600)
    try:
        for attempt in range(max(retries, 1)):
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                LOG.debug("Lock on %s is busy (attempt %d/%d)", path, attempt + 1, retries)
                if attempt + 1 < retries:
                    time.sleep(interval)
        else:
            raise LockTimeoutError(f"could not lock {path} after {retries} attempt(s)")
        try:
            yield fd
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def read_fd(fd: int) -> bytes:
    """Read the whole content of an open descriptor from the start."""
    os.lseek(fd, 0, os.SEEK_SET)
    chunks = []
    while True:
        buf = os.read(fd, 65536)
        if not buf:
            break
        chunks.append(buf)
    return b"".join(chunks)


def rewrite_fd(fd: int, data: bytes) -> None:
    """Truncate an open descriptor and write ``data`` from the start."""
    os.ftruncate(fd, 0)
    os.lseek(fd, 0, os.SEEK_SET)
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]

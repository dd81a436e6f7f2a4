# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Access statistics shared between the file server and the controller.

The file server updates the statistics on every request while the
controller reads them for ``status``. Both run in different processes, so
every read-modify-write cycle happens under an exclusive advisory lock on
the statistics file itself.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from .exceptions import LockTimeoutError
from .locking import exclusive_lock, read_fd, rewrite_fd
from .state import AccessRecord

LOG = logging.getLogger(__name__)

RECENT_ACCESS_LIMIT = 10


class AccessStats(BaseModel):
    """Request counter plus a bounded ring of the most recent requests."""

    request_count: int = 0
    last_access: Optional[datetime] = None
    recent_access: List[AccessRecord] = Field(default_factory=list)

    def add(self, record: AccessRecord, limit: int = RECENT_ACCESS_LIMIT) -> None:
        self.request_count += 1
        self.last_access = record.time
        self.recent_access.append(record)
        if len(self.recent_access) > limit:
            self.recent_access = self.recent_access[-limit:]


def _parse(data: bytes) -> AccessStats:
    if not data.strip():
        return AccessStats()
    try:
        return AccessStats.model_validate(json.loads(data))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as exc:
        LOG.warning("Discarding unreadable access statistics: %s", exc)
        return AccessStats()


class AccessStatsStore:
    """Lock-protected store backing :class:`AccessStats`."""

    def __init__(
        self,
        path: Path,
        lock_retries: int = 5,
        lock_interval: float = 0.01,
        limit: int = RECENT_ACCESS_LIMIT,
    ):
        self.path = Path(path)
        self.lock_retries = lock_retries
        self.lock_interval = lock_interval
        self.limit = limit

    def record(self, record: AccessRecord) -> bool:
        """Append ``record`` and bump the counter.

        Best-effort: returns False (and leaves the file untouched) when the
        lock cannot be obtained or the file cannot be written.
        """
        try:
            with exclusive_lock(self.path, self.lock_retries, self.lock_interval) as fd:
                stats = _parse(read_fd(fd))
                stats.add(record, self.limit)
                rewrite_fd(fd, stats.model_dump_json(indent=2).encode("utf-8"))
        except LockTimeoutError as exc:
            LOG.debug("Skipping access statistics update: %s", exc)
            return False
        except OSError as exc:
            LOG.warning("Failed to update access statistics %s: %s", self.path, exc)
            return False
        return True

    def load(self) -> AccessStats:
        """Return the current statistics, empty when none were recorded."""
        try:
            data = self.path.read_bytes()
        except OSError:
            return AccessStats()
        return _parse(data)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)

# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Persisted description of the active share.

The on-disk document has gone through two layouts. The first one described a
single shared path through flat ``path``/``share_type`` keys; the current one
carries an ``items`` list and mirrors the single-item keys when exactly one
item is shared so that older readers keep working. Documents are normalized
once, in :func:`migrate_document`, and the rest of the code only ever sees
:class:`ShareState`.
"""

import contextlib
import json
import logging
import os
import posixpath
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import ConfigPaths
from .exceptions import StateLoadError
from .locking import exclusive_lock

LOG = logging.getLogger(__name__)

STATE_VERSION = 2


class ShareMode(str, Enum):
    """Access mode of a share."""

    PROTECTED = "protected"
    PUBLIC = "public"


class ShareType(str, Enum):
    """Kind of filesystem object backing a share item."""

    FILE = "file"
    DIR = "dir"


class ShareItem(BaseModel):
    """One shared filesystem root and its display name."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="Absolute path of the shared file or directory")
    name: str = Field(min_length=1, description="Display name (base name of path)")
    share_type: ShareType
    size: int = Field(default=0, ge=0, description="Size in bytes, 0 for directories")

    @property
    def is_dir(self) -> bool:
        return self.share_type == ShareType.DIR


class Credentials(BaseModel):
    """HTTP Basic Auth pair of a protected share."""

    model_config = ConfigDict(frozen=True)

    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class AccessRecord(BaseModel):
    """One served request."""

    time: datetime
    path: str
    status_code: int
    bytes_sent: int = 0
    remote_addr: str = ""


class ShareState(BaseModel):
    """Aggregate root for everything known about the active share."""

    share_id: str
    port: int = Field(ge=1, le=65535)
    items: List[ShareItem] = Field(default_factory=list)
    credentials: Optional[Credentials] = None
    server_pid: int = 0
    tunnel_pid: int = 0
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    public_url: str = ""

    @field_validator("items")
    @classmethod
    def validate_unique_names(cls, items: List[ShareItem]) -> List[ShareItem]:
        """Reject item lists in which two items share a display name."""
        seen: Dict[str, str] = {}
        for item in items:
            if item.name in seen:
                raise ValueError(
                    f"duplicate item name '{item.name}' ({seen[item.name]}, {item.path})"
                )
            seen[item.name] = item.path
        return items

    @property
    def mode(self) -> ShareMode:
        return ShareMode.PUBLIC if self.credentials is None else ShareMode.PROTECTED

    @property
    def is_multi(self) -> bool:
        return len(self.items) > 1

    @property
    def item_paths(self) -> List[str]:
        return [item.path for item in self.items]

    def item_names(self) -> List[str]:
        return [item.name for item in self.items]

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the current on-disk layout, mirroring legacy keys."""
        document: Dict[str, Any] = {
            "version": STATE_VERSION,
            "share_id": self.share_id,
            "mode": self.mode.value,
            "port": self.port,
            "items": [item.model_dump(mode="json") for item in self.items],
            "is_multi": self.is_multi,
            "server_pid": self.server_pid,
            "tunnel_pid": self.tunnel_pid,
            "start_time": self.start_time.isoformat(),
            "public_url": self.public_url,
        }
        if self.credentials is not None:
            document["username"] = self.credentials.username
            document["password"] = self.credentials.password
        if len(self.items) == 1:
            document["path"] = self.items[0].path
            document["share_type"] = self.items[0].share_type.value
        return document


def _legacy_item(path: str, share_type: Optional[str]) -> Dict[str, Any]:
    if not share_type:
        share_type = ShareType.DIR.value if os.path.isdir(path) else ShareType.FILE.value
    name = posixpath.basename(path.rstrip("/")) or path
    return {"path": path, "name": name, "share_type": share_type, "size": 0}


def migrate_document(document: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize any known on-disk layout into ShareState fields.

    Handles the single-path layout (no ``items``), the mirrored layout written
    by every later version, flat credentials and the access counters that
    used to live in the state file before they moved to ``stats.json``.

    Raises StateLoadError when the mode and the credentials disagree.
    """
    if not isinstance(document, dict):
        raise StateLoadError("state document is not a JSON object")
    doc = dict(document)
    doc.pop("version", None)

    legacy_path = doc.pop("path", None)
    legacy_type = doc.pop("share_type", None)
    doc.pop("is_multi", None)
    if not doc.get("items") and legacy_path:
        doc["items"] = [_legacy_item(legacy_path, legacy_type)]
    doc.setdefault("items", [])

    username = doc.pop("username", None) or ""
    password = doc.pop("password", None) or ""
    mode = doc.pop("mode", None)
    if not mode:
        mode = ShareMode.PROTECTED.value if username and password else ShareMode.PUBLIC.value
    if mode == ShareMode.PROTECTED.value:
        if not (username and password):
            raise StateLoadError("protected share is missing its credentials")
        doc["credentials"] = {"username": username, "password": password}
    elif mode == ShareMode.PUBLIC.value:
        doc["credentials"] = None
    else:
        raise StateLoadError(f"unknown share mode: {mode}")

    for key in ("request_count", "last_access", "recent_access"):
        doc.pop(key, None)
    return doc


class StateStore:
    """Load/save contract for the persisted share state.

    A single instance is created by the controller and handed to whatever
    needs the state; there is no module-level state.
    """

    def __init__(self, paths: ConfigPaths, lock_retries: int = 50, lock_interval: float = 0.1):
        self.paths = paths
        self.lock_retries = lock_retries
        self.lock_interval = lock_interval

    @property
    def path(self):
        return self.paths.state

    def load(self) -> Optional[ShareState]:
        """Return the persisted state, or None when there is no active share.

        An unreadable file is treated as no share. A file that is present but
        does not parse raises StateLoadError: it may describe a share whose
        processes are still running.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            LOG.warning("Cannot read state file %s: %s", self.path, exc)
            return None
        if not raw.strip():
            return None
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StateLoadError(f"invalid state file {self.path}: {exc}")
        try:
            return ShareState.model_validate(migrate_document(document))
        except ValidationError as exc:
            raise StateLoadError(f"invalid state file {self.path}: {exc}")

    def save(self, state: ShareState) -> None:
        """Atomically replace the state file with ``state``."""
        self.paths.ensure()
        data = json.dumps(state.to_document(), indent=2)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(str(tmp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, self.path)

    def clear(self) -> None:
        """Remove the state file if present."""
        self.path.unlink(missing_ok=True)

    @contextlib.contextmanager
    def transaction(self) -> Iterator["StateStore"]:
        """Serialize a load-modify-save sequence against other controllers."""
        self.paths.ensure()
        with exclusive_lock(self.paths.state_lock, self.lock_retries, self.lock_interval):
            yield self

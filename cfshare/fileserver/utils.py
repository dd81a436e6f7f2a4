# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Helpers shared by the file server and the controller."""

import base64
import binascii
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List
from urllib.parse import quote

LOG = logging.getLogger(__name__)


def encode_paths(paths: List[str]) -> str:
    """Encode a list of paths into one argv-safe token."""
    payload = json.dumps(list(paths)).encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("ascii")


def decode_paths(token: str) -> List[str]:
    """Decode a token produced by :func:`encode_paths`.

    Raises ValueError when the token is not a base64-encoded JSON array of
    strings.
    """
    try:
        payload = base64.urlsafe_b64decode(token.encode("ascii"))
        paths = json.loads(payload.decode("utf-8"))
    except (binascii.Error, UnicodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"invalid paths token: {exc}")
    if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
        raise ValueError("invalid paths token: expected a list of strings")
    return paths


def content_disposition(filename: str) -> str:
    """Build an ``attachment`` Content-Disposition value for ``filename``."""
    ascii_name = filename.encode("ascii", "replace").decode("ascii")
    fallback = ascii_name.replace("\\", "\\\\").replace('"', '\\"')
    value = f'attachment; filename="{fallback}"'
    if ascii_name != filename:
        value += f"; filename*=UTF-8''{quote(filename, safe='')}"
    return value


def format_size(size: int) -> str:
    """Human readable size using binary units."""
    for unit, factor in (("GB", 1024**3), ("MB", 1024**2), ("KB", 1024)):
        if size >= factor:
            return f"{size / factor:.2f} {unit}"
    return f"{size} B"


def append_access_log(path: Path, entry: Dict[str, Any]) -> None:
    """Append one JSON line to the access log. Failures are only logged."""
    line = json.dumps(entry, ensure_ascii=False) + "\n"
    try:
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            f.write(line)
    except OSError as exc:
        LOG.warning("Failed to append to access log %s: %s", path, exc)

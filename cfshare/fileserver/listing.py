# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Directory listings shared by the virtual root and real directories."""

import html
import os
import posixpath
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

from .utils import format_size


@dataclass(frozen=True)
class ListingEntry:
    """One row of a directory listing."""

    name: str
    path: str
    is_dir: bool
    size: int
    mtime: datetime


@dataclass(frozen=True)
class DirectoryListing:
    """A listing ready to be rendered, entries already sorted."""

    path: str
    parent: Optional[str]
    entries: tuple


def sort_entries(entries: Iterable[ListingEntry]) -> List[ListingEntry]:
    """Directories first, then files, each group ordered by name."""
    return sorted(entries, key=lambda e: (not e.is_dir, e.name))


def parent_url(url_path: str) -> Optional[str]:
    """Return the parent listing URL of ``url_path``, None for the root."""
    stripped = url_path.rstrip("/")
    if not stripped:
        return None
    parent = posixpath.dirname(stripped)
    if parent in ("", "/"):
        return "/"
    return parent + "/"


def make_listing(url_path: str, entries: Iterable[ListingEntry]) -> DirectoryListing:
    if not url_path.endswith("/"):
        url_path += "/"
    return DirectoryListing(
        path=url_path, parent=parent_url(url_path), entries=tuple(sort_entries(entries))
    )


def scan_directory(fs_path: str, url_path: str) -> DirectoryListing:
    """List ``fs_path`` with entry links placed under ``url_path``.

    Entries whose metadata cannot be read are skipped.
    """
    base = url_path.rstrip("/")
    entries = []
    with os.scandir(fs_path) as it:
        for entry in it:
            try:
                is_dir = entry.is_dir()
                st = entry.stat()
            except OSError:
                continue
            link = f"{base}/{entry.name}" + ("/" if is_dir else "")
            entries.append(
                ListingEntry(
                    name=entry.name,
                    path=link,
                    is_dir=is_dir,
                    size=0 if is_dir else st.st_size,
                    mtime=datetime.fromtimestamp(st.st_mtime),
                )
            )
    return make_listing(url_path, entries)


def listing_to_dict(listing: DirectoryListing) -> Dict[str, Any]:
    return {
        "path": listing.path,
        "parent": listing.parent,
        "entries": [
            {
                "name": e.name,
                "path": e.path,
                "is_dir": e.is_dir,
                "size": e.size,
                "mtime": e.mtime.isoformat(),
            }
            for e in listing.entries
        ],
    }


def render_html(listing: DirectoryListing) -> str:
    """Plain HTML table for browsers."""
    title = html.escape(listing.path)
    rows = []
    if listing.parent is not None:
        rows.append(f'<tr><td colspan="3"><a href="{quote(listing.parent)}">../</a></td></tr>')
    for e in listing.entries:
        label = html.escape(e.name + ("/" if e.is_dir else ""))
        size = "-" if e.is_dir else format_size(e.size)
        rows.append(
            f'<tr><td><a href="{quote(e.path)}">{label}</a></td>'
            f"<td>{size}</td><td>{e.mtime:%Y-%m-%d %H:%M}</td></tr>"
        )
    if not listing.entries:
        rows.append('<tr><td colspan="3">(empty directory)</td></tr>')
    body = "\n".join(rows)
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n"
        '<meta charset="utf-8">\n'
        f"<title>Index of {title}</title>\n</head>\n<body>\n"
        f"<h1>Index of {title}</h1>\n"
        "<table>\n<tr><th>Name</th><th>Size</th><th>Modified</th></tr>\n"
        f"{body}\n</table>\n</body>\n</html>\n"
    )

# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Flat name -> item index over the shared paths of one share."""

import os
import stat
from datetime import datetime
from types import MappingProxyType
from typing import Iterable, List, Optional, Tuple

from ..exceptions import NameConflictError, PathNotFoundError, ShareItemError
from ..state import ShareItem, ShareType
from .listing import DirectoryListing, ListingEntry, make_listing


def build_share_item(path: str) -> ShareItem:
    """Stat ``path`` and describe it as a ShareItem.

    Raises PathNotFoundError when the path does not exist.
    """
    abs_path = os.path.abspath(os.path.expanduser(path))
    try:
        st = os.stat(abs_path)
    except OSError:
        raise PathNotFoundError(path)
    name = os.path.basename(abs_path) or abs_path
    if stat.S_ISDIR(st.st_mode):
        return ShareItem(path=abs_path, name=name, share_type=ShareType.DIR, size=0)
    return ShareItem(path=abs_path, name=name, share_type=ShareType.FILE, size=st.st_size)


def build_share_items(paths: Iterable[str]) -> List[ShareItem]:
    return [build_share_item(p) for p in paths]


class VirtualNamespace:
    """Immutable index of the items of one share generation.

    A new instance is built whenever the item set changes; requests being
    served keep using the instance they started with.
    """

    def __init__(self, items: Iterable[ShareItem]):
        items = tuple(items)
        if not items:
            raise ShareItemError("a share needs at least one item")
        index = {}
        for item in items:
            existing = index.get(item.name)
            if existing is not None:
                raise NameConflictError(item.name, existing.path, item.path)
            index[item.name] = item
        self._items: Tuple[ShareItem, ...] = items
        self._index = MappingProxyType(index)

    @classmethod
    def from_paths(cls, paths: Iterable[str]) -> "VirtualNamespace":
        return cls(build_share_items(paths))

    @property
    def items(self) -> Tuple[ShareItem, ...]:
        return self._items

    @property
    def multi(self) -> bool:
        return len(self._items) > 1

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def lookup(self, name: str) -> Optional[ShareItem]:
        return self._index.get(name)

    def root_listing(self) -> DirectoryListing:
        """List every item; modification times are read now, not cached."""
        entries = []
        for item in self._items:
            try:
                mtime = datetime.fromtimestamp(os.stat(item.path).st_mtime)
            except OSError:
                mtime = datetime.now()
            entries.append(
                ListingEntry(
                    name=item.name,
                    path=f"/{item.name}" + ("/" if item.is_dir else ""),
                    is_dir=item.is_dir,
                    size=item.size,
                    mtime=mtime,
                )
            )
        return make_listing("/", entries)

# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Confinement of request paths to a shared directory."""

import os
import posixpath

from ..exceptions import ForbiddenError


def is_within(path: str, root: str) -> bool:
    """True when ``path`` is ``root`` or lies below it, segment-wise."""
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


class SecurityBoundary:
    """Resolve client paths below ``root`` and refuse anything outside it.

    The canonical form of the root is computed once; every call re-checks
    the requested path, including where its symlinks point to.
    """

    def __init__(self, root: str):
        self.root = os.path.normpath(os.path.abspath(root))
        self.real_root = os.path.realpath(self.root)

    def resolve(self, subpath: str) -> str:
        """Return the symlink-resolved filesystem path for ``subpath``.

        Raises ForbiddenError when the path climbs above the root lexically
        or resolves outside the root through a symlink. Whether the target
        exists is not revealed.
        """
        if "\x00" in subpath:
            raise ForbiddenError("invalid path")
        clean = posixpath.normpath(subpath.lstrip("/")) if subpath else "."
        if clean == ".":
            clean = ""
        if clean == ".." or clean.startswith("../"):
            raise ForbiddenError(f"path escapes shared root: {subpath}")

        candidate = os.path.normpath(os.path.join(self.root, clean)) if clean else self.root
        if not is_within(candidate, self.root):
            raise ForbiddenError(f"path escapes shared root: {subpath}")

        # Missing components are kept as-is by realpath.
        resolved = os.path.realpath(candidate)
        if not is_within(resolved, self.real_root):
            raise ForbiddenError(f"path resolves outside shared root: {subpath}")
        return resolved

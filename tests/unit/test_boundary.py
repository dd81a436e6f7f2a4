# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import os

import pytest

from cfshare.exceptions import ForbiddenError
from cfshare.fileserver.boundary import SecurityBoundary, is_within


@pytest.fixture
def root(tmp_path):
    shared = tmp_path / "shared"
    (shared / "sub").mkdir(parents=True)
    (shared / "sub" / "file.txt").write_text("inside")
    (tmp_path / "secret.txt").write_text("outside")
    return shared


def test_is_within_is_segment_wise():
    assert is_within("/srv/share", "/srv/share")
    assert is_within("/srv/share/a", "/srv/share")
    assert not is_within("/srv/shared", "/srv/share")
    assert not is_within("/srv", "/srv/share")


def test_resolve_root(root):
    boundary = SecurityBoundary(str(root))
    assert boundary.resolve("") == os.path.realpath(root)
    assert boundary.resolve("/") == os.path.realpath(root)
    assert boundary.resolve(".") == os.path.realpath(root)


def test_resolve_nested_file(root):
    boundary = SecurityBoundary(str(root))
    assert boundary.resolve("sub/file.txt") == os.path.realpath(root / "sub" / "file.txt")


def test_resolve_inner_parent_segments(root):
    boundary = SecurityBoundary(str(root))
    assert boundary.resolve("sub/../sub/file.txt") == os.path.realpath(root / "sub" / "file.txt")


@pytest.mark.parametrize(
    "subpath", ["..", "../secret.txt", "sub/../../secret.txt", "/../secret.txt"]
)
def test_resolve_rejects_parent_escape(root, subpath):
    boundary = SecurityBoundary(str(root))
    with pytest.raises(ForbiddenError):
        boundary.resolve(subpath)


def test_resolve_rejects_nul(root):
    with pytest.raises(ForbiddenError):
        SecurityBoundary(str(root)).resolve("sub\x00/file.txt")


def test_resolve_rejects_symlink_escape(root, tmp_path):
    os.symlink(tmp_path / "secret.txt", root / "link.txt")
    os.symlink(tmp_path, root / "linkdir")
    boundary = SecurityBoundary(str(root))
    with pytest.raises(ForbiddenError):
        boundary.resolve("link.txt")
    with pytest.raises(ForbiddenError):
        boundary.resolve("linkdir/secret.txt")


def test_resolve_rejects_escape_to_missing_path_the_same_way(root, tmp_path):
    os.symlink(tmp_path / "does-not-exist", root / "dangling")
    boundary = SecurityBoundary(str(root))
    with pytest.raises(ForbiddenError):
        boundary.resolve("dangling")


def test_resolve_allows_internal_symlink(root):
    os.symlink(root / "sub" / "file.txt", root / "alias.txt")
    boundary = SecurityBoundary(str(root))
    assert boundary.resolve("alias.txt") == os.path.realpath(root / "sub" / "file.txt")


def test_resolve_missing_path_inside_root(root):
    boundary = SecurityBoundary(str(root))
    expected = os.path.join(os.path.realpath(root), "nope", "missing")
    assert boundary.resolve("nope/missing") == expected


def test_root_behind_symlink(tmp_path, root):
    os.symlink(root, tmp_path / "alias")
    boundary = SecurityBoundary(str(tmp_path / "alias"))
    assert boundary.resolve("sub/file.txt") == os.path.realpath(root / "sub" / "file.txt")

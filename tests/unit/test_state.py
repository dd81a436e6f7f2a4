# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import json
import os
import stat
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from cfshare.config import ConfigPaths
from cfshare.exceptions import StateLoadError
from cfshare.state import (
    Credentials,
    ShareItem,
    ShareMode,
    ShareState,
    ShareType,
    StateStore,
    migrate_document,
)


@pytest.fixture
def store(tmp_path):
    return StateStore(ConfigPaths(tmp_path / "home"))


def _item(name, share_type=ShareType.FILE, parent="/srv"):
    return ShareItem(path=f"{parent}/{name}", name=name, share_type=share_type, size=1)


def _state(items, credentials=None):
    return ShareState(
        share_id="1700000000",
        port=8787,
        items=items,
        credentials=credentials,
        server_pid=100,
        tunnel_pid=200,
        start_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        public_url="https://files.example.com",
    )


def test_load_missing(store):
    assert store.load() is None


def test_save_and_load(store):
    state = _state(
        [_item("a.txt"), _item("docs", ShareType.DIR)],
        Credentials(username="dl", password="secret"),
    )
    store.save(state)
    loaded = store.load()
    assert loaded == state
    assert loaded.mode == ShareMode.PROTECTED
    assert loaded.is_multi
    assert stat.S_IMODE(os.stat(store.path).st_mode) == 0o600


def test_single_item_mirrors_legacy_keys(store):
    store.save(_state([_item("a.txt")]))
    document = json.loads(store.path.read_text())
    assert document["path"] == "/srv/a.txt"
    assert document["share_type"] == "file"
    assert document["mode"] == "public"
    assert document["is_multi"] is False
    assert "username" not in document


def test_multi_item_does_not_mirror(store):
    store.save(_state([_item("a.txt"), _item("b.txt")]))
    document = json.loads(store.path.read_text())
    assert "path" not in document
    assert document["is_multi"] is True


def test_load_legacy_single_path_document(store, tmp_path):
    shared = tmp_path / "shared"
    shared.mkdir()
    store.paths.ensure()
    store.path.write_text(
        json.dumps(
            {
                "share_id": "42",
                "mode": "protected",
                "port": 8080,
                "path": str(shared),
                "username": "dl",
                "password": "pw",
                "server_pid": 11,
                "tunnel_pid": 12,
                "start_time": "2024-01-01T00:00:00+00:00",
                "public_url": "https://x.example.com",
                "request_count": 3,
                "last_access": "2024-01-01T00:01:00+00:00",
                "recent_access": [],
            }
        )
    )
    state = store.load()
    assert state.item_names() == ["shared"]
    assert state.items[0].share_type == ShareType.DIR
    assert state.credentials == Credentials(username="dl", password="pw")


def test_load_malformed_json_is_an_error(store):
    store.paths.ensure()
    store.path.write_text("{not json")
    with pytest.raises(StateLoadError):
        store.load()


def test_load_empty_file(store):
    store.paths.ensure()
    store.path.write_text("")
    assert store.load() is None


def test_load_invalid_document_is_an_error(store):
    store.paths.ensure()
    store.path.write_text(json.dumps({"share_id": "1", "port": "not a port", "mode": "public"}))
    with pytest.raises(StateLoadError):
        store.load()


def test_protected_without_credentials():
    with pytest.raises(StateLoadError):
        migrate_document({"share_id": "1", "port": 1, "mode": "protected", "username": "dl"})


def test_unknown_mode():
    with pytest.raises(StateLoadError):
        migrate_document({"share_id": "1", "port": 1, "mode": "secret"})


def test_public_mode_ignores_stray_credentials():
    doc = migrate_document(
        {"share_id": "1", "port": 1, "mode": "public", "username": "dl", "password": "pw"}
    )
    assert doc["credentials"] is None


def test_mode_inferred_from_credentials():
    doc = migrate_document({"share_id": "1", "port": 1, "username": "dl", "password": "pw"})
    assert doc["credentials"] == {"username": "dl", "password": "pw"}


def test_duplicate_names_rejected():
    with pytest.raises(ValidationError):
        _state([_item("a.txt", parent="/one"), _item("a.txt", parent="/two")])


def test_clear(store):
    store.save(_state([_item("a.txt")]))
    store.clear()
    assert store.load() is None
    store.clear()


def test_transaction_creates_lock_file(store):
    with store.transaction():
        assert store.paths.state_lock.exists()

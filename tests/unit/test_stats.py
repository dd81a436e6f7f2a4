# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from cfshare.locking import exclusive_lock
from cfshare.state import AccessRecord
from cfshare.stats import AccessStats, AccessStatsStore

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _record(i):
    return AccessRecord(
        time=START + timedelta(seconds=i),
        path=f"/file{i}",
        status_code=200,
        bytes_sent=i,
        remote_addr="127.0.0.1",
    )


def test_empty(tmp_path):
    stats = AccessStatsStore(tmp_path / "stats.json").load()
    assert stats == AccessStats()


def test_record_keeps_the_ten_most_recent(tmp_path):
    store = AccessStatsStore(tmp_path / "stats.json")
    for i in range(15):
        assert store.record(_record(i))
    stats = store.load()
    assert stats.request_count == 15
    assert stats.last_access == START + timedelta(seconds=14)
    assert [r.path for r in stats.recent_access] == [f"/file{i}" for i in range(5, 15)]


def test_custom_limit(tmp_path):
    store = AccessStatsStore(tmp_path / "stats.json", limit=2)
    for i in range(3):
        store.record(_record(i))
    assert len(store.load().recent_access) == 2


def test_record_skipped_when_locked(tmp_path):
    path = tmp_path / "stats.json"
    store = AccessStatsStore(path, lock_retries=2, lock_interval=0)
    with exclusive_lock(path):
        assert store.record(_record(0)) is False
    assert store.load().request_count == 0
    assert store.record(_record(1)) is True
    assert store.load().request_count == 1


def test_record_skipped_on_write_error(tmp_path):
    store = AccessStatsStore(tmp_path / "stats.json")
    with patch("cfshare.stats.rewrite_fd", side_effect=OSError("disk full")):
        assert store.record(_record(0)) is False


def test_unreadable_stats_are_reset(tmp_path):
    path = tmp_path / "stats.json"
    path.write_text("{broken")
    store = AccessStatsStore(path)
    assert store.load().request_count == 0
    assert store.record(_record(0))
    assert store.load().request_count == 1


def test_clear(tmp_path):
    store = AccessStatsStore(tmp_path / "stats.json")
    store.record(_record(0))
    store.clear()
    assert store.load().request_count == 0

# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import json

import pytest

from cfshare.fileserver.utils import (
    append_access_log,
    content_disposition,
    decode_paths,
    encode_paths,
    format_size,
)


def test_paths_token_is_argv_safe():
    paths = ["/tmp/with space", "/tmp/ünïcode", "/tmp/--port"]
    token = encode_paths(paths)
    assert " " not in token
    assert not token.startswith("-")
    assert decode_paths(token) == paths


@pytest.mark.parametrize("token", ["not base64!", "bm90IGpzb24=", "eyJhIjogMX0="])
def test_decode_paths_rejects_garbage(token):
    with pytest.raises(ValueError):
        decode_paths(token)


def test_content_disposition_ascii():
    assert content_disposition("report.pdf") == 'attachment; filename="report.pdf"'


def test_content_disposition_escapes_quotes():
    assert content_disposition('a"b.txt') == 'attachment; filename="a\\"b.txt"'


def test_content_disposition_non_ascii():
    value = content_disposition("résumé.txt")
    assert value.startswith('attachment; filename="r?sum?.txt"')
    assert "filename*=UTF-8''r%C3%A9sum%C3%A9.txt" in value


@pytest.mark.parametrize(
    "size,expected",
    [
        (0, "0 B"),
        (1023, "1023 B"),
        (1024, "1.00 KB"),
        (5 * 1024**2, "5.00 MB"),
        (3 * 1024**3, "3.00 GB"),
    ],
)
def test_format_size(size, expected):
    assert format_size(size) == expected


def test_append_access_log(tmp_path):
    log = tmp_path / "access.log"
    append_access_log(log, {"path": "/a", "status": 200})
    append_access_log(log, {"path": "/b", "status": 404})
    lines = log.read_text().splitlines()
    assert [json.loads(line)["path"] for line in lines] == ["/a", "/b"]


def test_append_access_log_failure_is_swallowed(tmp_path):
    append_access_log(tmp_path / "missing" / "access.log", {"path": "/a"})

# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(process)d %(levelname)s %(name)s %(message)s"

_console_handler: logging.Handler | None = None


def setup_root_logging(log_file: Path | None = None) -> None:
    """Configure the root logger of the CLI.

    Warnings go to stderr; when ``log_file`` can be opened it receives all
    debug output as well.
    """
    global _console_handler
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    _console_handler = logging.StreamHandler(sys.stderr)
    _console_handler.setLevel(logging.WARNING)
    _console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    root.addHandler(_console_handler)

    if log_file is not None:
        try:
            log_file.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            root.warning("Cannot write log file %s: %s", log_file, e)
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(file_handler)


def set_verbose() -> None:
    """Send debug output to stderr too."""
    if _console_handler is not None:
        _console_handler.setLevel(logging.DEBUG)

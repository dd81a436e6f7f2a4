# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Exceptions raised by cfshare components."""


class CfshareError(Exception):
    """Base class for all cfshare errors."""


class PathNotFoundError(CfshareError):
    """Raised when a path given for sharing does not exist."""

    def __init__(self, path: str):
        super().__init__(f"path does not exist: {path}")
        self.path = path


class NameConflictError(CfshareError):
    """Raised when two shared paths map to the same display name."""

    def __init__(self, name: str, first: str, second: str):
        super().__init__(
            f"name conflict: '{name}' is used by both {first} and {second}, "
            "rename one of them and try again"
        )
        self.name = name
        self.first = first
        self.second = second


class ForbiddenError(CfshareError):
    """Raised when a request resolves outside of its shared root."""


class RouteNotFoundError(CfshareError):
    """Raised when a request does not match any shared item."""


class ProcessSpawnError(CfshareError):
    """Raised when a background process cannot be started."""


class ProcessDiedImmediatelyError(ProcessSpawnError):
    """Raised when a freshly spawned process exits during the settle delay."""

    def __init__(self, pid: int, log_path):
        super().__init__(f"process {pid} died immediately, check {log_path} for details")
        self.pid = pid
        self.log_path = log_path


class LockTimeoutError(CfshareError):
    """Raised when an advisory file lock cannot be acquired in time."""


class StateLoadError(CfshareError):
    """Raised when the persisted state document is present but malformed."""


class TunnelError(CfshareError):
    """Raised when the tunnel client cannot be used."""


class NoActiveShareError(CfshareError):
    """Raised when an operation requires a running share and there is none."""

    def __init__(self, message: str = "no active share, start one with 'cfshare share <path>...'"):
        super().__init__(message)


class ShareItemError(CfshareError):
    """Raised when an item mutation would leave the share in an invalid state."""

# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Fileserver package serving the items of a share over HTTP.

Exposes the WSGI application run by the detached server process together
with the namespace and path confinement it is built on.
"""

from .boundary import SecurityBoundary
from .namespace import VirtualNamespace, build_share_items
from .server import ShareApplication

__all__ = [
    "SecurityBoundary",
    "ShareApplication",
    "VirtualNamespace",
    "build_share_items",
]

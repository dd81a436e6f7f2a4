# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Share local files and directories through a tunnelled HTTP endpoint."""

__version__ = "0.3.0"

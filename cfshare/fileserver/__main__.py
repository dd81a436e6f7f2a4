# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
import sys

from cfshare.fileserver.server import main

sys.exit(main())

# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import functools
import logging

import click

from cfshare.exceptions import CfshareError

VALUE_FORMAT = "value"
JSON_FORMAT = "json"
JSON_INDENT_FORMAT = "json-indent"
TABLE_FORMAT = "table"

click_option_format = click.option(
    "-f",
    "--format",
    default=VALUE_FORMAT,
    type=click.Choice([VALUE_FORMAT, TABLE_FORMAT, JSON_FORMAT, JSON_INDENT_FORMAT]),
    help="Output format",
)

logger = logging.getLogger(__name__)


def handle_errors(func):
    """Turn cfshare errors into a message on stderr and exit status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CfshareError as e:
            logger.debug("Command failed", exc_info=True)
            raise click.ClickException(str(e))

    return wrapper

# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0

import click

from cfshare import __version__
from cfshare.cli.commands import (
    add,
    display_status,
    get_controller,
    logs,
    remove,
    setup,
    share,
    status,
    stop,
)
from cfshare.cli.common import VALUE_FORMAT, handle_errors
from cfshare.cli.log import set_verbose, setup_root_logging
from cfshare.config import CONF, ConfigPaths, default_config_files

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


@click.group("cfshare", context_settings=CONTEXT_SETTINGS, invoke_without_command=True)
@click.option("-v", "--verbose", is_flag=True, help="Increase output verbosity")
@click.version_option(__version__)
@click.pass_context
@handle_errors
def cli(ctx: click.Context, verbose: bool):
    """Share files and directories through a cloudflared tunnel."""
    if verbose:
        set_verbose()
    if ctx.invoked_subcommand is None:
        display_status(get_controller().status(), VALUE_FORMAT)


def main():
    """Register commands and run the CLI."""
    CONF([], project="cfshare", version=__version__, default_config_files=default_config_files())
    setup_root_logging(ConfigPaths().cli_log)
    cli.add_command(share)
    cli.add_command(status)
    cli.add_command(add)
    cli.add_command(remove)
    cli.add_command(remove, name="rm")
    cli.add_command(stop)
    cli.add_command(setup)
    cli.add_command(logs)

    cli()


if __name__ == "__main__":
    main()

"""
shh CLI: project secrets from the command line.

The main Click group is defined here and every command family is
registered from its own module.

Entry point: shh.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import CONFIG_HOME, __version__
from ._common import AppContext, ShhGroup


@click.group(cls=ShhGroup)
@click.version_option(version=__version__, prog_name="shh")
@click.option(
    "-n",
    "--non-interactive",
    is_flag=True,
    help="Non-interactive mode. Fail if shh would prompt for the password.",
)
@click.option("--home", default=CONFIG_HOME, type=click.Path(), help="Personal config directory.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging on stderr.")
@click.pass_context
def main(ctx: click.Context, non_interactive: bool, home: str, verbose: bool):
    """shh: secrets for your project, safe to commit.

    Secrets live encrypted in a .shh file; each user decrypts only what
    they were allowed, with their own password-protected key.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )
    ctx.obj = AppContext(home=home, non_interactive=non_interactive)


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .keys import register_key_commands
from .secrets import register_secret_commands
from .users import register_user_commands
from .daemon import register_daemon_commands

register_key_commands(main)
register_secret_commands(main)
register_user_commands(main)
register_daemon_commands(main)

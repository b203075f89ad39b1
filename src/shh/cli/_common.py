"""Shared utilities for all CLI command modules.

Provides the Rich console, the error-reporting command group and the
per-invocation context object handed to every command.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape

from .. import CONFIG_HOME
from ..errors import AuthError, ShhError, UsageError
from ..keys import KeyRing
from ..operations import Project
from ..password import PasswordSource, Prompter, prompt_password

console = Console()
err_console = Console(stderr=True)


def report_error(message: str) -> None:
    """Print a one-line diagnostic on stderr, apart from secret output."""
    err_console.print(f"[bold red]error:[/] {escape(message)}")


class ShhGroup(click.Group):
    """Click group that turns :class:`ShhError` into a diagnostic and exit 1.

    Our own :class:`UsageError` becomes a click usage error so the
    command summary is printed as well.
    """

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except UsageError as exc:
            raise click.UsageError(str(exc), ctx) from exc
        except ShhError as exc:
            logging.getLogger("shh.cli").debug("Command failed", exc_info=True)
            report_error(str(exc))
            ctx.exit(1)


class AppContext:
    """State shared by every command in one invocation.

    Args:
        home: Personal configuration directory.
        non_interactive: Fail rather than prompt for the password.
    """

    def __init__(self, home: Optional[str] = None, non_interactive: bool = False) -> None:
        self.keyring = KeyRing(Path(home or CONFIG_HOME))
        self.non_interactive = non_interactive

    @property
    def prompter(self) -> Prompter:
        if self.non_interactive:
            return _refuse_prompt
        return prompt_password

    def project(self) -> Project:
        """Open the project found from the working directory upwards."""
        config = self.keyring.load_config()
        passwords = PasswordSource(config.port, self.non_interactive)
        return Project.discover(self.keyring, passwords)


def _refuse_prompt(prompt: str) -> str:
    raise AuthError("non-interactive mode: refusing to prompt for the password")


pass_app = click.make_pass_decorator(AppContext)

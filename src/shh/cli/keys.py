"""Key and project setup commands: init, gen-keys, rotate, version."""

from __future__ import annotations

from pathlib import Path

import click
from rich.markup import escape

from .. import __version__
from ..errors import AuthError
from ..keys import DEFAULT_PORT
from ..operations import Project, init_project
from ..password import prompt_new_password, prompt_password
from ._common import AppContext, console, pass_app


def _backup_reminder(app: AppContext, with_config: bool) -> None:
    home = app.keyring.home
    if with_config:
        console.print(f"> generated {escape(str(home / 'config'))}")
    console.print(f"> generated {escape(str(app.keyring.private_key_file))}")
    console.print(f"> generated {escape(str(app.keyring.public_key_file))}")
    console.print(">")
    console.print(f"> be sure to back up your {escape(str(app.keyring.private_key_file))} and")
    console.print("> remember your password, or you may lose access to your")
    console.print("> secrets!")


def register_key_commands(main: click.Group) -> None:
    """Register init, gen-keys, rotate and version."""

    @main.command("init")
    @pass_app
    def init_cmd(app: AppContext):
        """Create .shh in the current directory with you as its first user."""
        path = init_project(Path.cwd(), app.keyring)
        console.print(f"[green]Initialized[/] {escape(str(path))}")

    @main.command("gen-keys")
    @click.option("--username", prompt="username", help="Your name in every project (usually email).")
    @click.option("--port", default=DEFAULT_PORT, show_default=True, help="Port for `shh serve`.")
    @pass_app
    def gen_keys(app: AppContext, username: str, port: int):
        """Generate your personal key pair."""
        app.keyring.check_absent()
        if app.non_interactive:
            raise AuthError("gen-keys needs an interactive terminal")
        password = prompt_new_password("password")
        app.keyring.create(username, password, port)
        _backup_reminder(app, with_config=True)

    @main.command("rotate")
    @pass_app
    def rotate(app: AppContext):
        """Generate new keys (and password), rewrapping all your secrets."""
        if app.non_interactive:
            raise AuthError("rotate needs an interactive terminal")
        project = Project.discover(app.keyring)
        old_password = prompt_password("old password")
        new_password = prompt_new_password("new password")
        count = project.rotate(old_password, new_password)
        console.print(f"[green]Rotated keys[/], rewrapped {count} secret(s)")
        console.print("[dim]Run `shh login` again if a daemon is caching your old password.[/]")
        _backup_reminder(app, with_config=False)

    @main.command("version")
    def version():
        """Print the version."""
        click.echo(__version__)

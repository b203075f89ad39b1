"""User and access commands: allow, deny, add-user, rm-user, show."""

from __future__ import annotations

from typing import Optional

import click
from rich.markup import escape
from rich.table import Table

from .. import WILDCARD
from ..errors import UsageError
from ._common import AppContext, console, pass_app


def register_user_commands(main: click.Group) -> None:
    """Register allow, deny, add-user, rm-user and show."""

    @main.command("allow")
    @click.argument("username")
    @click.argument("name")
    @pass_app
    def allow(app: AppContext, username: str, name: str):
        """Allow USERNAME to read secret NAME (you must have it yourself)."""
        project = app.project()
        granted = project.allow(username, name)
        console.print(f"[green]Allowed[/] {escape(username)}: {escape(', '.join(granted))}")

    @main.command("deny")
    @click.argument("username")
    @click.argument("name", default=WILDCARD)
    @pass_app
    def deny(app: AppContext, username: str, name: str):
        """Deny USERNAME access to NAME (default: every secret)."""
        project = app.project()
        revoked = project.deny(username, name)
        console.print(f"[green]Denied[/] {escape(username)}: {len(revoked)} secret(s)")

    @main.command("add-user")
    @click.argument("username", required=False)
    @click.argument("public_key", required=False)
    @pass_app
    def add_user(app: AppContext, username: Optional[str], public_key: Optional[str]):
        """Add a user given their PEM public key (no arguments adds you)."""
        if (username is None) != (public_key is None):
            raise UsageError("expected `add-user [$user $pubkey]`")
        project = app.project()
        if project.add_user(username, public_key):
            console.print(f"[green]Added[/] {escape(username or 'you')}")

    @main.command("rm-user")
    @click.argument("username")
    @pass_app
    def rm_user(app: AppContext, username: str):
        """Remove a user and every secret they hold."""
        project = app.project()
        project.remove_user(username)
        console.print(f"[green]Removed[/] {escape(username)}")

    @main.command("show")
    @click.argument("username", required=False)
    @pass_app
    def show(app: AppContext, username: Optional[str]):
        """Show users and the secrets they can access."""
        project = app.project()
        summary = project.show(username)

        if username is None:
            console.print(
                f"[bold]{summary['user_count']}[/] users, "
                f"[bold]{summary['secret_count']}[/] secrets"
            )

        table = Table(show_lines=True)
        table.add_column("User", style="cyan")
        table.add_column("Count", justify="right")
        table.add_column("Secrets")
        for user, names in summary["users"].items():
            table.add_row(escape(user), str(len(names)), escape("\n".join(names)) or "[dim]none[/]")
        console.print(table)

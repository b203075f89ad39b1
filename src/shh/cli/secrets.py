"""Secret commands: get, set, del, edit."""

from __future__ import annotations

import click
from rich.markup import escape

from ..editor import require_editor
from ._common import AppContext, console, pass_app


def register_secret_commands(main: click.Group) -> None:
    """Register get, set, del and edit."""

    @main.command("get")
    @click.argument("name")
    @pass_app
    def get(app: AppContext, name: str):
        """Print a secret ('*' prints every secret you hold)."""
        project = app.project()
        for value in project.get(name).values():
            click.echo(value, nl=False)

    @main.command("set")
    @click.argument("name")
    @click.argument("value")
    @pass_app
    def set_(app: AppContext, name: str, value: str):
        """Set a secret for you and everyone who already has it."""
        project = app.project()
        users = project.set(name, value.encode("utf-8"))
        console.print(f"[green]Set[/] {escape(name)} for {len(users)} user(s)")

    @main.command("del")
    @click.argument("name")
    @pass_app
    def delete(app: AppContext, name: str):
        """Delete your copy of a secret ('*' deletes all of yours)."""
        project = app.project()
        removed = project.delete(name)
        console.print(f"[green]Deleted[/] {len(removed)} secret(s)")

    @main.command("edit")
    @click.argument("name")
    @pass_app
    def edit(app: AppContext, name: str):
        """Edit a secret using $EDITOR."""
        require_editor()
        project = app.project()
        if project.edit(name):
            console.print(f"[green]Updated[/] {escape(name)}")
        else:
            console.print("[dim]No changes.[/]")

"""Password cache commands: serve, login."""

from __future__ import annotations

import os
import sys

import click

from ..daemon import DEFAULT_TTL, DaemonConfig, DaemonService, is_running
from ..operations import login as login_op
from ._common import AppContext, console, pass_app


def register_daemon_commands(main: click.Group) -> None:
    """Register serve and login."""

    @main.command("serve")
    @click.option("--ttl", default=DEFAULT_TTL, show_default=True, help="Seconds to keep the password.")
    @pass_app
    def serve(app: AppContext, ttl: float):
        """Start the daemon that keeps your password in memory.

        Listens on 127.0.0.1 at the port from your config. Runs in the
        foreground; Ctrl+C stops it.
        """
        config = app.keyring.load_config()
        if is_running(app.keyring.home):
            console.print("[yellow]Daemon is already running.[/]")
            sys.exit(0)

        daemon_config = DaemonConfig(home=app.keyring.home, port=config.port, ttl=ttl)
        svc = DaemonService(daemon_config)
        svc.start()

        console.print(f"\n  [green]Serving[/] on http://127.0.0.1:{svc.port}")
        console.print(f"  Log: {daemon_config.log_file}")
        console.print(f"  PID: {os.getpid()}")
        console.print("  [dim]Running in foreground (Ctrl+C to stop)[/]\n")
        svc.run_forever()

    @main.command("login")
    @pass_app
    def login(app: AppContext):
        """Cache your password in the daemon for the next hour."""
        if login_op(app.keyring, app.prompter):
            console.print("[green]Password cached.[/]")
        else:
            console.print("[dim]Password already cached.[/]")

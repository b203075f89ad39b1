"""Getting the user's password: from the daemon, or by asking."""

from __future__ import annotations

import logging
from typing import Callable, Optional

import click

from . import daemon
from .errors import AuthError, DaemonUnreachable, WrongPassword
from .keys import KeyPair, KeyRing

logger = logging.getLogger("shh.password")

DEFAULT_PROMPT = "password"
MAX_ATTEMPTS = 3

Prompter = Callable[[str], str]


def prompt_password(prompt: str = DEFAULT_PROMPT) -> str:
    """Ask for a password on the terminal without echo."""
    return click.prompt(prompt, hide_input=True, err=True)


def prompt_new_password(prompt: str = "new password") -> str:
    """Ask for a new password twice.

    Raises:
        AuthError: If the password is empty.
    """
    password = click.prompt(prompt, hide_input=True, confirmation_prompt=True, err=True)
    if not password:
        raise AuthError("password must not be empty")
    return password


class PasswordSource:
    """Resolves the acting user's password and unlocks their keys.

    Interactive mode asks the daemon first (extending its window) and
    falls back to a prompt, retrying a wrong password a few times.
    Non-interactive mode only asks the daemon and fails otherwise.

    Args:
        port: The user's daemon port, or None to never ask the daemon.
        non_interactive: Fail instead of prompting.
        prompter: Prompt function (tests swap this out).
    """

    def __init__(
        self,
        port: Optional[int],
        non_interactive: bool = False,
        prompter: Prompter = prompt_password,
    ) -> None:
        self.port = port
        self.non_interactive = non_interactive
        self.prompter = prompter

    def cached(self) -> Optional[str]:
        """Password held by the daemon, or None."""
        if self.port is None:
            return None
        try:
            password = daemon.fetch_password(self.port, reset_timer=True)
        except DaemonUnreachable:
            logger.debug("Daemon not reachable on port %d", self.port)
            return None
        return password or None

    def unlock(self, keyring: KeyRing, prompt: str = DEFAULT_PROMPT) -> KeyPair:
        """Return the unlocked key pair.

        Raises:
            AuthError: Non-interactive and the daemon has no password.
            WrongPassword: The password is wrong (after retries when
                interactive).
        """
        password = self.cached()
        if password is not None:
            try:
                return keyring.unlock(password)
            except WrongPassword:
                if self.non_interactive:
                    raise
                logger.warning("Cached password rejected, prompting instead")
        elif self.non_interactive:
            raise AuthError("no cached password; run `shh login` or drop -n")

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return keyring.unlock(self.prompter(prompt))
            except WrongPassword:
                if attempt == MAX_ATTEMPTS:
                    raise
                click.echo("wrong password, try again", err=True)
        raise WrongPassword("wrong password")

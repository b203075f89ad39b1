"""
Operation protocols over a project manifest.

Each mutating operation loads the manifest, resolves the secrets it
touches, unlocks the acting user's keys when it needs plaintext,
re-encrypts in memory, and persists once at the end. Any failure before
that final write leaves the file on disk as it was.

Fan-out rules:
    set     every current holder of the name, plus the acting user
    allow   the grantee only, from plaintext the acting user can read
    edit    every current holder of the name (skipped if unchanged)
    rotate  the acting user's own envelopes, rewrapped (ciphertext kept)
    del     removes the acting user's envelopes
    deny    removes another user's envelopes, no crypto at all
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from . import MANIFEST_NAME, WILDCARD, daemon
from . import manifest as manifest_io
from .access import resolve
from .crypto import content_hash, public_key_from_pem, rewrap, seal, unseal
from .editor import Editor, run_editor
from .errors import (
    AuthError,
    DaemonUnreachable,
    SecretNotFound,
    StorageError,
    UnknownUser,
    UsageError,
    WrongPassword,
)
from .keys import KeyPair, KeyRing, UserConfig
from .models import Manifest, Secret
from .password import MAX_ATTEMPTS, PasswordSource, Prompter, prompt_password

logger = logging.getLogger("shh.operations")


def _require_user(manifest: Manifest, username: str) -> None:
    if not manifest.has_user(username):
        raise UnknownUser(
            f"{username!r} is not a user in the project. try `shh add-user {username} $PUBKEY`"
        )


class Project:
    """One project manifest, operated on by the local user.

    Args:
        path: Path to the `.shh` manifest.
        keyring: The acting user's personal configuration.
        passwords: How to obtain the acting user's password.
        editor: Editor collaborator used by :meth:`edit`.
    """

    def __init__(
        self,
        path: Path,
        keyring: KeyRing,
        passwords: Optional[PasswordSource] = None,
        editor: Editor = run_editor,
    ) -> None:
        self.path = path
        self.keyring = keyring
        self.passwords = passwords
        self.editor = editor

    @classmethod
    def discover(
        cls,
        keyring: KeyRing,
        passwords: Optional[PasswordSource] = None,
        start: Optional[Path] = None,
        editor: Editor = run_editor,
    ) -> "Project":
        """Open the manifest found at or above ``start``."""
        return cls(manifest_io.find(start), keyring, passwords, editor)

    def load(self) -> Manifest:
        return manifest_io.load(self.path)

    def _persist(self, manifest: Manifest) -> None:
        manifest_io.persist(manifest, self.path)

    def _user(self) -> UserConfig:
        return self.keyring.load_config()

    def _unlock(self) -> KeyPair:
        if self.passwords is None:
            raise AuthError("no password source configured")
        return self.passwords.unlock(self.keyring)

    # -------------------------------------------------------------------
    # Secrets
    # -------------------------------------------------------------------

    def get(self, pattern: str) -> dict[str, bytes]:
        """Decrypt every secret matching ``pattern`` for the acting user.

        Raises:
            SecretNotFound: If a single name matches nothing the user holds.
        """
        user = self._user()
        manifest = self.load()
        matches = resolve(manifest, pattern, user.username)
        if not matches:
            if pattern != WILDCARD:
                raise SecretNotFound(f"you do not have access to {pattern}")
            return {}
        keys = self._unlock()
        return {name: unseal(secret, keys.private_key) for name, secret in sorted(matches.items())}

    def set(self, name: str, value: bytes) -> list[str]:
        """Encrypt ``value`` for every holder of ``name`` and the acting user.

        Returns:
            Usernames whose envelope was written.
        """
        if name == WILDCARD:
            raise UsageError(f"{WILDCARD!r} is not a valid secret name")
        user = self._user()
        manifest = self.load()
        _require_user(manifest, user.username)

        recipients = sorted(set(manifest.holders_of(name)) | {user.username})
        sealed: dict[str, Secret] = {}
        for username in recipients:
            sealed[username] = seal(value, public_key_from_pem(manifest.keys[username]))
        for username, secret in sealed.items():
            manifest.with_secret_added(username, name, secret)

        self._persist(manifest)
        logger.info("Set %s for %d user(s)", name, len(recipients))
        return recipients

    def delete(self, pattern: str) -> list[str]:
        """Remove the acting user's envelopes matching ``pattern``.

        Returns:
            The removed secret names.
        """
        user = self._user()
        manifest = self.load()
        names = sorted(resolve(manifest, pattern, user.username))
        manifest.with_secret_removed(user.username, names)
        self._persist(manifest)
        logger.info("Deleted %d secret(s) for %s", len(names), user.username)
        return names

    def edit(self, name: str) -> bool:
        """Edit one secret in the editor and re-encrypt it for all holders.

        Saving without changes writes nothing.

        Returns:
            True if the secret changed and was re-encrypted.

        Raises:
            UsageError: If ``name`` matches more than one secret.
            SecretNotFound: If the acting user cannot read ``name``.
        """
        user = self._user()
        manifest = self.load()
        matches = resolve(manifest, name, user.username)
        if len(matches) > 1:
            raise UsageError("multiple secrets found, cannot use *")
        if not matches:
            raise SecretNotFound(f"you do not have access to {name}")
        (key, secret), = matches.items()

        keys = self._unlock()
        plaintext = unseal(secret, keys.private_key)
        edited = self._edit_in_tempfile(plaintext)

        if content_hash(edited) == content_hash(plaintext):
            logger.info("No changes to %s", key)
            return False

        sealed = {
            username: seal(edited, public_key_from_pem(manifest.keys[username]))
            for username in manifest.holders_of(key)
        }
        for username, new_secret in sealed.items():
            manifest.with_secret_added(username, key, new_secret)
        self._persist(manifest)
        logger.info("Re-encrypted %s for %d user(s)", key, len(sealed))
        return True

    def _edit_in_tempfile(self, plaintext: bytes) -> bytes:
        fd, tmp_name = tempfile.mkstemp(prefix="shh")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(plaintext)
            self.editor(tmp_path)
            try:
                return tmp_path.read_bytes()
            except OSError as exc:
                raise StorageError(f"read edited secret: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    # -------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------

    def allow(self, grantee: str, pattern: str) -> list[str]:
        """Give ``grantee`` access to secrets the acting user can read.

        Returns:
            The granted secret names.

        Raises:
            UnknownUser: If ``grantee`` is not in the project.
            SecretNotFound: If nothing matching is readable by the actor.
        """
        user = self._user()
        manifest = self.load()
        _require_user(manifest, grantee)
        grantee_key = public_key_from_pem(manifest.keys[grantee])

        matches = resolve(manifest, pattern, user.username)
        if not matches:
            raise SecretNotFound("no matching secrets which you can access")

        keys = self._unlock()
        sealed = {
            name: seal(unseal(secret, keys.private_key), grantee_key)
            for name, secret in matches.items()
        }
        for name, secret in sealed.items():
            manifest.with_secret_added(grantee, name, secret)

        self._persist(manifest)
        logger.info("Allowed %s access to %d secret(s)", grantee, len(sealed))
        return sorted(sealed)

    def deny(self, username: str, pattern: str = WILDCARD) -> list[str]:
        """Remove ``username``'s envelopes matching ``pattern``.

        Returns:
            The revoked secret names.
        """
        manifest = self.load()
        _require_user(manifest, username)
        names = sorted(resolve(manifest, pattern, username))
        manifest.with_secret_removed(username, names)
        self._persist(manifest)
        logger.info("Denied %s access to %d secret(s)", username, len(names))
        return names

    # -------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------

    def add_user(self, username: Optional[str] = None, public_key_pem: Optional[str] = None) -> bool:
        """Add a user's public key; without arguments add yourself.

        Returns:
            False if the user already existed (nothing written).

        Raises:
            BadPublicKey: If ``public_key_pem`` does not parse.
        """
        if (username is None) != (public_key_pem is None):
            raise UsageError("expected `add-user [$user $pubkey]`")
        if username is None:
            username = self._user().username
            public_key_pem = self.keyring.public_key_pem()

        manifest = self.load()
        if manifest.has_user(username):
            return False
        public_key_from_pem(public_key_pem)
        manifest.with_user_added(username, public_key_pem)
        self._persist(manifest)
        logger.info("Added user %s", username)
        return True

    def remove_user(self, username: str) -> None:
        """Remove a user's key and every envelope they hold."""
        manifest = self.load()
        if not manifest.has_user(username):
            raise UnknownUser("user not found")
        manifest.with_user_removed(username)
        self._persist(manifest)
        logger.info("Removed user %s", username)

    def show(self, username: Optional[str] = None) -> dict[str, Any]:
        """Summarize users and the secret names they hold.

        Returns:
            ``{"users": {name: [secrets]}, "user_count": n, "secret_count": m}``
            restricted to ``username`` when given.
        """
        manifest = self.load()
        if username is not None:
            if not manifest.has_user(username):
                raise UnknownUser(f"unknown user: {username}")
            usernames = [username]
        else:
            usernames = sorted(manifest.keys)
        return {
            "users": {u: sorted(manifest.secrets_for(u)) for u in usernames},
            "user_count": len(manifest.keys),
            "secret_count": len(manifest.all_secret_names()),
        }

    # -------------------------------------------------------------------
    # Key rotation
    # -------------------------------------------------------------------

    def rotate(self, old_password: str, new_password: str) -> int:
        """Replace the acting user's key pair and rewrap their envelopes.

        Sequence: stage new keys, rewrap in memory, back up the current
        key files, persist the manifest, move the staged keys in, delete
        the backups. A failure after the backup restores the old key
        files and, if it was already written, the old manifest.

        Returns:
            Number of envelopes rewrapped.
        """
        user = self._user()
        manifest = self.load()
        _require_user(manifest, user.username)
        original = self.path.read_text(encoding="utf-8")

        old_keys = self.keyring.unlock(old_password)
        new_keys = self.keyring.stage(new_password)
        try:
            rewrapped = {
                name: rewrap(secret, old_keys.private_key, new_keys.public_key)
                for name, secret in manifest.secrets_for(user.username).items()
            }
            for name, secret in rewrapped.items():
                manifest.with_secret_added(user.username, name, secret)
            manifest.with_public_key(user.username, new_keys.public_pem)

            manifest_written = False
            try:
                self.keyring.backup()
                self._persist(manifest)
                manifest_written = True
                self.keyring.install_staged()
            except StorageError:
                logger.error("Key rotation failed, restoring previous keys")
                self.keyring.restore_backup()
                if manifest_written:
                    self._persist(manifest_io.decode(original))
                raise
            self.keyring.remove_backup()
        finally:
            self.keyring.discard_staged()

        logger.info("Rotated keys for %s, rewrapped %d secret(s)", user.username, len(rewrapped))
        return len(rewrapped)


# ---------------------------------------------------------------------------
# Commands outside a project
# ---------------------------------------------------------------------------

def init_project(directory: Path, keyring: KeyRing) -> Path:
    """Create ``.shh`` in ``directory`` with the local user as its only member."""
    path = directory / MANIFEST_NAME
    config = keyring.load_config()
    manifest_io.create(path, config.username, keyring.public_key_pem())
    return path


def login(keyring: KeyRing, prompter: Prompter = prompt_password) -> bool:
    """Make sure the daemon holds the user's password.

    Returns:
        True if a password was pushed, False if one was already cached.

    Raises:
        DaemonUnreachable: If the password cannot be pushed.
        WrongPassword: If every prompted password was wrong.
    """
    config = keyring.load_config()
    try:
        if daemon.fetch_password(config.port, reset_timer=True):
            return False
    except DaemonUnreachable:
        logger.debug("No daemon on port %d, prompting", config.port)

    for attempt in range(1, MAX_ATTEMPTS + 1):
        password = prompter("password")
        try:
            keyring.unlock(password)
            break
        except WrongPassword:
            if attempt == MAX_ATTEMPTS:
                raise
    daemon.push_password(config.port, password)
    return True

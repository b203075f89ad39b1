"""
Personal configuration and key files.

Storage layout:
    ~/.config/shh/            (or $SHH_HOME)
    ├── config                # YAML: username, port
    ├── id_rsa                # PKCS#8 PEM, encrypted under the user's password
    ├── id_rsa.pub            # PKCS#1 PEM public key
    └── tmp/                  # staging area used while rotating keys

The private key only ever exists decrypted in memory, inside a
:class:`KeyPair` returned by :meth:`KeyRing.unlock`.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml
from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import BaseModel, Field, ValidationError

from . import CONFIG_HOME
from .crypto import (
    RSA_KEY_SIZE,
    generate_keypair,
    private_key_from_pem,
    private_key_to_pem,
    public_key_from_pem,
    public_key_to_pem,
)
from .errors import ConfigNotFound, StateError, StorageError

logger = logging.getLogger("shh.keys")

DEFAULT_PORT = 8080
CONFIG_FILE = "config"
PRIVATE_KEY_FILE = "id_rsa"
PUBLIC_KEY_FILE = "id_rsa.pub"
BACKUP_SUFFIX = ".bak"
STAGING_DIR = "tmp"


class UserConfig(BaseModel):
    """Who this machine's user is and where their daemon listens."""

    username: str = Field(min_length=1)
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)


@dataclass
class KeyPair:
    """An unlocked RSA key pair. Never persisted in this form."""

    private_key: rsa.RSAPrivateKey

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self.private_key.public_key()

    @property
    def public_pem(self) -> str:
        return public_key_to_pem(self.public_key)


def _write_private(path: Path, data: bytes) -> None:
    """Write key material readable by the owner only."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)


class KeyRing:
    """Access to one user's personal configuration directory.

    Args:
        home: Configuration directory (``~/.config/shh``).
        key_size: RSA modulus size for newly generated keys.
    """

    def __init__(self, home: Optional[Path] = None, key_size: int = RSA_KEY_SIZE) -> None:
        self.home = (home or Path(CONFIG_HOME)).expanduser()
        self.key_size = key_size

    @property
    def config_file(self) -> Path:
        return self.home / CONFIG_FILE

    @property
    def private_key_file(self) -> Path:
        return self.home / PRIVATE_KEY_FILE

    @property
    def public_key_file(self) -> Path:
        return self.home / PUBLIC_KEY_FILE

    @property
    def staging_dir(self) -> Path:
        return self.home / STAGING_DIR

    def exists(self) -> bool:
        return self.config_file.exists() and self.private_key_file.exists()

    # -------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------

    def load_config(self) -> UserConfig:
        """Read the personal config.

        Raises:
            ConfigNotFound: If keys were never generated.
            StateError: If the file is malformed.
        """
        if not self.config_file.exists():
            raise ConfigNotFound(f"no keys at {self.home}, run `shh gen-keys`")
        try:
            data = yaml.safe_load(self.config_file.read_text(encoding="utf-8")) or {}
            return UserConfig.model_validate(data)
        except (yaml.YAMLError, ValidationError) as exc:
            raise StateError(f"bad config at {self.config_file}: {exc}") from exc

    def public_key_pem(self) -> str:
        """Return the user's PEM public key (validated)."""
        try:
            pem = self.public_key_file.read_text(encoding="ascii")
        except FileNotFoundError as exc:
            raise ConfigNotFound(f"no public key at {self.public_key_file}") from exc
        public_key_from_pem(pem)
        return pem

    def unlock(self, password: str) -> KeyPair:
        """Decrypt the private key with ``password``.

        Raises:
            ConfigNotFound: If there is no private key file.
            WrongPassword: If the password is wrong.
        """
        try:
            data = self.private_key_file.read_bytes()
        except FileNotFoundError as exc:
            raise ConfigNotFound(f"no private key at {self.private_key_file}") from exc
        return KeyPair(private_key=private_key_from_pem(data, password))

    # -------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------

    def create(self, username: str, password: str, port: int = DEFAULT_PORT) -> UserConfig:
        """Generate keys and write the personal config.

        Raises:
            StateError: If keys already exist.
        """
        self.check_absent()
        config = UserConfig(username=username, port=port)
        self.home.mkdir(parents=True, exist_ok=True)
        self._write_keys(self.home, generate_keypair(self.key_size), password)
        self.config_file.write_text(
            yaml.safe_dump(config.model_dump(), default_flow_style=False),
            encoding="utf-8",
        )
        logger.info("Generated keys for %s in %s", username, self.home)
        return config

    def check_absent(self) -> None:
        """Raise StateError if keys were already generated here."""
        if self.exists():
            raise StateError(f"keys exist at {self.home}, run `shh rotate` to change keys")

    def stage(self, password: str) -> KeyPair:
        """Generate a new key pair into the staging directory.

        The staging directory lives under ``home`` so the later rename
        stays on one filesystem.

        Raises:
            StorageError: If the staging directory already exists.
        """
        try:
            self.staging_dir.mkdir(mode=0o700)
        except FileExistsError as exc:
            raise StorageError(
                f"make tmp dir: {self.staging_dir} exists, remove it if no rotation is running"
            ) from exc
        keys = KeyPair(private_key=generate_keypair(self.key_size))
        self._write_keys(self.staging_dir, keys.private_key, password)
        return keys

    def discard_staged(self) -> None:
        shutil.rmtree(self.staging_dir, ignore_errors=True)

    def backup(self) -> None:
        """Copy the current key files to ``*.bak``."""
        for path in (self.private_key_file, self.public_key_file):
            try:
                shutil.copy2(path, path.with_name(path.name + BACKUP_SUFFIX))
            except OSError as exc:
                raise StorageError(f"back up {path.name}: {exc}") from exc

    def install_staged(self) -> None:
        """Rename the staged key files over the current ones."""
        for name in (PRIVATE_KEY_FILE, PUBLIC_KEY_FILE):
            try:
                os.replace(self.staging_dir / name, self.home / name)
            except OSError as exc:
                raise StorageError(f"replace {name}: {exc}") from exc

    def restore_backup(self) -> None:
        """Put the ``*.bak`` key files back in place."""
        for path in (self.private_key_file, self.public_key_file):
            backup = path.with_name(path.name + BACKUP_SUFFIX)
            if backup.exists():
                os.replace(backup, path)
                logger.warning("Restored %s from backup", path.name)

    def remove_backup(self) -> None:
        for path in (self.private_key_file, self.public_key_file):
            backup = path.with_name(path.name + BACKUP_SUFFIX)
            try:
                backup.unlink()
            except OSError as exc:
                raise StorageError(f"delete {backup.name}: {exc}") from exc

    def _write_keys(self, directory: Path, private_key: rsa.RSAPrivateKey, password: str) -> None:
        _write_private(directory / PRIVATE_KEY_FILE, private_key_to_pem(private_key, password))
        (directory / PUBLIC_KEY_FILE).write_text(
            public_key_to_pem(private_key.public_key()), encoding="ascii"
        )

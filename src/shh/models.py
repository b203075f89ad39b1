"""
Pydantic models for the project manifest.

The manifest is the only persisted source of truth: who the users are
(their public keys) and, per user, the envelopes for every secret they
may read. One secret name maps to one envelope per authorized user;
all of those envelopes decrypt to the same plaintext.
"""

from __future__ import annotations

import base64
import binascii
from typing import Iterable

from pydantic import BaseModel, Field, model_validator

from .errors import MalformedCiphertext


def b64e(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64d(text: str) -> bytes:
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise MalformedCiphertext(f"invalid base64: {exc}") from exc


class Secret(BaseModel):
    """One user's envelope for one secret.

    Both fields are base64 text so the manifest stays diffable.
    """

    wrapped_key: str = Field(description="Symmetric key, RSA-OAEP wrapped for this user")
    ciphertext: str = Field(description="IV || AES-CFB ciphertext of the plaintext")

    @classmethod
    def from_bytes(cls, wrapped_key: bytes, ciphertext: bytes) -> "Secret":
        return cls(wrapped_key=b64e(wrapped_key), ciphertext=b64e(ciphertext))

    @property
    def wrapped_key_bytes(self) -> bytes:
        return b64d(self.wrapped_key)

    @property
    def ciphertext_bytes(self) -> bytes:
        return b64d(self.ciphertext)


class Manifest(BaseModel):
    """Users, their public keys, and the per-user map of encrypted secrets.

    Invariants kept by the transformations below:
        - every username in ``secrets`` is also in ``keys``
        - a user whose last secret is removed drops out of ``secrets``
          but stays in ``keys``
    """

    keys: dict[str, str] = Field(default_factory=dict, description="username -> PEM public key")
    secrets: dict[str, dict[str, Secret]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _secrets_belong_to_users(self) -> "Manifest":
        orphans = sorted(set(self.secrets) - set(self.keys))
        if orphans:
            raise ValueError(f"secrets held by unknown users: {', '.join(orphans)}")
        return self

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def has_user(self, username: str) -> bool:
        return username in self.keys

    def secrets_for(self, username: str) -> dict[str, Secret]:
        """Return the user's secret map (empty when they hold nothing)."""
        return self.secrets.get(username, {})

    def all_secret_names(self) -> set[str]:
        """Union of secret names across all users."""
        names: set[str] = set()
        for user_secrets in self.secrets.values():
            names.update(user_secrets)
        return names

    def holders_of(self, name: str) -> list[str]:
        """Usernames holding an envelope for ``name``, sorted."""
        return sorted(u for u, s in self.secrets.items() if name in s)

    # -------------------------------------------------------------------
    # Transformations (mutate and return self)
    # -------------------------------------------------------------------

    def with_user_added(self, username: str, public_key_pem: str) -> "Manifest":
        """Add a user; an existing username is left untouched."""
        self.keys.setdefault(username, public_key_pem)
        return self

    def with_public_key(self, username: str, public_key_pem: str) -> "Manifest":
        """Replace an existing user's public key."""
        if username not in self.keys:
            raise ValueError(f"unknown user: {username}")
        self.keys[username] = public_key_pem
        return self

    def with_secret_added(self, username: str, name: str, secret: Secret) -> "Manifest":
        if username not in self.keys:
            raise ValueError(f"unknown user: {username}")
        self.secrets.setdefault(username, {})[name] = secret
        return self

    def with_secret_removed(self, username: str, names: Iterable[str]) -> "Manifest":
        user_secrets = self.secrets.get(username)
        if user_secrets is None:
            return self
        for name in names:
            user_secrets.pop(name, None)
        if not user_secrets:
            del self.secrets[username]
        return self

    def with_user_removed(self, username: str) -> "Manifest":
        self.keys.pop(username, None)
        self.secrets.pop(username, None)
        return self

"""Wildcard-aware lookup of the secrets a user may act on."""

from __future__ import annotations

from . import WILDCARD
from .errors import SecretNotFound
from .models import Manifest, Secret


def resolve(manifest: Manifest, pattern: str, username: str) -> dict[str, Secret]:
    """Return the envelopes ``username`` holds that match ``pattern``.

    ``pattern`` is either the wildcard (every secret the user holds) or a
    single secret name. The result is empty when the name exists in the
    project but the user holds no envelope for it; callers that need at
    least one match decide that for themselves.

    Raises:
        SecretNotFound: If ``pattern`` names a secret nobody holds.
    """
    user_secrets = manifest.secrets_for(username)
    if pattern == WILDCARD:
        return dict(user_secrets)
    if pattern not in manifest.all_secret_names():
        raise SecretNotFound(f"unknown secret: {pattern}")
    if pattern not in user_secrets:
        return {}
    return {pattern: user_secrets[pattern]}

"""Exception hierarchy shared by every shh layer.

Library code raises these; the CLI turns them into a one-line
diagnostic and a non-zero exit status.
"""

from __future__ import annotations


class ShhError(Exception):
    """Base class for every error shh reports to the user."""


class UsageError(ShhError):
    """Bad argument count or shape."""


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

class StateError(ShhError):
    """The project or personal state does not allow the operation."""


class ManifestNotFound(StateError):
    """No `.shh` manifest where one was expected."""


class ManifestParseError(StateError):
    """The manifest exists but cannot be decoded."""


class UnknownUser(StateError):
    """A username that is not in the manifest's key list."""


class SecretNotFound(StateError):
    """No secret matches the requested name."""


class ConfigNotFound(StateError):
    """Personal keys or configuration are missing."""


# ---------------------------------------------------------------------------
# Crypto
# ---------------------------------------------------------------------------

class CryptoError(ShhError):
    """A cryptographic step failed; nothing was persisted."""


class MalformedCiphertext(CryptoError):
    """Ciphertext is shorter than the cipher block size or not valid base64."""


class UnwrapFailed(CryptoError):
    """A wrapped symmetric key could not be decrypted with the private key."""


class BadPublicKey(CryptoError):
    """Public key material could not be parsed."""


# ---------------------------------------------------------------------------
# Storage and auth
# ---------------------------------------------------------------------------

class StorageError(ShhError):
    """A file or network write failed."""


class AuthError(ShhError):
    """Password could not be obtained or was rejected."""


class WrongPassword(AuthError):
    """The password does not unlock the private key."""


class DaemonUnreachable(AuthError):
    """The password-cache daemon did not answer on its loopback port."""

"""
Envelope encryption for shh secrets.

Every write mints a fresh 256-bit AES key and a random IV, encrypts the
plaintext with AES-CFB, and wraps the AES key with the recipient's RSA
public key (OAEP, SHA-256 for both the hash and MGF1).

Layout:
    Personal RSA key pair (password-protected private key at rest)
    └── wrapped_key: AES-256 key, RSA-OAEP encrypted per user
            └── ciphertext: IV (16 bytes) || AES-CFB(plaintext)

Rewrapping (key rotation) only replaces ``wrapped_key``; the ciphertext
and IV are left as they are. Anything that re-derives ciphertext gets a
new key and IV.
"""

from __future__ import annotations

import hashlib
import logging
import os

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms

try:
    from cryptography.hazmat.decrepit.ciphers.modes import CFB
except ImportError:  # cryptography releases that still ship CFB in primitives
    from cryptography.hazmat.primitives.ciphers.modes import CFB

from .errors import BadPublicKey, MalformedCiphertext, UnwrapFailed, WrongPassword
from .models import Secret, b64e

logger = logging.getLogger("shh.crypto")

KEY_SIZE = 32  # AES-256
BLOCK_SIZE = algorithms.AES.block_size // 8  # 16 bytes, also the IV length
RSA_KEY_SIZE = 4096
RSA_PUBLIC_EXPONENT = 65537


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


# ---------------------------------------------------------------------------
# Symmetric layer
# ---------------------------------------------------------------------------

def generate_key() -> bytes:
    """Generate a random 256-bit AES key."""
    return os.urandom(KEY_SIZE)


def encrypt(key: bytes, plaintext: bytes) -> bytes:
    """Encrypt with AES-CFB under a fresh random IV.

    Returns:
        ``IV || ciphertext``.
    """
    iv = os.urandom(BLOCK_SIZE)
    encryptor = Cipher(algorithms.AES(key), CFB(iv)).encryptor()
    return iv + encryptor.update(plaintext) + encryptor.finalize()


def decrypt(key: bytes, data: bytes) -> bytes:
    """Decrypt ``IV || ciphertext`` produced by :func:`encrypt`.

    Raises:
        MalformedCiphertext: If ``data`` is shorter than one block or the
            key has an invalid length.
    """
    if len(data) < BLOCK_SIZE:
        raise MalformedCiphertext("encrypted secret too short")
    iv, body = data[:BLOCK_SIZE], data[BLOCK_SIZE:]
    try:
        decryptor = Cipher(algorithms.AES(key), CFB(iv)).decryptor()
    except ValueError as exc:
        raise MalformedCiphertext(f"bad symmetric key: {exc}") from exc
    return decryptor.update(body) + decryptor.finalize()


# ---------------------------------------------------------------------------
# Asymmetric layer
# ---------------------------------------------------------------------------

def wrap_key(key: bytes, public_key: rsa.RSAPublicKey) -> bytes:
    """Encrypt a symmetric key for one recipient."""
    return public_key.encrypt(key, _oaep())


def unwrap_key(wrapped: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    """Decrypt a wrapped symmetric key.

    Raises:
        UnwrapFailed: Wrong private key or corrupted padding.
    """
    try:
        return private_key.decrypt(wrapped, _oaep())
    except ValueError as exc:
        raise UnwrapFailed("decrypt secret: cannot unwrap key") from exc


def generate_keypair(key_size: int = RSA_KEY_SIZE) -> rsa.RSAPrivateKey:
    """Generate a new RSA private key (the public half hangs off it)."""
    logger.debug("Generating %d-bit RSA key pair", key_size)
    return rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size)


def public_key_to_pem(public_key: rsa.RSAPublicKey) -> str:
    """Encode a public key as a PKCS#1 ``RSA PUBLIC KEY`` PEM block."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.PKCS1,
    ).decode("ascii")


def public_key_from_pem(pem: str) -> rsa.RSAPublicKey:
    """Parse a PEM public key.

    Raises:
        BadPublicKey: If the text is not an RSA public key.
    """
    try:
        key = serialization.load_pem_public_key(pem.encode("ascii"))
    except (ValueError, UnicodeEncodeError, UnsupportedAlgorithm) as exc:
        raise BadPublicKey(f"parse public key: {exc}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise BadPublicKey("parse public key: not an RSA key")
    return key


def private_key_to_pem(private_key: rsa.RSAPrivateKey, password: str) -> bytes:
    """Serialize a private key encrypted under ``password``."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
    )


def private_key_from_pem(data: bytes, password: str) -> rsa.RSAPrivateKey:
    """Load a password-protected private key.

    Raises:
        WrongPassword: If the password does not decrypt the key.
    """
    try:
        key = serialization.load_pem_private_key(data, password=password.encode("utf-8"))
    except (ValueError, TypeError) as exc:
        raise WrongPassword("wrong password") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise WrongPassword("private key is not an RSA key")
    return key


# ---------------------------------------------------------------------------
# Envelope helpers
# ---------------------------------------------------------------------------

def seal(plaintext: bytes, public_key: rsa.RSAPublicKey) -> Secret:
    """Encrypt ``plaintext`` for one user under a fresh key and IV."""
    key = generate_key()
    return Secret.from_bytes(wrap_key(key, public_key), encrypt(key, plaintext))


def unseal(secret: Secret, private_key: rsa.RSAPrivateKey) -> bytes:
    """Recover the plaintext of one user's envelope."""
    key = unwrap_key(secret.wrapped_key_bytes, private_key)
    return decrypt(key, secret.ciphertext_bytes)


def rewrap(
    secret: Secret,
    old_private: rsa.RSAPrivateKey,
    new_public: rsa.RSAPublicKey,
) -> Secret:
    """Move an envelope to a new key pair without touching the ciphertext."""
    key = unwrap_key(secret.wrapped_key_bytes, old_private)
    return Secret(wrapped_key=b64e(wrap_key(key, new_public)), ciphertext=secret.ciphertext)


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest used to detect unchanged edits."""
    return hashlib.sha256(data).hexdigest()

"""
Field encryption for task text at rest. Keys are derived from the profile password;
the derived key never leaves the session that logged in.
"""
from __future__ import annotations

import base64

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

_KDF_ITERATIONS = 390_000


def derive_key(password: str, salt: str) -> str:
    """PBKDF2-HMAC-SHA256 of password -> urlsafe base64 Fernet key."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt.encode("utf-8"),
        iterations=_KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8"))).decode("ascii")


def encrypt(plaintext: str, key: str) -> str:
    return Fernet(key.encode("ascii")).encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt(ciphertext: str | None, key: str | None) -> str | None:
    """
    Decrypt ciphertext with key. Returns the input unchanged when there is nothing to decrypt,
    no key, or the value is not a valid token for this key (legacy plaintext, wrong key).
    """
    if not ciphertext or not key:
        return ciphertext
    try:
        plain = Fernet(key.encode("ascii")).decrypt(ciphertext.encode("ascii")).decode("utf-8")
    except (InvalidToken, ValueError, TypeError):
        return ciphertext
    return plain or ciphertext

"""Password hashing with scrypt."""

from __future__ import annotations

import base64
import os

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

_SCHEME = "scrypt"
_SALT_BYTES = 16
_KEY_LENGTH = 32


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class PasswordHasher:
    """
    Hashes and verifies passwords.

    Encoded hashes are self-describing (``scrypt$n$r$p$salt$key``) so the
    cost parameters can be raised later without invalidating stored hashes.
    """

    def __init__(self, n: int = 2**14, r: int = 8, p: int = 1) -> None:
        self._n = n
        self._r = r
        self._p = p

    def hash(self, password: str) -> str:
        """Hash a password with a fresh random salt."""
        salt = os.urandom(_SALT_BYTES)
        kdf = Scrypt(salt=salt, length=_KEY_LENGTH, n=self._n, r=self._r, p=self._p)
        key = kdf.derive(password.encode())
        return f"{_SCHEME}${self._n}${self._r}${self._p}${_b64encode(salt)}${_b64encode(key)}"

    def verify(self, password: str, encoded: str) -> bool:
        """Check a password against an encoded hash in constant time."""
        parts = encoded.split("$")
        if len(parts) != 6 or parts[0] != _SCHEME:
            return False
        try:
            n, r, p = int(parts[1]), int(parts[2]), int(parts[3])
            salt = _b64decode(parts[4])
            expected = _b64decode(parts[5])
        except ValueError:
            return False

        kdf = Scrypt(salt=salt, length=len(expected), n=n, r=r, p=p)
        try:
            kdf.verify(password.encode(), expected)
        except InvalidKey:
            return False
        return True

"""
auth/codec.py -- Boundary encryption for secondary tokens.

Security design:
  Tokens (remember, refresh, api) are generated and stored in plaintext and
  are encrypted exactly once, at the moment they are handed to a client.
  Inbound values (Authorization header, remember cookie, refresh body) are
  decrypted before the store lookup. A leaked tokens table is therefore
  useless without SECRET_KEY as well.

  Encrypter is Fernet (AES-128-CBC + HMAC-SHA256, from `cryptography`). The
  Fernet key is derived from SECRET_KEY with SHA-256 so any >=32 char
  application key works without a separate key format. Fernet's HMAC makes
  tampering detectable: any modified byte raises DecodeError.

Layer rule: no imports from core/ -- the secret is passed in.
"""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from auth.errors import DecodeError


def _derive_fernet_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class Encrypter:
    """The encryption service: encrypt(bytes) -> str, decrypt(str) -> bytes."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("Encrypter requires a non-empty secret.")
        self._fernet = Fernet(_derive_fernet_key(secret))

    def encrypt(self, data: bytes) -> str:
        return self._fernet.encrypt(data).decode("ascii")

    def decrypt(self, payload: str) -> bytes:
        """Return the plaintext bytes. Raises DecodeError on any tampering."""
        if not payload:
            raise DecodeError()
        try:
            return self._fernet.decrypt(payload.encode("ascii"))
        except (InvalidToken, UnicodeEncodeError) as exc:
            raise DecodeError() from exc


class TokenCodec:
    """Encrypts raw token values for transmission and reverses it on the way in."""

    def __init__(self, encrypter: Encrypter) -> None:
        self.encrypter = encrypter

    @classmethod
    def from_secret(cls, secret: str) -> "TokenCodec":
        return cls(Encrypter(secret))

    def encrypt(self, raw_token: str) -> str:
        return self.encrypter.encrypt(raw_token.encode("utf-8"))

    def decrypt(self, transmitted: str) -> str:
        raw = self.encrypter.decrypt(transmitted)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError() from exc

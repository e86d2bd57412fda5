"""
auth/hashing.py -- Credential Verifier (bcrypt password hashing).

Security design decisions:
  bcrypt directly, no passlib wrapper. passlib's internal wrap-bug detection
       creates a password longer than 72 bytes, which bcrypt 4.x rejects with
       an explicit error.

  verify() never raises. A malformed or missing digest (e.g. a user row with
       a NULL password column) is simply a mismatch.

  dummy_digest() enables timing equalization in the schemes' credential
       path: when a uid does not exist the scheme still runs one bcrypt check
       against a digest of the same cost as real ones, so response time does
       not reveal whether the uid exists [C1].

Layer rule: no imports from core/. The Hasher is handed to the AuthManager.
"""

from __future__ import annotations

import logging

import bcrypt

logger = logging.getLogger("warden.auth.hashing")

_DUMMY_PASSWORD = "warden_timing_dummy"  # noqa: S105


class Hasher:
    """The hash service consumed by locators: hash(plain) / verify(plain, digest)."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_digest: str | None = None

    def hash(self, plain: str) -> str:
        """Return a bcrypt digest of the given plaintext.

        Passwords longer than 72 bytes are truncated by bcrypt. Callers that
        accept user input should cap length at their own boundary.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, digest: str | None) -> bool:
        """Return True if the plaintext matches the bcrypt digest."""
        if not digest:
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            # Not a bcrypt digest ("Invalid salt"); treat as a mismatch.
            logger.debug("Stored password digest is not a valid bcrypt hash")
            return False

    def dummy_digest(self) -> str:
        """Digest of a throwaway password at this hasher's cost, computed once [C1]."""
        if self._dummy_digest is None:
            self._dummy_digest = self.hash(_DUMMY_PASSWORD)
        return self._dummy_digest


_default_hasher = Hasher()


def hash_password(plain: str) -> str:
    return _default_hasher.hash(plain)


def verify_password(plain: str, digest: str | None) -> bool:
    return _default_hasher.verify(plain, digest)


def equalize_timing(hasher: Hasher, plain: str) -> None:
    """Burn one bcrypt verification for a uid that does not exist [C1]."""
    hasher.verify(plain, hasher.dummy_digest())

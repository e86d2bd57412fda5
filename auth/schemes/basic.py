"""
auth/schemes/basic.py -- Stateless HTTP Basic authentication.

Every request re-verifies `Authorization: Basic <base64(uid:password)>`.
Nothing is persisted: the resolved user lives on this instance for the
current request only, and login/logout/attempt do not exist.

Unlike attempt() on the other schemes, check() here reports UserNotFound
and PasswordMismatch (an InvalidCredentials) separately. Both still carry
a 401 status; the HTTP layer decides what to show.
"""

from __future__ import annotations

import base64
import binascii
import logging

from auth.errors import CredentialsMissing, PasswordMismatch, UserNotFound
from auth.hashing import equalize_timing
from auth.schemes.base import BaseScheme

logger = logging.getLogger("warden.auth.basic")


def parse_basic_header(header: str) -> tuple[str, str] | None:
    """Return (uid, password) from a Basic Authorization header, or None if malformed."""
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded.strip():
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    uid, sep, password = decoded.partition(":")
    if not sep or not uid:
        return None
    return uid, password


class BasicScheme(BaseScheme):
    name = "basic"

    def check(self) -> bool:
        """Verify the Basic credentials on this request.

        Raises CredentialsMissing (no/malformed header), UserNotFound, or
        PasswordMismatch.
        """
        if self.user is not None:
            return True
        credentials = parse_basic_header(self.context.header("authorization"))
        if credentials is None:
            raise CredentialsMissing()
        uid, password = credentials
        try:
            user = self.locator.find_by_uid(uid)
        except UserNotFound:
            equalize_timing(self.locator.hasher, password)
            raise
        if not self.locator.validate_credentials(user, password):
            logger.debug("Basic credentials rejected")
            raise PasswordMismatch()
        self._set_user(user)
        return True
"""
auth/schemes/base.py -- Behaviour shared by every authentication scheme.

A scheme instance is bound to one request (its HttpContext), one locator
and, where tokens are involved, the token store and codec. It holds the
resolved user for that request only.

Builder flags (remember / with_refresh_token / new_refresh_token) never
mutate the instance they are called on: they return a shallow copy carrying
a new frozen AuthContext. The copy shares the request's identity holder, so
a user authenticated through the copy is visible through the original.
Flags are consumed by the next verb and reset afterwards.

Security:
  [C1] _verify_credentials() always runs bcrypt, also for unknown uids, and
       reports both failure causes as the same InvalidCredentials. The real
       cause is chained for server-side diagnosis only.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
from collections.abc import Iterable
from typing import Any

from auth.codec import TokenCodec
from auth.context import HttpContext
from auth.errors import (
    CredentialsMissing,
    DecodeError,
    InvalidCredentials,
    InvalidToken,
    NotAuthenticated,
    PasswordMismatch,
    UnsupportedOperation,
    UserNotFound,
)
from auth.hashing import equalize_timing
from auth.models import AuthContext, Token, TokenType
from auth.serializers import UserLocator
from auth.store import TokenStore

logger = logging.getLogger("warden.auth.schemes")

# Failures that mean "this request is not authenticated", as opposed to
# StorageError / ConfigurationError which must propagate.
_REJECTIONS = (CredentialsMissing, NotAuthenticated, InvalidToken, InvalidCredentials, UserNotFound)


class _Identity:
    """The request's resolved user, shared between a scheme and its builder copies."""

    __slots__ = ("user", "claims")

    def __init__(self) -> None:
        self.user: Any = None
        self.claims: dict | None = None


class BaseScheme:
    name = "base"
    token_type: TokenType | None = None

    def __init__(
        self,
        locator: UserLocator,
        context: HttpContext,
        token_store: TokenStore | None = None,
        codec: TokenCodec | None = None,
        authenticator: str = "",
    ) -> None:
        self.locator = locator
        self.context = context
        self.token_store = token_store
        self.codec = codec
        self.authenticator = authenticator
        self._flags = AuthContext()
        self._identity = _Identity()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} authenticator={self.authenticator!r}>"

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def user(self) -> Any:
        """The user resolved during this request, or None."""
        return self._identity.user

    def _set_user(self, user: Any) -> None:
        self._identity.user = user

    def check(self) -> bool:
        raise NotImplementedError

    def get_user(self) -> Any:
        """Run check() and return the resolved user."""
        self.check()
        return self.user

    def login_if_can(self) -> bool:
        """Soft check: True if authenticated, False on any rejection.

        Storage and configuration failures still raise.
        """
        try:
            return self.check()
        except _REJECTIONS:
            return False

    def validate(self, uid: Any, password: str) -> bool:
        """Verify credentials without establishing any state."""
        self._verify_credentials(uid, password)
        return True

    # ------------------------------------------------------------------
    # Builder flags
    # ------------------------------------------------------------------

    def _with_flags(self, **flags: bool) -> "BaseScheme":
        clone = copy.copy(self)
        clone._flags = dataclasses.replace(self._flags, **flags)
        return clone

    def _consume_flags(self) -> AuthContext:
        flags = self._flags
        self._flags = AuthContext()
        return flags

    def remember(self, flag: bool = True) -> "BaseScheme":
        raise UnsupportedOperation(f"remember() is not supported by the {self.name} scheme.")

    def with_refresh_token(self) -> "BaseScheme":
        raise UnsupportedOperation(f"with_refresh_token() is not supported by the {self.name} scheme.")

    def new_refresh_token(self) -> "BaseScheme":
        raise UnsupportedOperation(f"new_refresh_token() is not supported by the {self.name} scheme.")

    # ------------------------------------------------------------------
    # Verbs a scheme may not support
    # ------------------------------------------------------------------

    def attempt(self, uid: Any, password: str, *args: Any) -> Any:
        raise UnsupportedOperation(f"attempt() is not supported by the {self.name} scheme.")

    def login(self, user: Any) -> Any:
        raise UnsupportedOperation(f"login() is not supported by the {self.name} scheme.")

    def login_via_id(self, user_id: Any) -> Any:
        raise UnsupportedOperation(f"login_via_id() is not supported by the {self.name} scheme.")

    def logout(self) -> None:
        raise UnsupportedOperation(f"logout() is not supported by the {self.name} scheme.")

    def generate(self, user: Any, *args: Any) -> Any:
        raise UnsupportedOperation(f"generate() is not supported by the {self.name} scheme.")

    def generate_for_refresh_token(self, refresh_token: str, payload: dict | None = None) -> Any:
        raise UnsupportedOperation(f"generate_for_refresh_token() is not supported by the {self.name} scheme.")

    # ------------------------------------------------------------------
    # Secondary tokens
    # ------------------------------------------------------------------

    def list_tokens(self) -> list[Token]:
        """Active tokens of the current user, values encrypted for transmission."""
        if self.token_type is None:
            raise UnsupportedOperation(f"list_tokens() is not supported by the {self.name} scheme.")
        user = self.get_user()
        tokens = self._tokens().list_for_user(self.locator.primary_key_of(user), self.token_type)
        return [dataclasses.replace(t, token=self._codec().encrypt(t.token)) for t in tokens]

    def revoke_tokens(self, tokens: Iterable[str] | None = None) -> int:
        """Revoke the current user's tokens; all of them when tokens is None."""
        return self.revoke_tokens_for_user(self.get_user(), tokens)

    def revoke_tokens_for_user(self, user: Any, tokens: Iterable[str] | None = None) -> int:
        """Revoke a user's tokens of this scheme's type.

        tokens are the encrypted values clients hold. Values that do not
        decrypt, or that belong to another user, are ignored.
        """
        if self.token_type is None:
            raise UnsupportedOperation(f"revoke_tokens() is not supported by the {self.name} scheme.")
        user_id = self.locator.primary_key_of(user)
        store = self._tokens()
        if tokens is None:
            count = store.revoke_all_for_user(user_id, self.token_type)
        else:
            raw = [value for value in (self._decrypt_or_none(t) for t in tokens) if value is not None]
            count = store.revoke_many(user_id, raw, self.token_type)
        logger.info("Revoked %d %s token(s) for user %s", count, self.token_type.value, user_id)
        return count

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _verify_credentials(self, uid: Any, password: str) -> Any:
        """Return the user for valid credentials; InvalidCredentials otherwise [C1]."""
        try:
            user = self.locator.find_by_uid(uid)
        except UserNotFound as exc:
            equalize_timing(self.locator.hasher, password)
            raise InvalidCredentials() from exc
        if not self.locator.validate_credentials(user, password):
            raise InvalidCredentials() from PasswordMismatch()
        return user

    def _tokens(self) -> TokenStore:
        if self.token_store is None:
            raise UnsupportedOperation(f"The {self.name} scheme has no token store configured.")
        return self.token_store

    def _codec(self) -> TokenCodec:
        if self.codec is None:
            raise UnsupportedOperation(f"The {self.name} scheme has no token codec configured.")
        return self.codec

    def _decrypt_or_none(self, transmitted: str) -> str | None:
        try:
            return self._codec().decrypt(transmitted)
        except DecodeError:
            return None

"""
auth/schemes/session.py -- Stateful authentication over a server-side session.

States: Anonymous -> Authenticated (login / attempt / login_via_id, or check()
re-establishing from a remember token) -> Anonymous (logout).

The session holds only the user's primary key under
`<Settings.session_key>_<authenticator>`, so two session authenticators
never read each other's entry.
The optional remember-me side channel is a long-lived httpOnly cookie
carrying an encrypted `remember` token; its plaintext lives in the tokens
table.

check() fallback policy:
  Every failure on the remember-token path (cookie does not decrypt, token
  unknown / revoked / expired, owner deleted) is reported as the same
  NotAuthenticated, and the stale cookie is forgotten. A client cannot tell
  a revoked token from a forged one.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from auth.codec import TokenCodec
from auth.context import HttpContext
from auth.errors import DecodeError, NotAuthenticated, UserNotFound
from auth.models import TokenType
from auth.schemes.base import BaseScheme
from auth.serializers import UserLocator
from auth.store import TokenStore, generate_token_value

logger = logging.getLogger("warden.auth.session")


class SessionScheme(BaseScheme):
    name = "session"
    token_type = TokenType.REMEMBER

    def __init__(
        self,
        locator: UserLocator,
        context: HttpContext,
        token_store: TokenStore | None = None,
        codec: TokenCodec | None = None,
        authenticator: str = "",
        session_key: str = "warden_auth",
        remember_cookie: str = "warden_remember_token",
        remember_expires_in: int = 5 * 365 * 24 * 60 * 60,
    ) -> None:
        super().__init__(locator, context, token_store, codec, authenticator)
        self.session_key = session_key
        self.remember_cookie = remember_cookie
        self.remember_expires_in = remember_expires_in

    def remember(self, flag: bool = True) -> "SessionScheme":
        """Issue a remember-me token on the next attempt/login/login_via_id."""
        return self._with_flags(remember=bool(flag))

    def attempt(self, uid: Any, password: str, *args: Any) -> Any:
        """Verify credentials and log the user in. Returns the user.

        Unknown uid and wrong password both raise InvalidCredentials.
        """
        user = self._verify_credentials(uid, password)
        return self.login(user)

    def login(self, user: Any) -> Any:
        """Write the user's primary key into the session. No credential check.

        With remember() set, also persists a remember token and queues it,
        encrypted, as a long-lived cookie.
        """
        flags = self._consume_flags()
        user_id = self.locator.primary_key_of(user)
        self.context.session[self.session_key] = user_id
        if flags.remember:
            self._issue_remember_token(user_id)
        self._set_user(user)
        logger.info("User %s logged in via %s", user_id, self.authenticator or self.name)
        return user

    def login_via_id(self, user_id: Any) -> Any:
        """Find the user by primary key and log them in. Raises UserNotFound."""
        user = self.locator.find_by_id(user_id)
        return self.login(user)

    def check(self) -> bool:
        """Resolve the user from the session, falling back to the remember cookie.

        Raises NotAuthenticated when neither source yields a user.
        """
        if self.user is not None:
            return True

        user_id = self.context.session.get(self.session_key)
        if user_id is not None:
            try:
                self._set_user(self.locator.find_by_id(user_id))
                return True
            except UserNotFound:
                # The account behind the session is gone; drop the identity.
                logger.debug("Session points to a missing user; clearing it")
                self.context.session.pop(self.session_key, None)

        user = self._user_from_remember_cookie()
        if user is None:
            raise NotAuthenticated()
        self.context.session[self.session_key] = self.locator.primary_key_of(user)
        self._set_user(user)
        logger.info("Session re-established from remember token for user %s", self.locator.primary_key_of(user))
        return True

    def logout(self) -> None:
        """Clear the session identity and the remember cookie.

        Remember tokens stay valid in the store; use revoke_tokens() to
        invalidate them.
        """
        user_id = self.context.session.pop(self.session_key, None)
        if self.context.cookie(self.remember_cookie):
            self.context.forget_cookie(self.remember_cookie)
        self._set_user(None)
        logger.info("User %s logged out", user_id)

    # ------------------------------------------------------------------
    # Remember token
    # ------------------------------------------------------------------

    def _issue_remember_token(self, user_id: Any) -> None:
        value = generate_token_value()
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.remember_expires_in)
        self._tokens().create(user_id, TokenType.REMEMBER, value, expires_at=expires_at)
        self.context.queue_cookie(
            self.remember_cookie, self._codec().encrypt(value), max_age=self.remember_expires_in
        )

    def _user_from_remember_cookie(self) -> Any:
        transmitted = self.context.cookie(self.remember_cookie)
        if not transmitted or self.token_store is None or self.codec is None:
            return None
        try:
            value = self.codec.decrypt(transmitted)
            token = self.token_store.find_active(value, TokenType.REMEMBER)
            if token is None:
                raise NotAuthenticated()
            return self.locator.find_by_id(token.user_id)
        except (DecodeError, NotAuthenticated, UserNotFound) as exc:
            logger.debug("Remember cookie rejected: %s", exc.__class__.__name__)
            self.context.forget_cookie(self.remember_cookie)
            return None

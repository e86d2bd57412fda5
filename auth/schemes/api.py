"""
auth/schemes/api.py -- Personal API tokens: long-lived, stateless, revocable.

Each token is a random value persisted with type `api` and handed out
encrypted exactly once, from generate(). Requests present it as
`Authorization: Bearer <token>` (or ?token=<token>); check() decrypts it and
looks it up with find_active(), so revocation takes effect on the next
request.

A value that fails to decrypt is reported as InvalidToken, the same as an
unknown or revoked one.
"""

from __future__ import annotations

import logging
from typing import Any

from auth.context import bearer_token
from auth.errors import CredentialsMissing, DecodeError, InvalidToken, UserNotFound
from auth.models import TokenPair, TokenType
from auth.schemes.base import BaseScheme
from auth.store import generate_token_value

logger = logging.getLogger("warden.auth.api")


class ApiScheme(BaseScheme):
    name = "api"
    token_type = TokenType.API

    def attempt(self, uid: Any, password: str, *args: Any) -> TokenPair:
        """Verify credentials, then generate a new API token."""
        user = self._verify_credentials(uid, password)
        return self.generate(user)

    def generate(self, user: Any, *args: Any) -> TokenPair:
        """Persist a new API token for user and return it encrypted."""
        user_id = self.locator.primary_key_of(user)
        value = generate_token_value()
        self._tokens().create(user_id, TokenType.API, value)
        logger.info("Issued api token for user %s", user_id)
        return TokenPair(token=self._codec().encrypt(value))

    def check(self) -> bool:
        """Resolve the user owning the presented API token.

        Raises CredentialsMissing (no token) or InvalidToken.
        """
        if self.user is not None:
            return True
        transmitted = bearer_token(self.context.headers, self.context.params)
        if transmitted is None:
            raise CredentialsMissing()
        try:
            value = self._codec().decrypt(transmitted)
        except DecodeError as exc:
            raise InvalidToken() from exc
        record = self._tokens().find_active(value, TokenType.API)
        if record is None:
            logger.debug("API token unknown, revoked or expired")
            raise InvalidToken()
        try:
            user = self.locator.find_by_id(record.user_id)
        except UserNotFound as exc:
            raise InvalidToken() from exc
        self._set_user(user)
        return True

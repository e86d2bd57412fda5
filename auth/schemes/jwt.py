"""
auth/schemes/jwt.py -- Stateless bearer authentication with signed JWTs.

Security design decisions:
  JWT: python-jose. Tokens carry `uid` (the user's primary key), the name
       of the issuing `authenticator`, an optional `data` payload and the
       time/identity claims configured in JwtOptions: exp (expires_in),
       nbf (not_before), aud, iss, sub.
       Verification checks all of them; any failure is InvalidToken.

  Refresh tokens: opaque random values persisted with type `refresh` and
       handed out encrypted. They can only mint new bearer tokens, never
       authenticate a request themselves.

  Bearer tokens are self-contained. Revoking the refresh token a bearer
       token was minted from does not invalidate that bearer token; it stays
       valid until its own exp.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from jose import JWTError, jwt

from auth.codec import TokenCodec
from auth.context import HttpContext, bearer_token
from auth.errors import CredentialsMissing, DecodeError, InvalidRefreshToken, InvalidToken, UserNotFound
from auth.models import TokenPair, TokenType
from auth.schemes.base import BaseScheme
from auth.serializers import UserLocator
from auth.store import TokenStore, generate_token_value
from core.config import JwtOptions

logger = logging.getLogger("warden.auth.jwt")


class JwtScheme(BaseScheme):
    name = "jwt"
    token_type = TokenType.REFRESH

    def __init__(
        self,
        locator: UserLocator,
        context: HttpContext,
        token_store: TokenStore | None = None,
        codec: TokenCodec | None = None,
        authenticator: str = "",
        options: JwtOptions | None = None,
        secret: str = "",
    ) -> None:
        super().__init__(locator, context, token_store, codec, authenticator)
        self.options = options or JwtOptions()
        self._signing_key = self.options.secret or secret
        self._verify_key = self.options.public_key or self._signing_key
        if not self._signing_key:
            raise ValueError("JwtScheme requires options.secret or an application secret.")

    @property
    def jwt_payload(self) -> dict | None:
        """Decoded claims of the token verified by check(), or None."""
        return self._identity.claims

    # ------------------------------------------------------------------
    # Builder flags
    # ------------------------------------------------------------------

    def with_refresh_token(self) -> "JwtScheme":
        """Also issue a refresh token on the next attempt/generate."""
        return self._with_flags(with_refresh_token=True)

    def new_refresh_token(self) -> "JwtScheme":
        """Rotate the refresh token on the next generate_for_refresh_token."""
        return self._with_flags(new_refresh_token=True)

    # ------------------------------------------------------------------
    # Issuing
    # ------------------------------------------------------------------

    def attempt(self, uid: Any, password: str, payload: dict | None = None) -> TokenPair:
        """Verify credentials and issue a bearer token (and refresh token if requested)."""
        user = self._verify_credentials(uid, password)
        return self.generate(user, payload)

    def generate(self, user: Any, payload: dict | None = None) -> TokenPair:
        """Issue a bearer token for an already-known user. No credential check."""
        flags = self._consume_flags()
        user_id = self.locator.primary_key_of(user)
        token = self._encode(user_id, payload)
        refresh_token = None
        if flags.with_refresh_token:
            refresh_token = self._issue_refresh_token(user_id)
        logger.info("Issued jwt for user %s (refresh=%s)", user_id, refresh_token is not None)
        return TokenPair(token=token, refresh_token=refresh_token)

    def generate_for_refresh_token(self, refresh_token: str, payload: dict | None = None) -> TokenPair:
        """Mint a new bearer token from an encrypted refresh token.

        By default the refresh token is reused unchanged. With
        new_refresh_token() the old record is revoked and a new one issued.
        Raises InvalidRefreshToken when the value does not decrypt, is
        unknown, revoked, or its owner no longer exists.
        """
        flags = self._consume_flags()
        try:
            raw = self._codec().decrypt(refresh_token)
        except DecodeError as exc:
            raise InvalidRefreshToken() from exc
        record = self._tokens().find_active(raw, TokenType.REFRESH)
        if record is None:
            raise InvalidRefreshToken()
        try:
            user = self.locator.find_by_id(record.user_id)
        except UserNotFound as exc:
            raise InvalidRefreshToken() from exc

        token = self._encode(record.user_id, payload)
        if flags.new_refresh_token:
            self._tokens().revoke(raw)
            refresh_token = self._issue_refresh_token(record.user_id)
            logger.info("Rotated refresh token for user %s", record.user_id)
        self._set_user(user)
        return TokenPair(token=token, refresh_token=refresh_token)

    # ------------------------------------------------------------------
    # Verifying
    # ------------------------------------------------------------------

    def check(self) -> bool:
        """Verify the bearer token on this request and resolve its user.

        Raises CredentialsMissing (no token) or InvalidToken (bad signature,
        expired, not yet valid, claim mismatch, or unknown user).
        """
        if self.user is not None:
            return True
        token = bearer_token(self.context.headers, self.context.params)
        if token is None:
            raise CredentialsMissing()
        claims = self._decode(token)
        try:
            user = self.locator.find_by_id(claims["uid"])
        except UserNotFound as exc:
            raise InvalidToken() from exc
        self._identity.claims = claims
        self._set_user(user)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _encode(self, user_id: Any, payload: dict | None) -> str:
        opts = self.options
        now = int(datetime.now(timezone.utc).timestamp())
        claims: dict[str, Any] = {"uid": user_id, "iat": now}
        if self.authenticator:
            claims["authenticator"] = self.authenticator
        if payload:
            claims["data"] = payload
        if opts.expires_in is not None:
            claims["exp"] = now + opts.expires_in
        if opts.not_before is not None:
            claims["nbf"] = now + opts.not_before
        if opts.audience:
            claims["aud"] = opts.audience
        if opts.issuer:
            claims["iss"] = opts.issuer
        if opts.subject:
            claims["sub"] = opts.subject
        return jwt.encode(claims, self._signing_key, algorithm=opts.algorithm)

    def _decode(self, token: str) -> dict:
        opts = self.options
        try:
            claims = jwt.decode(
                token,
                self._verify_key,
                algorithms=[opts.algorithm],
                audience=opts.audience,
                issuer=opts.issuer,
                subject=opts.subject,
                options={"leeway": opts.leeway},
            )
        except JWTError as exc:
            logger.debug("JWT rejected: %s", exc)
            raise InvalidToken() from exc
        if "uid" not in claims:
            raise InvalidToken()
        if claims.get("authenticator", "") != self.authenticator:
            # Signed for another authenticator; its uid belongs to another user table.
            raise InvalidToken()
        return claims

    def _issue_refresh_token(self, user_id: Any) -> str:
        value = generate_token_value()
        self._tokens().create(user_id, TokenType.REFRESH, value)
        return self._codec().encrypt(value)

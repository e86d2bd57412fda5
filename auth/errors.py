"""
auth/errors.py -- Exception taxonomy for the authentication engine.

Every failure the engine surfaces is an AuthError subclass carrying a stable
machine-readable `code`, a default human `message`, and a `status_code` hint
for the HTTP layer. The engine itself never builds HTTP responses;
auth/dependencies.py turns these into HTTPException.

Propagation rules:
  - Locators raise UserNotFound / StorageError.
  - Stores raise StorageError (wrapping SQLAlchemyError, never retried).
  - Codecs raise DecodeError (wrapping cryptography's InvalidToken).
  - Schemes translate "not found" and "password mismatch" into a single
    InvalidCredentials for attempt() [C1], but keep CredentialsMissing
    (nothing presented) distinct from InvalidToken (presented, rejected)
    for check().

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every authentication engine failure."""

    code: str = "auth_error"
    message: str = "Authentication failed."
    status_code: int = 401

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message

    def as_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class UserNotFound(AuthError):
    code = "user_not_found"
    message = "Cannot find user."


class InvalidCredentials(AuthError):
    """Raised by attempt() for both unknown uid and wrong password.

    The message is deliberately identical for both causes so that clients
    cannot enumerate uid values. The originating cause is kept on
    __cause__ for server-side logs only.
    """

    code = "invalid_credentials"
    message = "Invalid uid or password."


class PasswordMismatch(InvalidCredentials):
    """The password did not match. Only the stateless Basic check raises this directly."""

    code = "password_mismatch"


class CredentialsMissing(AuthError):
    code = "credentials_missing"
    message = "Authentication credentials were not provided."


class NotAuthenticated(AuthError):
    """Session check found neither a session identity nor a usable remember token."""

    code = "not_authenticated"
    message = "Authentication required."


class InvalidToken(AuthError):
    """A token was presented but is invalid, expired, revoked or undecodable."""

    code = "invalid_token"
    message = "The token is invalid or has been revoked."


class InvalidRefreshToken(InvalidToken):
    code = "invalid_refresh_token"
    message = "The refresh token is invalid or has been revoked."


class DecodeError(AuthError):
    """Encrypted payload was tampered with, truncated, or not ours."""

    code = "decode_error"
    message = "Unable to decode the encrypted payload."


class StorageError(AuthError):
    code = "storage_error"
    message = "Authentication storage is unavailable."
    status_code = 500


class ConfigurationError(AuthError):
    code = "configuration_error"
    message = "Authenticator is not configured correctly."
    status_code = 500


class UnsupportedOperation(AuthError):
    """The active scheme has no meaning for this verb (e.g. logout on basic)."""

    code = "unsupported_operation"
    message = "This operation is not supported by the active scheme."
    status_code = 400

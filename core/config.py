"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for Warden happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Nested authenticator config uses the
      "__" delimiter: AUTHENTICATORS__JWT__OPTIONS__EXPIRES_IN=900.

  AuthenticatorConfig: one named (serializer, scheme) pair. The engine's
      AuthManager resolves authenticators by name from Settings.authenticators.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Fernet token
       encryption and HS256 JWT signing both derive from it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. Tokens encrypted under a random per-process key
       would silently stop decrypting on restart.

Layer rule: core/ is the kernel. This module may not import from auth/.
"""

from __future__ import annotations

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, ImportString, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("warden.config")

# Five years, the lifetime of a remember-me cookie unless configured.
_FIVE_YEARS = 5 * 365 * 24 * 60 * 60


class JwtOptions(BaseModel):
    """Signing and validation parameters for the jwt scheme.

    secret falls back to Settings.secret_key when empty. public_key is only
    needed for asymmetric algorithms (RS*/ES*), where secret holds the
    private key used for signing.

    expires_in / not_before are offsets in seconds from the issue time.
    leeway is the clock-skew tolerance applied to exp/nbf at verification.
    """

    secret: str = ""
    public_key: str = ""
    algorithm: str = "HS256"
    expires_in: int | None = None
    not_before: int | None = None
    audience: str | None = None
    issuer: str | None = None
    subject: str | None = None
    leeway: int = 0


class AuthenticatorConfig(BaseModel):
    """One named authenticator: how users are found and how state travels.

    serializer "orm" needs model (a SQLAlchemy mapped class or its dotted
    import path); serializer "database" needs table (reflected from the
    engine unless it is already registered on the store metadata).
    """

    serializer: Literal["orm", "database"] = "database"
    scheme: Literal["session", "basic", "jwt", "api"] = "session"
    model: ImportString | None = None
    table: str | None = None
    uid: str = "email"
    password: str = "password"  # noqa: S105 -- column name, not a secret
    primary_key: str = "id"
    tokens_table: str = "tokens"
    foreign_key: str = "user_id"
    options: JwtOptions = JwtOptions()

    @model_validator(mode="after")
    def validate_serializer_target(self) -> "AuthenticatorConfig":
        if self.serializer == "orm" and self.model is None:
            raise ValueError("serializer 'orm' requires a model.")
        if self.serializer == "database" and not self.table:
            raise ValueError("serializer 'database' requires a table.")
        return self


def _default_authenticators() -> dict[str, AuthenticatorConfig]:
    """One database-backed authenticator per scheme, all over the users table."""
    return {
        name: AuthenticatorConfig(serializer="database", scheme=name, table="users")
        for name in ("session", "basic", "jwt", "api")
    }


class Settings(BaseSettings):
    """Engine settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true). The
    model_validators enforce production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///warden.db"

    # ------------------------------------------------------------------
    # Authenticators
    # ------------------------------------------------------------------

    authenticator: str = "session"
    authenticators: dict[str, AuthenticatorConfig] = Field(default_factory=_default_authenticators)

    # ------------------------------------------------------------------
    # Session scheme
    # ------------------------------------------------------------------

    session_key: str = "warden_auth"
    remember_cookie: str = "warden_remember_token"
    remember_expires_in: int = _FIVE_YEARS
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Encrypted tokens will not survive restart -- acceptable locally.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Issued tokens will not decrypt after a restart."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_default_authenticator(self) -> "Settings":
        """The default authenticator must name a configured entry."""
        if self.authenticator not in self.authenticators:
            raise ValueError(
                f"AUTHENTICATOR={self.authenticator!r} is not configured. "
                f"Known authenticators: {sorted(self.authenticators)}"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    All modules should call get_settings() rather than constructing Settings()
    directly. In tests: call get_settings.cache_clear() between test cases if
    you need to inject different environment variables, or pass an explicit
    Settings(...) into AuthManager.
    """
    return Settings()

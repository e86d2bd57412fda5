"""
auth/manager.py -- Authenticator resolution and the uniform operation surface.

Two layers, split by lifetime:

  AuthFactory (process-wide, built once at startup)
      Owns the stateless collaborators: SQLAlchemy engine, Hasher,
      TokenCodec, and one locator and one token store per configured
      authenticator. Holds no per-request or per-user state.

  AuthManager (one per request)
      Bound to that request's HttpContext. authenticator(name) returns the
      scheme for a configured (serializer, scheme) pair; the default comes
      from Settings.authenticator. Every verb on the manager delegates to
      the default authenticator's scheme.

Authenticators are isolated from each other. A session authenticator keeps
its identity under its own session key and remember cookie: the configured
names suffixed with "_<authenticator>". Token stores only see the rows their
authenticator issued. JWTs carry the name of the issuing authenticator.

Scheme and serializer variants are closed sets (SCHEMES in auth/schemes,
build_locator in auth/serializers); unknown names raise ConfigurationError.

Usage:
    factory = AuthFactory(get_settings())
    auth = factory.manager(HttpContext.from_request(request))
    auth.remember(True).attempt("a@x.com", "secret")
    auth.authenticator("jwt").with_refresh_token().attempt("a@x.com", "secret")
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy.engine import Engine

from auth.codec import TokenCodec
from auth.context import HttpContext
from auth.errors import ConfigurationError
from auth.hashing import Hasher
from auth.models import Token
from auth.schemes import SCHEMES, BaseScheme, JwtScheme, SessionScheme
from auth.serializers import UserLocator, build_locator
from auth.store import SqlTokenStore, TokenStore, create_database_engine
from core.config import AuthenticatorConfig, Settings

logger = logging.getLogger("warden.auth")


class AuthFactory:
    """Process-wide registry of locators, token stores and codecs."""

    def __init__(
        self,
        settings: Settings,
        engine: Engine | None = None,
        hasher: Hasher | None = None,
        codec: TokenCodec | None = None,
    ) -> None:
        self.settings = settings
        self.engine = engine if engine is not None else create_database_engine(settings.database_url)
        self.hasher = hasher or Hasher()
        # Warm the timing-equalization digest so the first unknown uid costs
        # one bcrypt check like every later one.
        self.hasher.dummy_digest()
        self.codec = codec or TokenCodec.from_secret(settings.secret_key)
        self._locators: dict[str, UserLocator] = {}
        self._token_stores: dict[str, TokenStore] = {}

    def config(self, name: str) -> AuthenticatorConfig:
        try:
            return self.settings.authenticators[name]
        except KeyError:
            raise ConfigurationError(f"Authenticator {name!r} is not configured.") from None

    def locator(self, name: str) -> UserLocator:
        if name not in self._locators:
            config = self.config(name)
            self._locators[name] = build_locator(config.serializer, self.engine, self.hasher, config)
        return self._locators[name]

    def token_store(self, name: str) -> TokenStore:
        """Token store confined to the rows the named authenticator issued."""
        if name not in self._token_stores:
            config = self.config(name)
            self._token_stores[name] = SqlTokenStore(
                self.engine, config.tokens_table, config.foreign_key, authenticator=name
            )
        return self._token_stores[name]

    def build_scheme(self, name: str, context: HttpContext) -> BaseScheme:
        """Construct a fresh scheme instance for one request."""
        config = self.config(name)
        scheme_cls = SCHEMES.get(config.scheme)
        if scheme_cls is None:
            raise ConfigurationError(f"Unknown scheme {config.scheme!r} for authenticator {name!r}.")
        kwargs: dict[str, Any] = {
            "locator": self.locator(name),
            "context": context,
            "authenticator": name,
        }
        if scheme_cls.token_type is not None:
            kwargs["token_store"] = self.token_store(name)
            kwargs["codec"] = self.codec
        if scheme_cls is SessionScheme:
            kwargs.update(
                session_key=f"{self.settings.session_key}_{name}",
                remember_cookie=f"{self.settings.remember_cookie}_{name}",
                remember_expires_in=self.settings.remember_expires_in,
            )
        elif scheme_cls is JwtScheme:
            kwargs.update(options=config.options, secret=self.settings.secret_key)
        return scheme_cls(**kwargs)

    def manager(self, context: HttpContext) -> "AuthManager":
        return AuthManager(self, context)

    def close(self) -> None:
        self.engine.dispose()


class AuthManager:
    """Request-scoped entry point. Delegates every verb to the active scheme."""

    def __init__(self, factory: AuthFactory, context: HttpContext) -> None:
        self.factory = factory
        self.context = context
        self.default = factory.settings.authenticator
        self._schemes: dict[str, BaseScheme] = {}

    def authenticator(self, name: str | None = None) -> BaseScheme:
        """Return this request's scheme for the named (or default) authenticator.

        Instances are cached per manager, so repeated calls within one request
        see the same resolved user. Nothing is shared across requests.
        """
        name = name or self.default
        if name not in self._schemes:
            self._schemes[name] = self.factory.build_scheme(name, self.context)
        return self._schemes[name]

    @property
    def scheme(self) -> BaseScheme:
        return self.authenticator()

    @property
    def user(self) -> Any:
        return self.scheme.user

    # ------------------------------------------------------------------
    # Delegated surface
    # ------------------------------------------------------------------

    def attempt(self, uid: Any, password: str, *args: Any) -> Any:
        return self.scheme.attempt(uid, password, *args)

    def check(self) -> bool:
        return self.scheme.check()

    def get_user(self) -> Any:
        return self.scheme.get_user()

    def login_if_can(self) -> bool:
        return self.scheme.login_if_can()

    def validate(self, uid: Any, password: str) -> bool:
        return self.scheme.validate(uid, password)

    def login(self, user: Any) -> Any:
        return self.scheme.login(user)

    def login_via_id(self, user_id: Any) -> Any:
        return self.scheme.login_via_id(user_id)

    def logout(self) -> None:
        self.scheme.logout()

    def generate(self, user: Any, *args: Any) -> Any:
        return self.scheme.generate(user, *args)

    def generate_for_refresh_token(self, refresh_token: str, payload: dict | None = None) -> Any:
        return self.scheme.generate_for_refresh_token(refresh_token, payload)

    def list_tokens(self) -> list[Token]:
        return self.scheme.list_tokens()

    def revoke_tokens(self, tokens: Iterable[str] | None = None) -> int:
        return self.scheme.revoke_tokens(tokens)

    def revoke_tokens_for_user(self, user: Any, tokens: Iterable[str] | None = None) -> int:
        return self.scheme.revoke_tokens_for_user(user, tokens)

    def remember(self, flag: bool = True) -> BaseScheme:
        return self.scheme.remember(flag)

    def with_refresh_token(self) -> BaseScheme:
        return self.scheme.with_refresh_token()

    def new_refresh_token(self) -> BaseScheme:
        return self.scheme.new_refresh_token()

"""
tests/conftest.py -- Shared fixtures for the authentication engine tests.

This module provides:
  - engine: a SQLite file DB under tmp_path (one per test, fully isolated)
  - settings: explicit Settings with every scheme configured over `users`,
    plus "orm", "orm_api" and "orm_jwt" authenticators over the Account
    model defined below
  - factory: AuthFactory wired to the test engine with a fast Hasher
  - user / user_id: one account on the default users table
  - make_auth(): build a request-scoped AuthManager from headers/cookies/session

Design: a real on-disk SQLite file rather than ':memory:' because every store
method opens its own pooled connection; a plain ':memory:' DB would present
a blank schema to each new connection.

The DEBUG env var must be set before any core/auth import so get_settings()
can auto-generate SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator

# CRITICAL: Set DEBUG before any auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from sqlalchemy import Integer, String, Text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from auth.context import HttpContext
from auth.hashing import Hasher
from auth.manager import AuthFactory, AuthManager
from auth.store import UserStore, create_database_engine
from core.config import AuthenticatorConfig, JwtOptions, Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"  # noqa: S105
EMAIL = "a@x.com"
PASSWORD = "secret"  # noqa: S105

# ---------------------------------------------------------------------------
# ORM model used by the "orm" serializer tests
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    pass


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    login: Mapped[str] = mapped_column(String(120), unique=True)
    password_hash: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[int] = mapped_column(Integer, default=1)


# ---------------------------------------------------------------------------
# Engine / settings / factory
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    eng = create_database_engine(f"sqlite:///{tmp_path / 'warden_test.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        debug=True,
        secret_key=TEST_SECRET,
        database_url=f"sqlite:///{tmp_path / 'warden_test.db'}",
        authenticator="session",
        authenticators={
            "session": AuthenticatorConfig(serializer="database", scheme="session", table="users"),
            "basic": AuthenticatorConfig(serializer="database", scheme="basic", table="users"),
            "jwt": AuthenticatorConfig(
                serializer="database",
                scheme="jwt",
                table="users",
                options=JwtOptions(expires_in=900, audience="warden-tests", issuer="warden"),
            ),
            "api": AuthenticatorConfig(serializer="database", scheme="api", table="users"),
            "orm": AuthenticatorConfig(
                serializer="orm",
                scheme="session",
                model=Account,
                uid="login",
                password="password_hash",  # noqa: S106
            ),
            "orm_api": AuthenticatorConfig(
                serializer="orm",
                scheme="api",
                model=Account,
                uid="login",
                password="password_hash",  # noqa: S106
            ),
            "orm_jwt": AuthenticatorConfig(
                serializer="orm",
                scheme="jwt",
                model=Account,
                uid="login",
                password="password_hash",  # noqa: S106
                options=JwtOptions(expires_in=900, audience="warden-tests", issuer="warden"),
            ),
        },
    )


@pytest.fixture
def hasher() -> Hasher:
    # Minimum bcrypt cost keeps the suite fast; verification logic is identical.
    return Hasher(rounds=4)


@pytest.fixture
def factory(settings: Settings, engine: Engine, hasher: Hasher) -> AuthFactory:
    return AuthFactory(settings, engine=engine, hasher=hasher)


@pytest.fixture
def user_store(engine: Engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def user_id(user_store: UserStore, hasher: Hasher) -> int:
    return user_store.create_user(email=EMAIL, password=hasher.hash(PASSWORD), username="alice")


@pytest.fixture
def make_auth(factory: AuthFactory) -> Callable[..., AuthManager]:
    """Return a builder for request-scoped managers.

    Each call simulates a new inbound request. Pass the same `session` dict
    to model a browser keeping its session cookie between requests.
    """

    def _make(
        headers: dict | None = None,
        cookies: dict | None = None,
        session: dict | None = None,
        params: dict | None = None,
    ) -> AuthManager:
        context = HttpContext(
            headers=headers or {},
            cookies=cookies or {},
            session=session if session is not None else {},
            params=params or {},
        )
        return factory.manager(context)

    return _make

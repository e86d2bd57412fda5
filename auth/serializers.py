"""
auth/serializers.py -- User Locators: how a user record is found and validated.

Two closed variants behind the UserLocator protocol:
  OrmLocator      -- SQLAlchemy ORM: a mapped model class queried through a
                     short-lived Session. Returns model instances.
  DatabaseLocator -- SQLAlchemy Core: a Table (the bundled `users` table or
                     one reflected from the engine). Returns UserRecord views.

Both are read-only. They raise UserNotFound when no record matches and
StorageError on backend failure. They never raise InvalidCredentials --
deciding whether "no such user" and "wrong password" are reported
separately is the scheme's job.

query(callback) returns a constrained copy of a locator. The callback gets
the column namespace (model class or Table.c) and returns a where-clause,
e.g. `locator.query(lambda c: c.is_active == 1)`.

Layer rule: no imports from core/ -- configuration is passed in.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import Any, Protocol

from sqlalchemy import MetaData, Table, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from auth.errors import ConfigurationError, UserNotFound
from auth.hashing import Hasher
from auth.models import UserRecord
from auth.store import metadata as store_metadata
from auth.store import storage_errors

logger = logging.getLogger("warden.auth.serializers")

QueryCallback = Callable[[Any], Any]


class UserLocator(Protocol):
    hasher: Hasher
    uid: str
    password: str
    primary_key: str

    def find_by_uid(self, uid_value: Any) -> Any: ...

    def find_by_id(self, primary_key: Any) -> Any: ...

    def validate_credentials(self, user: Any, plain_password: str) -> bool: ...

    def primary_key_of(self, user: Any) -> Any: ...

    def password_of(self, user: Any) -> str | None: ...

    def query(self, callback: QueryCallback) -> "UserLocator": ...


class _BaseLocator:
    """Shared accessors; subclasses implement the two lookups."""

    def __init__(
        self,
        engine: Engine,
        hasher: Hasher,
        uid: str = "email",
        password: str = "password",  # noqa: S107 -- column name
        primary_key: str = "id",
    ) -> None:
        self.engine = engine
        self.hasher = hasher
        self.uid = uid
        self.password = password
        self.primary_key = primary_key
        self._constraints: tuple[QueryCallback, ...] = ()

    def query(self, callback: QueryCallback):
        """Return a copy whose lookups also apply callback's where-clause."""
        clone = copy.copy(self)
        clone._constraints = self._constraints + (callback,)
        return clone

    def primary_key_of(self, user: Any) -> Any:
        return getattr(user, self.primary_key)

    def password_of(self, user: Any) -> str | None:
        return getattr(user, self.password, None)

    def validate_credentials(self, user: Any, plain_password: str) -> bool:
        """Compare plain_password against the user's stored digest."""
        return self.hasher.verify(plain_password, self.password_of(user))

    def find_by_uid(self, uid_value: Any) -> Any:
        user = self._first(self.uid, uid_value)
        if user is None:
            logger.debug("No user matches %s lookup", self.uid)
            raise UserNotFound()
        return user

    def find_by_id(self, primary_key: Any) -> Any:
        user = self._first(self.primary_key, primary_key)
        if user is None:
            raise UserNotFound()
        return user

    def _first(self, column: str, value: Any) -> Any:
        raise NotImplementedError


class DatabaseLocator(_BaseLocator):
    """Query-builder locator over a SQLAlchemy Core Table.

    Usage:
        locator = DatabaseLocator(engine, hasher, table="users", uid="email")
        user = locator.find_by_uid("a@x.com")      # -> UserRecord
        locator.validate_credentials(user, "secret")
    """

    def __init__(self, engine: Engine, hasher: Hasher, table: str | Table = "users", **columns: str) -> None:
        super().__init__(engine, hasher, **columns)
        self._table_ref = table
        self._table: Table | None = table if isinstance(table, Table) else None

    @property
    def table(self) -> Table:
        """Resolve the table lazily: bundled metadata first, then reflection."""
        if self._table is None:
            name = self._table_ref
            if name in store_metadata.tables:
                table = store_metadata.tables[name]
            else:
                with storage_errors(f"reflect table {name}"):
                    table = Table(name, MetaData(), autoload_with=self.engine)
            for column in (self.uid, self.primary_key):
                if column not in table.c:
                    raise ConfigurationError(f"Table {table.name!r} has no column {column!r}.")
            self._table = table
        return self._table

    def _first(self, column: str, value: Any) -> UserRecord | None:
        table = self.table
        query = select(table).where(table.c[column] == value)
        for constraint in self._constraints:
            query = query.where(constraint(table.c))
        with storage_errors(f"find user by {column}"), self.engine.connect() as conn:
            row = conn.execute(query.limit(1)).fetchone()
        return UserRecord(row._mapping) if row is not None else None


class OrmLocator(_BaseLocator):
    """ORM locator over a SQLAlchemy mapped class.

    Each lookup opens and closes its own Session. Returned instances are
    detached, with their column attributes already loaded; relationship
    loading is the application's concern.

    Usage:
        locator = OrmLocator(engine, hasher, model=Account, uid="email")
        account = locator.find_by_id(1)            # -> Account instance
    """

    def __init__(self, engine: Engine, hasher: Hasher, model: type, **columns: str) -> None:
        super().__init__(engine, hasher, **columns)
        if model is None:
            raise ConfigurationError("OrmLocator requires a mapped model class.")
        self.model = model
        for column in (self.uid, self.primary_key):
            if not hasattr(model, column):
                raise ConfigurationError(f"Model {model.__name__} has no attribute {column!r}.")

    def _first(self, column: str, value: Any) -> Any:
        query = select(self.model).where(getattr(self.model, column) == value)
        for constraint in self._constraints:
            query = query.where(constraint(self.model))
        with storage_errors(f"find user by {column}"), Session(self.engine, expire_on_commit=False) as session:
            return session.scalars(query.limit(1)).first()


def build_locator(serializer: str, engine: Engine, hasher: Hasher, config: Any) -> UserLocator:
    """Factory keyed by the configured serializer name (closed set)."""
    columns = {"uid": config.uid, "password": config.password, "primary_key": config.primary_key}
    if serializer == "database":
        return DatabaseLocator(engine, hasher, table=config.table, **columns)
    if serializer == "orm":
        return OrmLocator(engine, hasher, model=config.model, **columns)
    raise ConfigurationError(f"Unknown serializer {serializer!r}.")

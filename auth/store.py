"""
auth/store.py -- SQLAlchemy Core persistence for users and secondary tokens.

Pattern: Repository + Data Mapper. SqlTokenStore is the token repository;
_row_to_token is the mapper. Schemes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  find_active() filters revoked and expired rows inside the WHERE clause of
  the lookup itself. A separate "fetch then check is_revoked" would leave a
  window in which a token revoked between the two steps still authenticates.

  Each row records the authenticator that issued it and every query filters
  on it. Owner ids from different user tables can collide, so a token is
  only ever resolved by the authenticator it was issued for.

  Rows are never deleted. Revocation sets is_revoked=1 so the audit trail
  survives and a revoked value can never be re-activated.

Consistency:
  Every method opens its own connection and commits before returning, so a
  revocation is visible to the very next find_active() on any connection.
  There is no cache layer in front of the table.

Failure semantics:
  SQLAlchemyError is wrapped in StorageError and re-raised. Nothing here is
  retried; retry policy belongs to the storage backend or the caller.

Layer rule: no imports from core/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    or_,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import StorageError
from auth.models import Token, TokenType

logger = logging.getLogger("warden.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

# Default users table for the "database" serializer. Applications with their
# own schema point AuthenticatorConfig.table at it instead; the locator
# reflects unknown tables from the engine.
users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(254), nullable=False, unique=True),
    Column("username", String(80)),
    Column("password", Text),  # bcrypt digest; NULL = cannot log in with a password
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)


def tokens_table(name: str = "tokens", foreign_key: str = "user_id") -> Table:
    """Return (defining on first use) the tokens table with the given names.

    The owning-user column name is configurable per authenticator, so the
    Table is built lazily and registered on the shared metadata.
    """
    if name in metadata.tables:
        return metadata.tables[name]
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column(foreign_key, Integer, nullable=False),
        Column("token", String(255), nullable=False, unique=True),
        Column("type", String(30), nullable=False),
        # Name of the authenticator that issued the token. Owner ids are only
        # meaningful within that authenticator's user table.
        Column("authenticator", String(64), nullable=False, server_default=""),
        Column("is_revoked", Integer, nullable=False, server_default="0"),
        Column("expires_at", String(32)),  # ISO 8601 UTC; NULL = until revoked
        Column("created_at", String(32), nullable=False),
        Index(f"ix_{name}_{foreign_key}_type", "authenticator", foreign_key, "type"),
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_database_engine(db_url: str) -> Engine:
    """Create an Engine with the SQLite adjustments every store relies on."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _to_iso(moment: datetime | None) -> str | None:
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def generate_token_value() -> str:
    """Return a new raw token value: 40 random bytes as 80 hex characters."""
    return secrets.token_hex(40)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into StorageError. No retry."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Storage failure during %s: %s", operation, exc.__class__.__name__)
        raise StorageError() from exc


# ---------------------------------------------------------------------------
# Token store interface
# ---------------------------------------------------------------------------


class TokenStore(Protocol):
    """What a token storage backend must provide to the schemes."""

    def create(
        self, user_id: Any, type: TokenType, token_value: str, expires_at: datetime | None = None
    ) -> Token: ...

    def find_active(self, token_value: str, type: TokenType) -> Token | None: ...

    def revoke(self, token_value: str) -> int: ...

    def revoke_many(self, user_id: Any, token_values: Iterable[str], type: TokenType | None = None) -> int: ...

    def revoke_all_for_user(self, user_id: Any, type: TokenType | None = None) -> int: ...

    def revoke_all_tokens(self) -> int: ...

    def list_for_user(self, user_id: Any, type: TokenType, include_revoked: bool = False) -> list[Token]: ...


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SqlTokenStore:
    """SQLAlchemy Core implementation of TokenStore.

    Usage:
        store = SqlTokenStore(engine, authenticator="api")
        token = store.create(user_id, TokenType.API, generate_token_value())
        store.find_active(token.token, TokenType.API)   # -> Token
        store.revoke(token.token)
        store.find_active(token.token, TokenType.API)   # -> None

    Every read and write is confined to rows issued by `authenticator`. Two
    authenticators sharing one tokens table never see each other's tokens,
    even where their owner ids collide across different user tables.
    """

    def __init__(
        self, engine: Engine, table: str = "tokens", foreign_key: str = "user_id", authenticator: str = ""
    ) -> None:
        self.engine = engine
        self.foreign_key = foreign_key
        self.authenticator = authenticator
        self.table = tokens_table(table, foreign_key)
        with storage_errors("create tokens table"):
            self.table.create(self.engine, checkfirst=True)

    @property
    def _owner(self):
        return self.table.c[self.foreign_key]

    def _scoped(self, clause):
        return (self.table.c.authenticator == self.authenticator) & clause

    def create(
        self, user_id: Any, type: TokenType, token_value: str, expires_at: datetime | None = None
    ) -> Token:
        """Persist a new token and return it with its assigned id.

        Callers needing transactional issuance must wrap this in a transaction
        at the storage layer; once this returns the row is committed.
        """
        created_at = _now_iso()
        values = {
            self.foreign_key: user_id,
            "token": token_value,
            "type": TokenType(type).value,
            "authenticator": self.authenticator,
            "is_revoked": 0,
            "expires_at": _to_iso(expires_at),
            "created_at": created_at,
        }
        with storage_errors("create token"), self.engine.connect() as conn:
            result = conn.execute(self.table.insert().values(**values))
            conn.commit()
        logger.info("Issued %s token for user %s", TokenType(type).value, user_id)
        return Token(
            id=result.inserted_primary_key[0],
            user_id=user_id,
            token=token_value,
            type=TokenType(type),
            authenticator=self.authenticator,
            is_revoked=False,
            expires_at=values["expires_at"],
            created_at=created_at,
        )

    def find_active(self, token_value: str, type: TokenType) -> Token | None:
        """Return the token if it exists, matches type, is not revoked and not expired."""
        t = self.table
        query = t.select().where(
            self._scoped(t.c.token == token_value)
            & (t.c.type == TokenType(type).value)
            & (t.c.is_revoked == 0)
            & or_(t.c.expires_at.is_(None), t.c.expires_at > _now_iso())
        )
        with storage_errors("find token"), self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return self._row_to_token(row) if row is not None else None

    def get(self, token_value: str) -> Token | None:
        """Return the token row regardless of state. Used for audits and tests."""
        with storage_errors("get token"), self.engine.connect() as conn:
            query = self.table.select().where(self._scoped(self.table.c.token == token_value))
            row = conn.execute(query).fetchone()
        return self._row_to_token(row) if row is not None else None

    def revoke(self, token_value: str) -> int:
        """Revoke one token. Revoking an already-revoked token is a no-op success."""
        return self._revoke(self.table.c.token == token_value, "revoke token")

    def revoke_many(self, user_id: Any, token_values: Iterable[str], type: TokenType | None = None) -> int:
        """Revoke the given tokens, but only those owned by user_id (IDOR guard)."""
        values = list(token_values)
        if not values:
            return 0
        clause = (self._owner == user_id) & self.table.c.token.in_(values)
        if type is not None:
            clause = clause & (self.table.c.type == TokenType(type).value)
        return self._revoke(clause, "revoke tokens")

    def revoke_all_for_user(self, user_id: Any, type: TokenType | None = None) -> int:
        clause = self._owner == user_id
        if type is not None:
            clause = clause & (self.table.c.type == TokenType(type).value)
        return self._revoke(clause, "revoke user tokens")

    def revoke_all_tokens(self) -> int:
        """Revoke every active token issued by this authenticator."""
        return self._revoke(self.table.c.is_revoked == 0, "revoke all tokens")

    def list_for_user(self, user_id: Any, type: TokenType, include_revoked: bool = False) -> list[Token]:
        """Return a user's tokens of one type in insertion order.

        By default only usable tokens are returned: revoked and expired rows
        are excluded. include_revoked=True returns the full history.
        """
        t = self.table
        clause = (self._owner == user_id) & (t.c.type == TokenType(type).value)
        if not include_revoked:
            clause = clause & (t.c.is_revoked == 0) & or_(t.c.expires_at.is_(None), t.c.expires_at > _now_iso())
        with storage_errors("list tokens"), self.engine.connect() as conn:
            rows = conn.execute(t.select().where(self._scoped(clause)).order_by(t.c.id)).fetchall()
        return [self._row_to_token(r) for r in rows]

    def _revoke(self, clause, operation: str) -> int:
        with storage_errors(operation), self.engine.connect() as conn:
            result = conn.execute(self.table.update().where(self._scoped(clause)).values(is_revoked=1))
            conn.commit()
        logger.info("%s: %d row(s) marked revoked", operation, result.rowcount)
        return result.rowcount

    # ------------------------------------------------------------------
    # Row mapper (Data Mapper pattern)
    # ------------------------------------------------------------------

    def _row_to_token(self, row) -> Token:
        mapping = row._mapping
        return Token(
            id=mapping["id"],
            user_id=mapping[self.foreign_key],
            token=mapping["token"],
            type=TokenType(mapping["type"]),
            authenticator=mapping["authenticator"],
            is_revoked=bool(mapping["is_revoked"]),
            expires_at=mapping["expires_at"],
            created_at=mapping["created_at"],
        )


class UserStore:
    """Writes to the default users table.

    The engine itself never mutates users; this exists for applications and
    tests that bootstrap accounts on the default schema.

    Usage:
        store = UserStore(engine)
        user_id = store.create_user(email="a@x.com", password=hash_password("secret"))
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        with storage_errors("create users table"):
            users.create(self.engine, checkfirst=True)

    def create_user(self, email: str, password: str | None = None, **fields: Any) -> int:
        """Insert a user and return its id.

        password must already be a digest. Raises StorageError (wrapping
        IntegrityError) if the email already exists.
        """
        values = {"email": email, "password": password, "created_at": _now_iso(), **fields}
        if "is_active" in values:
            values["is_active"] = 1 if values["is_active"] else 0
        with storage_errors("create user"), self.engine.connect() as conn:
            result = conn.execute(users.insert().values(**values))
            conn.commit()
        return result.inserted_primary_key[0]

    def deactivate(self, user_id: int) -> bool:
        with storage_errors("deactivate user"), self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(is_active=0))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user. Tokens owned by the user are left in place."""
        with storage_errors("delete user"), self.engine.connect() as conn:
            result = conn.execute(users.delete().where(users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0
"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and schemes do
the work; these only own the shape.

Layer rule: stdlib only.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


class TokenType(str, enum.Enum):
    """Kind of secondary credential. Stored verbatim in tokens.type."""

    REMEMBER = "remember"
    REFRESH = "refresh"
    API = "api"


@dataclass
class Token:
    """A secondary proof of identity owned by one user.

    Security design:
    - token is the raw value. It is stored in plaintext and only ever leaves
      the engine encrypted (auth/codec.py), so a database dump alone does not
      yield usable credentials without SECRET_KEY.
    - Tokens are never deleted. Revocation flips is_revoked, which keeps the
      audit trail and makes a revoked token permanently unusable.
    - expires_at is None for tokens that live until revoked.
    """

    user_id: Any
    token: str
    type: TokenType
    is_revoked: bool = False
    expires_at: str | None = None  # ISO 8601, UTC
    id: int | None = None
    created_at: str | None = None
    authenticator: str = ""  # issuing authenticator; owner ids are scoped to it


@dataclass(frozen=True)
class AuthContext:
    """Builder flags consumed by the next scheme verb.

    Frozen: remember() / with_refresh_token() / new_refresh_token() return a
    new scheme copy carrying a new context, never mutate a shared one.
    """

    remember: bool = False
    with_refresh_token: bool = False
    new_refresh_token: bool = False


@dataclass(frozen=True)
class TokenPair:
    """Result of attempt()/generate() on the stateless token schemes."""

    token: str
    type: str = "bearer"
    refresh_token: str | None = None

    def as_dict(self) -> dict:
        data = {"type": self.type, "token": self.token}
        if self.refresh_token is not None:
            data["refreshToken"] = self.refresh_token
        return data


class UserRecord:
    """Read-only attribute view over a users row from the database locator.

    The engine treats users as opaque records and only reads the uid,
    primary key and password columns through getattr, so a row mapping and
    an ORM instance look the same to the schemes.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any]) -> None:
        object.__setattr__(self, "_data", dict(data))

    def __getattr__(self, name: str) -> Any:
        try:
            return self._data[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("UserRecord is read-only")

    def __eq__(self, other: object) -> bool:
        return isinstance(other, UserRecord) and other._data == self._data

    def __hash__(self) -> int:
        return hash(tuple(sorted(self._data.items())))

    def __repr__(self) -> str:
        # Never render the password digest.
        shown = {k: v for k, v in self._data.items() if "password" not in k}
        return f"UserRecord({shown!r})"

    def as_dict(self) -> dict[str, Any]:
        return dict(self._data)

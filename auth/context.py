"""
auth/context.py -- Explicit per-request context handed to the schemes.

The schemes never reach for a global request object. Each request builds
one HttpContext holding exactly the inbound data they read (Authorization
header, query string, cookies, session mapping) and collecting the cookie
writes they want to make. Those writes land on the FastAPI response bound
at construction, or on any response passed to apply().

Cookie attributes for queued cookies follow the same policy as the access
cookie elsewhere in FastAPI apps:
  httponly=True     -- JS cannot read the remember token (XSS mitigation).
  samesite="lax"    -- not sent on cross-site POST (CSRF mitigation).
  secure            -- only over HTTPS when SECURE_COOKIES=true.

Layer rule: starlette types are only referenced in from_request()/apply().
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from typing import Any


@dataclass
class CookieWrite:
    name: str
    value: str | None  # None = delete
    max_age: int | None = None


@dataclass
class HttpContext:
    """Inbound request data plus pending cookie writes for one request.

    headers keys are stored lowercased; use header() for lookups.
    session is the request's server-side session mapping (Starlette's
    request.session under SessionMiddleware, or a plain dict in tests).
    """

    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    session: MutableMapping[str, Any] = field(default_factory=dict)
    secure_cookies: bool = False
    cookie_writes: list[CookieWrite] = field(default_factory=list)
    response: Any = None

    def __post_init__(self) -> None:
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    @classmethod
    def from_request(cls, request, response=None, secure_cookies: bool = False) -> "HttpContext":
        """Build the context from a Starlette/FastAPI Request.

        When response is given (FastAPI's injected Response), cookie writes
        are applied to it as they happen; otherwise call apply() yourself.

        A request without SessionMiddleware gets a throwaway dict session, so
        stateless schemes work on apps that never installed the middleware.
        """
        session: MutableMapping[str, Any] = request.session if "session" in request.scope else {}
        return cls(
            headers=dict(request.headers),
            cookies=dict(request.cookies),
            params=dict(request.query_params),
            session=session,
            secure_cookies=secure_cookies,
            response=response,
        )

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def cookie(self, name: str) -> str | None:
        """Return the inbound value, or the pending one if set during this request."""
        for write in reversed(self.cookie_writes):
            if write.name == name:
                return write.value
        return self.cookies.get(name)

    def queue_cookie(self, name: str, value: str, max_age: int | None = None) -> None:
        self._record(CookieWrite(name, value, max_age))

    def forget_cookie(self, name: str) -> None:
        self._record(CookieWrite(name, None))

    def _record(self, write: CookieWrite) -> None:
        self.cookie_writes.append(write)
        if self.response is not None:
            self._write(self.response, write)

    def apply(self, response) -> None:
        """Write every cookie change made during this request onto a Starlette Response."""
        for write in self.cookie_writes:
            self._write(response, write)

    def _write(self, response, write: CookieWrite) -> None:
        if write.value is None:
            response.delete_cookie(write.name)
        else:
            response.set_cookie(
                write.name,
                value=write.value,
                max_age=write.max_age,
                httponly=True,
                samesite="lax",
                secure=self.secure_cookies,
            )


def bearer_token(headers: Mapping[str, str], params: Mapping[str, str] | None = None) -> str | None:
    """Extract a bearer token from `Authorization: Bearer <t>` or ?token=<t>.

    Returns None when neither is present. The scheme prefix is matched
    case-insensitively.
    """
    auth_header = headers.get("authorization", "")
    scheme, _, value = auth_header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    if params:
        token = params.get("token", "").strip()
        if token:
            return token
    return None

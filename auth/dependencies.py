"""
auth/dependencies.py -- FastAPI Depends() helpers for the authentication engine.

The application builds one AuthFactory at startup and stores it on
app.state.auth_factory. Every request then gets its own AuthManager bound
to an HttpContext built from that request, so no authentication state is
shared between requests.

get_auth() is the base dependency (the request-scoped manager).
try_get_current_user() is the soft variant (returns None when not
authenticated). get_current_user() raises HTTP 401 carrying the engine's
error code. Storage/configuration failures are not swallowed by either.

Layer rule: this is the only auth/ module that imports fastapi.
"""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request, Response

from auth.context import HttpContext
from auth.errors import AuthError
from auth.manager import AuthFactory, AuthManager


def get_auth(request: Request, response: Response) -> AuthManager:
    """Return the AuthManager for this request.

    Cookie writes made by the schemes (remember-me) go straight onto FastAPI's
    injected response, which is merged into whatever the route returns.

    Use as a FastAPI dependency:
        @router.post("/login")
        def login(body: LoginBody, auth: AuthManager = Depends(get_auth)): ...
    """
    factory: AuthFactory = request.app.state.auth_factory
    context = HttpContext.from_request(request, response=response, secure_cookies=factory.settings.secure_cookies)
    return factory.manager(context)


def try_get_current_user(auth: AuthManager = Depends(get_auth)) -> Any | None:
    """Return the authenticated user, or None on any authentication rejection."""
    if auth.login_if_can():
        return auth.user
    return None


def get_current_user(auth: AuthManager = Depends(get_auth)) -> Any:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user = Depends(get_current_user)): ...
    """
    try:
        return auth.get_user()
    except AuthError as exc:
        raise http_error(exc) from exc


def http_error(exc: AuthError) -> HTTPException:
    """Translate an engine error into the HTTPException the API returns for it."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return HTTPException(status_code=exc.status_code, detail=exc.as_dict(), headers=headers)

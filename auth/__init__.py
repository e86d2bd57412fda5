"""auth/ -- Pluggable authentication engine.

Layer rule: auth/ imports stdlib, third-party libraries and core/ (config).
Only auth/dependencies.py imports fastapi; the rest of the engine works on
an explicit HttpContext and can be driven without a web framework.
"""

from auth.context import HttpContext
from auth.errors import (
    AuthError,
    ConfigurationError,
    CredentialsMissing,
    DecodeError,
    InvalidCredentials,
    InvalidRefreshToken,
    InvalidToken,
    NotAuthenticated,
    PasswordMismatch,
    StorageError,
    UnsupportedOperation,
    UserNotFound,
)
from auth.manager import AuthFactory, AuthManager
from auth.models import AuthContext, Token, TokenPair, TokenType, UserRecord

__all__ = [
    "AuthContext",
    "AuthError",
    "AuthFactory",
    "AuthManager",
    "ConfigurationError",
    "CredentialsMissing",
    "DecodeError",
    "HttpContext",
    "InvalidCredentials",
    "InvalidRefreshToken",
    "InvalidToken",
    "NotAuthenticated",
    "PasswordMismatch",
    "StorageError",
    "Token",
    "TokenPair",
    "TokenType",
    "UnsupportedOperation",
    "UserNotFound",
    "UserRecord",
]

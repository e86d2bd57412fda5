"""Authentication schemes: how authentication state travels across requests."""

from auth.schemes.api import ApiScheme
from auth.schemes.base import BaseScheme
from auth.schemes.basic import BasicScheme
from auth.schemes.jwt import JwtScheme
from auth.schemes.session import SessionScheme

SCHEMES: dict[str, type[BaseScheme]] = {
    "session": SessionScheme,
    "basic": BasicScheme,
    "jwt": JwtScheme,
    "api": ApiScheme,
}

__all__ = ["SCHEMES", "ApiScheme", "BaseScheme", "BasicScheme", "JwtScheme", "SessionScheme"]

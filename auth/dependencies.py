"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Three gates, each composing on the previous one:

  attach_identity()   -- optional authentication. Installed as an app-wide
                         dependency in api/main.py so it runs on every
                         request. No Authorization header -> identity None,
                         request continues. Header present but the token
                         does not verify -> 401 INVALID_TOKEN. Otherwise the
                         decoded claims become request.state.identity.

  require_identity()  -- required authentication. Never verifies anything
                         itself; only checks that attach_identity() produced
                         an identity. 401 AUTHENTICATION_REQUIRED otherwise.

  RoleGate(roles)     -- authorization. Built once per protected route with
                         an explicit set of allowed roles. 401 if no identity,
                         403 FORBIDDEN if the role is not in the set.

FastAPI caches a dependency's result per request, so attach_identity() runs
once even though every gate depends on it.

Verification is purely cryptographic (TokenIssuer.verify) -- no account
lookup per request. A token stays valid until its exp claim passes.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi because this module is part of
  the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Iterable

from fastapi import Depends, Request

from auth.models import Identity, Role
from auth.tokens import TokenIssuer
from core.errors import AuthenticationError, ForbiddenError, InvalidTokenError

_BEARER_PREFIX = "bearer "


def _bearer_token(request: Request) -> str | None:
    """Return the raw token from `Authorization: Bearer <token>`, or None if absent.

    A header that is not of the Bearer form counts as "no credential", the
    same as a missing header.
    """
    header = request.headers.get("Authorization", "")
    if not header.lower().startswith(_BEARER_PREFIX):
        return None
    return header[len(_BEARER_PREFIX) :].strip() or None


def attach_identity(request: Request) -> Identity | None:
    """Optional authentication: attach the caller's Identity when a valid token is present.

    Returns None (and sets request.state.identity = None) when no bearer
    credential was sent. Raises InvalidTokenError when one was sent but is
    malformed, badly signed or expired -- the three are not distinguished.
    """
    token = _bearer_token(request)
    if token is None:
        request.state.identity = None
        return None

    issuer: TokenIssuer = request.app.state.token_issuer
    identity = issuer.verify(token)
    if identity is None:
        raise InvalidTokenError()
    request.state.identity = identity
    return identity


def require_identity(identity: Identity | None = Depends(attach_identity)) -> Identity:
    """Require authentication. Raises HTTP 401 if no identity is attached.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(require_identity)): ...
    """
    if identity is None:
        raise AuthenticationError()
    return identity


class RoleGate:
    """Authorization gate for a fixed set of roles.

    Use as a FastAPI dependency:
        require_admin = RoleGate({Role.ADMIN})

        @router.get("/admin-only")
        def route(identity: Identity = Depends(require_admin)): ...
    """

    def __init__(self, allowed: Iterable[Role]) -> None:
        self.allowed: frozenset[Role] = frozenset(Role(r) for r in allowed)
        if not self.allowed:
            raise ValueError("RoleGate needs at least one allowed role.")

    def __call__(self, identity: Identity | None = Depends(attach_identity)) -> Identity:
        if identity is None:
            raise AuthenticationError()
        if identity.role not in self.allowed:
            raise ForbiddenError()
        return identity

    def __repr__(self) -> str:
        return f"RoleGate({sorted(r.value for r in self.allowed)!r})"


require_admin = RoleGate({Role.ADMIN})

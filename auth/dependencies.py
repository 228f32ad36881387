"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Credentials arrive as an Authorization: Bearer <token> header. Sessions are
self-contained signed tokens, so resolving a principal is a pure signature
and expiry check -- no database round trip.

get_principal() verifies a full token, attaches the Principal to
request.state.principal and returns it. Partial (MFA-pending) tokens are
rejected here; only the MFA routes accept them, via resolve_mfa_subject().

require_roles(*roles) is the role-check combinator. It reads the principal
that get_principal() attached rather than re-verifying, so it must be listed
after get_principal in a route's dependencies. If it finds no principal it
raises MissingCredentials instead of letting the request through.

principal_from_header() is the same verification without FastAPI, for other
consumers of session tokens (e.g. a websocket handshake).

Layer rule: may import from fastapi. No imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.errors import Forbidden, MissingCredentials
from auth.models import Principal, Role
from auth.tokens import TokenIssuer

_BEARER_PREFIX = "bearer "


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an Authorization header value, or None."""
    if not authorization or not authorization.lower().startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX) :].strip()
    return token or None


def principal_from_header(authorization: str | None, tokens: TokenIssuer) -> Principal:
    token = bearer_token(authorization)
    if token is None:
        raise MissingCredentials()
    return tokens.verify_full(token)


def get_principal(request: Request) -> Principal:
    """Require a full session token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_principal)): ...
    """
    tokens: TokenIssuer = request.app.state.auth.tokens
    principal = principal_from_header(request.headers.get("Authorization"), tokens)
    request.state.principal = principal
    return principal


def require_roles(*roles: Role) -> Callable[[Request], Principal]:
    """Build a dependency that admits only principals whose role is in roles.

    Use after get_principal:
        @router.get("/admin", dependencies=[Depends(get_principal), Depends(require_roles(Role.admin))])
    """
    allowed = frozenset(Role(r) for r in roles)

    def _check(request: Request) -> Principal:
        principal: Principal | None = getattr(request.state, "principal", None)
        if principal is None:
            raise MissingCredentials()
        if principal.role not in allowed:
            raise Forbidden()
        return principal

    return _check


def resolve_mfa_subject(request: Request, temp_token: str | None) -> int:
    """Resolve the user id for MFA enrollment from a partial or full token.

    The token may come from the request body (tempToken) or the bearer header.
    """
    tokens: TokenIssuer = request.app.state.auth.tokens
    token = temp_token or bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise MissingCredentials()
    return tokens.verify(token).subject

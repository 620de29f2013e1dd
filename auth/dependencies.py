"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Bearer tokens only: "Authorization: Bearer <token>". Resolution order is fixed:

  1. Revocation store -- a logged-out token is rejected before anything else.
  2. Token service   -- signature and expiry.
  3. Account store   -- the account must still exist and be enabled.

All three steps live in AuthOrchestrator.resolve(); this module only extracts
the header and turns failures into the standard 401 envelope.

get_bearer_token() is the soft variant (returns None when absent) used by
logout, which must succeed even without a usable token.
get_current_account() raises Unauthorized, rendered as HTTP 401.

Layer rule: may import from fastapi (Depends/Request) because this module is
part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import Unauthorized
from auth.models import Account
from auth.session import AuthOrchestrator


def get_bearer_token(request: Request) -> str | None:
    """Return the raw bearer token from the Authorization header, or None."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def get_orchestrator(request: Request) -> AuthOrchestrator:
    return request.app.state.orchestrator


def get_current_account(request: Request) -> Account:
    """Require a valid, unrevoked bearer token. Raises Unauthorized (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: Account = Depends(get_current_account)): ...
    """
    token = get_bearer_token(request)
    if token is None:
        raise Unauthorized("missing bearer token")
    return get_orchestrator(request).resolve(token)

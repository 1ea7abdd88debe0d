"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

The session cookie is the only credential. Resolution order:
  1. cookie "session_id" -> SessionStore.resolve() -> user id
  2. user id -> UserStore.get_by_id()
  3. blocked users resolve to None, so blocking takes effect on the very
     next request even if a session row survived.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises 401 if unauthenticated.
require_admin() wraps get_current_user() and raises 403 unless the user's
group carries the admin flag.

Guards never write to the stores. They run as dependencies, i.e. before
any handler body touches the credential store.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import Forbidden, Unauthenticated
from auth.models import User
from auth.sessions import COOKIE_NAME


def try_get_current_user(request: Request) -> User | None:
    """Resolve the session cookie to a User. Never raises."""
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        return None
    user_id = request.app.state.session_store.resolve(token)
    if user_id is None:
        return None
    user = request.app.state.user_store.get_by_id(user_id)
    if user is None or user.is_blocked:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require authentication. Raises Unauthenticated (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise Unauthenticated()
    return user


def require_admin(request: Request) -> User:
    """Require an admin. 401 if unauthenticated, 403 if not in an admin group."""
    user = get_current_user(request)
    if not request.app.state.user_store.is_admin(user):
        raise Forbidden("Admin access required.")
    return user

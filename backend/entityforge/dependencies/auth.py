"""FastAPI dependencies that expose the *current user* and capability guards.

The heavy lifting (development bypass vs. JWT validation) is implemented in
strategy classes under :mod:`entityforge.auth.strategy`.  At *import time* we
pick the concrete implementation based on ``settings.auth_disabled`` so that
the actual request handlers remain branch-free.
"""

from __future__ import annotations

from fastapi import Depends
from fastapi import HTTPException
from fastapi import Request
from fastapi import status
from sqlalchemy.orm import Session

from entityforge.auth.strategy import DevAuthStrategy
from entityforge.auth.strategy import JWTAuthStrategy
from entityforge.config import get_settings
from entityforge.database import get_db
from entityforge.models.enums import Capability
from entityforge.models.enums import UserRole
from entityforge.schemas.schemas import Actor

_settings = get_settings()

# Tests patch this flag to exercise the JWT path.
AUTH_DISABLED: bool = _settings.auth_disabled  # noqa: N816

# ---------------------------------------------------------------------------
# Strategy selector – returns singleton per mode, toggles when flag patched.
# ---------------------------------------------------------------------------

_strategy_cache: dict[str, object] = {}


def _get_strategy():  # noqa: D401 – internal helper
    """Return *singleton* strategy instance based on ``AUTH_DISABLED`` flag."""

    if AUTH_DISABLED:
        if "dev" not in _strategy_cache:
            _strategy_cache["dev"] = DevAuthStrategy()
        return _strategy_cache["dev"]

    if "jwt" not in _strategy_cache:
        _strategy_cache["jwt"] = JWTAuthStrategy()
    return _strategy_cache["jwt"]


# ---------------------------------------------------------------------------
# Public dependencies
# ---------------------------------------------------------------------------


def get_current_user(request: Request, db: Session = Depends(get_db)):
    """Return the authenticated *User* row or raise **401**."""

    if "Authorization" not in request.headers and not AUTH_DISABLED:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _get_strategy().get_current_user(request, db)


def get_actor(current_user=Depends(get_current_user)) -> Actor:
    """Identity stamped on everything the request writes."""

    return Actor.from_user(current_user)


def has_capability(user, capability: str | Capability) -> bool:
    """ADMIN holds every capability; other users hold the configured set."""

    if user is None or not getattr(user, "is_active", True):
        return False
    name = capability.value if isinstance(capability, Capability) else capability
    role = getattr(user, "role", UserRole.USER.value)
    if role == UserRole.ADMIN.value:
        return True
    return name in get_settings().user_capability_set


def require_capability(capability: Capability):
    """Dependency factory: 403 unless the current user holds *capability*."""

    def _guard(current_user=Depends(get_current_user)):
        if not has_capability(current_user, capability):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing capability: {capability.value}",
            )
        return current_user

    return _guard


__all__ = [
    "get_current_user",
    "get_actor",
    "has_capability",
    "require_capability",
]

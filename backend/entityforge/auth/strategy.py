"""Authentication strategy abstraction.

Two interchangeable backends sit behind :class:`AuthStrategy`:

* :class:`DevAuthStrategy` – auth disabled (local development, tests); every
  request resolves to the ``dev@local`` user.
* :class:`JWTAuthStrategy` – HS256 bearer tokens whose ``sub`` claim is the
  user id.

The concrete strategy is chosen once, in
:mod:`entityforge.dependencies.auth`, so request handlers stay branch-free.
"""

from __future__ import annotations

from abc import ABC
from abc import abstractmethod
from typing import Any

from fastapi import HTTPException
from fastapi import Request
from fastapi import status
from jose import JWTError
from jose import jwt
from sqlalchemy.orm import Session

from entityforge.config import get_settings
from entityforge.crud import crud
from entityforge.models.enums import UserRole

# ---------------------------------------------------------------------------
# Strategy base-class
# ---------------------------------------------------------------------------


class AuthStrategy(ABC):
    """Pluggable authentication backend (strategy pattern)."""

    @abstractmethod
    def get_current_user(self, request: Request, db: Session):  # noqa: D401 – abstract
        """Return the authenticated user or raise **401**."""


# ---------------------------------------------------------------------------
# Development-mode bypass
# ---------------------------------------------------------------------------


class DevAuthStrategy(AuthStrategy):
    """Bypass all checks – used when *AUTH_DISABLED* is true or in tests."""

    DEV_EMAIL = "dev@local"

    def __init__(self):
        self._settings = get_settings()

    def _desired_role(self) -> str:
        if self._settings.dev_admin or self._settings.testing:
            return UserRole.ADMIN.value
        return UserRole.USER.value

    def _get_or_create_dev_user(self, db: Session):
        desired_role = self._desired_role()

        user = crud.get_user_by_email(db, self.DEV_EMAIL)
        if user is not None:
            if getattr(user, "role", UserRole.USER.value) != desired_role:
                user = crud.set_user_role(db, user, desired_role)
            return user

        return crud.create_user(db, email=self.DEV_EMAIL, display_name="Developer", role=desired_role)

    def get_current_user(self, request: Request, db: Session):  # noqa: D401 – impl
        # Header content is irrelevant in dev mode.
        return self._get_or_create_dev_user(db)


# ---------------------------------------------------------------------------
# HS256 JWT validation (production)
# ---------------------------------------------------------------------------


class JWTAuthStrategy(AuthStrategy):
    """Production strategy that validates HS256 tokens."""

    def __init__(self):
        self._secret = get_settings().jwt_secret

    def _decode(self, token: str) -> dict[str, Any]:  # noqa: D401 – helper
        return jwt.decode(token, self._secret, algorithms=["HS256"])

    def get_current_user(self, request: Request, db: Session):  # noqa: D401 – impl
        auth_header: str | None = request.headers.get("Authorization")
        if not auth_header or not auth_header.lower().startswith("bearer "):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

        token = auth_header[7:].strip()
        if not token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

        try:
            payload = self._decode(token)
        except JWTError:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

        try:
            user_id_int = int(payload.get("sub"))
        except (TypeError, ValueError):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

        user = crud.get_user(db, user_id_int)
        if user is None or not getattr(user, "is_active", True):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found or inactive")

        return user


def issue_token(user_id: int, secret: str | None = None, **claims: Any) -> str:
    """Sign an HS256 token for *user_id* (used by scripts and the test-suite)."""

    payload = {"sub": str(user_id), **claims}
    return jwt.encode(payload, secret or get_settings().jwt_secret, algorithm="HS256")


__all__ = [
    "AuthStrategy",
    "DevAuthStrategy",
    "JWTAuthStrategy",
    "issue_token",
]

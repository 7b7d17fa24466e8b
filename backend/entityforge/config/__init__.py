"""Centralised configuration helper.

This module eliminates scattered ``os.getenv`` calls by exposing a **single**
process-wide :class:`Settings` instance (retrieved via :func:`get_settings`).

The values are read once per interpreter.  Tests that need different values
call :meth:`Settings.override` instead of patching the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# ``_REPO_ROOT`` points to the top-level repository directory (one level
# **above** the "backend" package).  We use ``parents[3]`` because this file is
# located at ``backend/entityforge/config/__init__.py``.

_REPO_ROOT = Path(__file__).resolve().parents[3]

# Capabilities a plain (non-admin) user holds unless USER_CAPABILITIES says
# otherwise.
_DEFAULT_USER_CAPABILITIES = "view_entities,view_entity_records"


def _truthy(value: str | None) -> bool:  # noqa: D401 – small helper
    """Return *True* when *value* looks like an affirmative string."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _csv(value: str) -> frozenset[str]:
    return frozenset(item.strip() for item in value.split(",") if item.strip())


@dataclass
class Settings:  # noqa: D401 – simple data container
    """Lightweight settings container populated from environment variables."""

    # Runtime flags -----------------------------------------------------
    testing: bool
    auth_disabled: bool

    # Secrets -----------------------------------------------------------
    jwt_secret: str

    # Database ---------------------------------------------------------
    database_url: str

    # Misc
    dev_admin: bool
    log_level: str
    environment: Any
    allowed_cors_origins: str

    # Pagination --------------------------------------------------------
    default_page_size: int
    max_page_size: int

    # Capabilities granted to users without the ADMIN role (csv list)
    user_capabilities: str

    @property
    def resolved_database_url(self) -> str:
        """Return the configured URL or the local default for this mode."""

        if self.database_url:
            return self.database_url
        return "sqlite:///:memory:" if self.testing else "sqlite:///./app.db"

    @property
    def user_capability_set(self) -> frozenset[str]:
        return _csv(self.user_capabilities)

    # Helper for tests to override values at runtime -------------------
    def override(self, **kwargs: Any) -> None:
        for key, value in kwargs.items():
            if not hasattr(self, key):
                raise AttributeError(f"Settings has no attribute '{key}'")
            setattr(self, key, value)


# ---------------------------------------------------------------------------
# Singleton accessor – values loaded only once per interpreter
# ---------------------------------------------------------------------------


def _load_settings() -> Settings:  # noqa: D401 – helper
    """Populate :class:`Settings` from environment variables."""

    node_env = os.getenv("NODE_ENV", "development")

    if node_env == "test":
        env_path = _REPO_ROOT / ".env.test"
        if not env_path.exists():
            env_path = _REPO_ROOT / ".env"
    else:
        env_path = _REPO_ROOT / ".env"

    if env_path.exists():
        # Explicit process environment wins over the file so that test
        # runners can force TESTING=1.
        load_dotenv(env_path, override=False)

    testing = _truthy(os.getenv("TESTING"))

    return Settings(
        testing=testing,
        auth_disabled=_truthy(os.getenv("AUTH_DISABLED")) or testing,
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret"),
        database_url=os.getenv("DATABASE_URL", ""),
        dev_admin=_truthy(os.getenv("DEV_ADMIN")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        environment=os.getenv("ENVIRONMENT"),
        allowed_cors_origins=os.getenv("ALLOWED_CORS_ORIGINS", ""),
        default_page_size=int(os.getenv("DEFAULT_PAGE_SIZE", "20")),
        max_page_size=int(os.getenv("MAX_PAGE_SIZE", "100")),
        user_capabilities=os.getenv("USER_CAPABILITIES", _DEFAULT_USER_CAPABILITIES),
    )


# ------------------------------------------------------------------
# Runtime validation – fail fast on settings that cannot work.
# ------------------------------------------------------------------


def validate_settings(settings: Settings) -> list[str]:
    """Return a list of human readable configuration problems (empty when OK)."""

    issues: list[str] = []

    if settings.default_page_size < 1:
        issues.append("DEFAULT_PAGE_SIZE must be >= 1")
    if settings.max_page_size < 1:
        issues.append("MAX_PAGE_SIZE must be >= 1")
    if settings.default_page_size > settings.max_page_size:
        issues.append("DEFAULT_PAGE_SIZE must not exceed MAX_PAGE_SIZE")
    if not settings.auth_disabled and settings.jwt_secret == "dev-secret":
        issues.append("JWT_SECRET must be set when authentication is enabled")

    return issues


@lru_cache(maxsize=1)
def get_settings() -> Settings:  # noqa: D401 – public accessor
    """Return the cached :class:`Settings` instance."""

    settings = _load_settings()

    issues = validate_settings(settings)
    if issues and not settings.testing:
        raise RuntimeError("Invalid configuration: " + "; ".join(issues))

    return settings


__all__ = ["Settings", "get_settings", "validate_settings"]

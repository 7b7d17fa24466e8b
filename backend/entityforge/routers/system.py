"""Liveness / readiness probe (public)."""

import logging
from typing import Any
from typing import Dict

from fastapi import APIRouter
from fastapi import status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from entityforge.config import get_settings
from entityforge.constants import SYSTEM_PREFIX
from entityforge.database import get_session_factory

logger = logging.getLogger(__name__)

router = APIRouter(prefix=SYSTEM_PREFIX, tags=["system"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health() -> Dict[str, Any]:
    """Report process and database status.

    A failing database check is reported as ``degraded`` rather than raised.
    """

    db_ok = True
    try:
        session_factory = get_session_factory()
        with session_factory() as s:
            s.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Health check: database unreachable: %s", exc)
        db_ok = False

    return {
        "status": "ok" if db_ok else "degraded",
        "environment": get_settings().environment,
        "database": {"ok": db_ok},
    }

"""Structured logger shared by the audit trail.

The rest of the codebase can ``from entityforge.utils.log import log`` and
use ``log.info("msg", key=value)``; events render as one JSON object per
line.
"""

from __future__ import annotations

from typing import Any

import structlog

if not structlog.is_configured():
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ]
    )

# Keep the logger global so every import shares the same base instance.
log = structlog.get_logger("entityforge")


def get_logger(**bindings: Any):  # noqa: D401 – factory helper
    """Return a child/bound logger with optional key/value bindings."""

    return log.bind(**bindings)


__all__ = ["log", "get_logger"]

"""Timezone helpers – provide a single UTC *now()* function.

Records store naive UTC timestamps (SQLAlchemy ``DateTime`` columns without
timezone info), so everything that stamps ``createdAt``/``updatedAt``/
``expiredAt`` goes through :func:`utc_now_naive`.
"""

from datetime import datetime
from datetime import timezone


def utc_now() -> datetime:  # noqa: D401 – simple utility
    """Return *aware* current time in UTC."""

    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:  # noqa: D401 – simple utility
    """Return *naive* current time in UTC for database compatibility."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalise *value* to a naive UTC datetime.

    Aware values are converted to UTC first; naive values are assumed to
    already be UTC.
    """

    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


__all__ = ["utc_now", "utc_now_naive", "to_naive_utc"]

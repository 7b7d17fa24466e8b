"""Page/limit helpers shared by the definition and record listings."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Generic
from typing import List
from typing import Optional
from typing import Tuple
from typing import TypeVar

from entityforge.config import get_settings

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def clamp_pagination(page: Optional[int], limit: Optional[int]) -> Tuple[int, int]:
    """Return a sane ``(page, limit)`` pair: 1-based page, limit within bounds."""

    settings = get_settings()
    page = max(1, page or 1)
    if limit is None or limit < 1:
        limit = settings.default_page_size
    return page, min(limit, settings.max_page_size)


__all__ = ["Page", "clamp_pagination"]

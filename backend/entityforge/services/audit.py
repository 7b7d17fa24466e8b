"""Audit trail side channel.

The registry, lifecycle manager and versioning engine receive a recorder
at construction time and report every state change through it.  The
default implementation writes one structured log line per event; tests
use :class:`MemoryAuditRecorder` to assert on what happened.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Protocol

from entityforge.schemas.schemas import Actor
from entityforge.utils.log import get_logger
from entityforge.utils.time import utc_now


class AuditRecorder(Protocol):
    def record(self, event: str, actor: Optional[Actor], **details: Any) -> None: ...


class StructlogAuditRecorder:
    """Emit audit events as structured log lines."""

    def __init__(self, component: str = "audit"):
        self._log = get_logger(component=component)

    def record(self, event: str, actor: Optional[Actor], **details: Any) -> None:
        self._log.info(
            event,
            actor_id=actor.id if actor else "system",
            actor_name=actor.display_name if actor else "system",
            **details,
        )


@dataclass
class AuditEvent:
    event: str
    actor: Optional[Actor]
    details: Dict[str, Any]
    at: Any = field(default_factory=utc_now)


class MemoryAuditRecorder:
    """Keep events in memory – used by the test-suite and ad-hoc scripts."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    def record(self, event: str, actor: Optional[Actor], **details: Any) -> None:
        self.events.append(AuditEvent(event=event, actor=actor, details=dict(details)))

    def names(self) -> List[str]:
        return [e.event for e in self.events]

    def of(self, event: str) -> List[AuditEvent]:
        return [e for e in self.events if e.event == event]


__all__ = ["AuditRecorder", "StructlogAuditRecorder", "MemoryAuditRecorder", "AuditEvent"]

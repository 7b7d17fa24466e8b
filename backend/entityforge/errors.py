"""Error kinds raised by the entity engine.

Every failure the engine reports is an :class:`EntityEngineError` subclass
with a stable ``kind`` string.  Nothing inside the engine catches these;
they propagate to the immediate caller (route handler, script, test).
``ConcurrentModification`` is the only kind a caller is expected to retry.
"""

from __future__ import annotations

from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Sequence

from entityforge.schemas.schemas import SchemaViolation


class EntityEngineError(Exception):
    """Base class – carries a machine readable ``kind`` and optional details."""

    kind: str = "EntityEngineError"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class DuplicateCode(EntityEngineError):
    kind = "DuplicateCode"


class InvalidSchema(EntityEngineError):
    """The definition's schema or configuration cannot be used."""

    kind = "InvalidSchema"


class NotFound(EntityEngineError):
    kind = "NotFound"


class ImmutableFieldViolation(EntityEngineError):
    kind = "ImmutableFieldViolation"


class MonotonicConfigViolation(EntityEngineError):
    kind = "MonotonicConfigViolation"


class DefinitionInactive(EntityEngineError):
    kind = "DefinitionInactive"


class DefinitionInUse(EntityEngineError):
    kind = "DefinitionInUse"


class ValidationFailed(EntityEngineError):
    """Record data failed validation; carries *all* violations."""

    kind = "ValidationFailed"

    def __init__(self, violations: Sequence[SchemaViolation], message: Optional[str] = None):
        self.violations: List[SchemaViolation] = list(violations)
        if message is None:
            fields = ", ".join(sorted({v.field or "<root>" for v in self.violations}))
            message = f"Record data failed validation ({len(self.violations)} problem(s): {fields})"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["violations"] = [v.model_dump() for v in self.violations]
        return payload


class ActivationNotEnabled(EntityEngineError):
    kind = "ActivationNotEnabled"


class VersioningNotEnabled(EntityEngineError):
    kind = "VersioningNotEnabled"


class IndeterminateIdentity(EntityEngineError):
    kind = "IndeterminateIdentity"


class ConcurrentModification(EntityEngineError):
    kind = "ConcurrentModification"


__all__ = [
    "EntityEngineError",
    "DuplicateCode",
    "InvalidSchema",
    "NotFound",
    "ImmutableFieldViolation",
    "MonotonicConfigViolation",
    "DefinitionInactive",
    "DefinitionInUse",
    "ValidationFailed",
    "ActivationNotEnabled",
    "VersioningNotEnabled",
    "IndeterminateIdentity",
    "ConcurrentModification",
]

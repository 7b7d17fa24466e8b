from datetime import datetime
from typing import Any
from typing import Dict
from typing import Optional
from typing import Union

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from entityforge.schemas.schema_definition import CamelModel

# ---------------------------------------------------------------------------
# Actor & violations
# ---------------------------------------------------------------------------


class Actor(BaseModel):
    """Identity stamped into ``createdBy``/``updatedBy`` – supplied by auth."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: Optional[str] = None

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=str(user.id), display_name=getattr(user, "display_name", None) or getattr(user, "email", None))


class SchemaViolation(BaseModel):
    """One failed check: which field, which constraint, and a readable message."""

    model_config = ConfigDict(frozen=True)

    field: str
    constraint: str
    message: str


# ---------------------------------------------------------------------------
# Entity definition payloads
# ---------------------------------------------------------------------------


class EntityDefinitionCreate(CamelModel):
    code: str
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    schema_definition: Optional[Dict[str, Any]] = None
    derived_record_config: Optional[Dict[str, Any]] = None

    # Legacy request shape ------------------------------------------------
    legacy_schema: Optional[Dict[str, Any]] = Field(None, alias="schema")
    legacy_config: Optional[Dict[str, Any]] = Field(None, alias="config")
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Entity name is required.")
        return value

    def resolved_schema_definition(self) -> Dict[str, Any]:
        """Return the raw schema, falling back to the legacy ``schema`` key."""

        if self.schema_definition is not None:
            return self.schema_definition
        if self.legacy_schema is not None:
            return {
                "type": self.legacy_schema.get("type", "object"),
                "properties": self.legacy_schema.get("properties") or {},
                "required": self.legacy_schema.get("required") or [],
            }
        return {"type": "object", "properties": {}, "required": []}

    def resolved_derived_record_config(self) -> Dict[str, Any]:
        """Return the raw config, translating the flat legacy ``config`` block."""

        if self.derived_record_config is not None:
            return self.derived_record_config

        legacy = self.legacy_config or {}

        def _pick(key: str, default: Any) -> Any:
            value = legacy.get(key)
            return default if value is None else value

        return {
            "activation": {
                "enabled": _pick("enableActivation", True),
                "defaultState": _pick("defaultActivationState", True),
                "entityActive": True if self.is_active is None else self.is_active,
                "useTimeBounding": bool(_pick("enableRecordLocking", False)),
            },
            "versioning": {"enabled": bool(_pick("enableVersioning", False))},
            "hierarchy": {
                "enabled": bool(_pick("enableHierarchy", False)),
                "parentLinkField": _pick("parentLinkField", "parentId"),
                "linkType": _pick("linkType", "id"),
            },
        }


class EntityDefinitionUpdate(CamelModel):
    # ``code`` is accepted so idempotent client payloads do not fail; the
    # registry drops it.
    code: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    schema_definition: Optional[Dict[str, Any]] = None
    # Partial: merged into the stored config key by key.
    derived_record_config: Optional[Dict[str, Any]] = None

    # Fields owned by the store; changing them is an error.
    id: Optional[int] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("Entity name cannot be empty.")
        return value


# ---------------------------------------------------------------------------
# Entity record payloads
# ---------------------------------------------------------------------------

ParentReference = Union[int, str]


class EntityRecordCreate(CamelModel):
    data: Dict[str, Any]
    is_active: Optional[bool] = None
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    parent: Optional[ParentReference] = None


class EntityRecordUpdate(CamelModel):
    """Partial update – only keys the caller sent are applied.

    ``data`` is merged key by key over the existing data.
    """

    data: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    parent: Optional[ParentReference] = None

    # System fields, present only so attempts to change them can be rejected.
    entity_id: Optional[int] = None
    entity_code: Optional[str] = None
    version: Optional[int] = None
    is_current: Optional[bool] = None
    expired_at: Optional[datetime] = None

    def sent(self, name: str) -> bool:
        return name in self.model_fields_set


__all__ = [
    "Actor",
    "SchemaViolation",
    "EntityDefinitionCreate",
    "EntityDefinitionUpdate",
    "EntityRecordCreate",
    "EntityRecordUpdate",
    "ParentReference",
]

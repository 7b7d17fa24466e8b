"""ORM row -> camelCase JSON dicts.

Feature columns (activation, time-bounding, versioning, hierarchy) are
only emitted when the owning definition enables the feature.  The parent
reference lives in a typed column internally and is exposed under the
definition's configured ``parentLinkField`` name here, at the boundary.
"""

from datetime import datetime
from typing import Any
from typing import Dict
from typing import Optional

from entityforge.models.enums import LinkType
from entityforge.models.models import EntityDefinition
from entityforge.models.models import EntityRecord
from entityforge.schemas.schema_definition import DerivedRecordConfig


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _config(definition: EntityDefinition) -> DerivedRecordConfig:
    return DerivedRecordConfig.model_validate(definition.derived_record_config or {})


def definition_to_dict(definition: EntityDefinition, *, summary: bool = False) -> Dict[str, Any]:
    """Serialise a definition.

    ``summary`` drops the schema's ``properties`` (used by list views).
    """

    schema = dict(definition.schema_definition or {})
    if summary:
        schema = {"type": schema.get("type", "object"), "required": list(schema.get("required") or [])}

    config = _config(definition)
    return {
        "id": definition.id,
        "code": definition.code,
        "name": definition.name,
        "description": definition.description,
        "schemaDefinition": schema,
        "derivedRecordConfig": config.to_wire(),
        "isActive": config.activation.entity_active,
        "createdBy": definition.created_by,
        "updatedBy": definition.updated_by,
        "createdAt": iso(definition.created_at),
        "updatedAt": iso(definition.updated_at),
    }


def parent_value(record: EntityRecord) -> Any:
    """Return the stored parent reference in its wire form."""

    if record.parent_ref is None:
        return None
    if record.parent_link_type == LinkType.ID.value and record.parent_ref.isdigit():
        return int(record.parent_ref)
    return record.parent_ref


def record_to_dict(
    record: EntityRecord,
    definition: EntityDefinition,
    *,
    include_entity_name: bool = False,
) -> Dict[str, Any]:
    config = _config(definition)

    payload: Dict[str, Any] = {
        "id": record.id,
        "entityId": record.definition_id,
        "entityCode": record.definition_code,
        "data": dict(record.data or {}),
    }
    if include_entity_name:
        payload["entityName"] = definition.name

    if config.activation.enabled:
        payload["isActive"] = record.is_active
    if config.activation.use_time_bounding:
        payload["effectiveFrom"] = iso(record.effective_from)
        payload["effectiveTo"] = iso(record.effective_to)

    if config.versioning.enabled:
        payload["version"] = record.version
        payload["isCurrent"] = record.is_current
        payload["expiredAt"] = iso(record.expired_at)

    if config.hierarchy.enabled:
        payload[config.hierarchy.parent_link_field] = parent_value(record)

    payload.update(
        {
            "createdBy": record.created_by,
            "updatedBy": record.updated_by,
            "createdAt": iso(record.created_at),
            "updatedAt": iso(record.updated_at),
        }
    )
    return payload


__all__ = ["definition_to_dict", "record_to_dict", "parent_value", "iso"]

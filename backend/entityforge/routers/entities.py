from typing import Any
from typing import Dict
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Query
from fastapi import status
from sqlalchemy.orm import Session

from entityforge.constants import ENTITIES_PREFIX
from entityforge.database import get_db
from entityforge.dependencies.auth import get_actor
from entityforge.dependencies.auth import get_current_user
from entityforge.dependencies.auth import require_capability
from entityforge.dependencies.services import get_registry
from entityforge.models.enums import Capability
from entityforge.schemas.schemas import Actor
from entityforge.schemas.schemas import EntityDefinitionCreate
from entityforge.schemas.schemas import EntityDefinitionUpdate
from entityforge.schemas.serialization import definition_to_dict
from entityforge.services.definition_registry import DefinitionRegistry
from entityforge.services.definition_registry import definition_config

router = APIRouter(
    prefix=ENTITIES_PREFIX,
    tags=["entities"],
    dependencies=[Depends(get_current_user)],
)


@router.get("/", dependencies=[Depends(require_capability(Capability.VIEW_ENTITIES))])
def list_entities(
    search: Optional[str] = None,
    active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    registry: DefinitionRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """List definitions, newest first.  Schema properties are omitted."""

    result = registry.list(db, search=search, active=active, page=page, limit=limit)
    return {
        "status": "success",
        "count": len(result.items),
        "total": result.total,
        "totalPages": result.total_pages,
        "currentPage": result.page,
        "data": [definition_to_dict(d, summary=True) for d in result.items],
    }


@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_capability(Capability.CREATE_ENTITY))],
)
def create_entity(
    payload: EntityDefinitionCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    registry: DefinitionRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    definition = registry.create(db, payload, actor)
    return {"status": "success", "data": definition_to_dict(definition)}


@router.get("/code/{code}", dependencies=[Depends(require_capability(Capability.VIEW_ENTITIES))])
def get_entity_by_code(
    code: str,
    db: Session = Depends(get_db),
    registry: DefinitionRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    return {"status": "success", "data": definition_to_dict(registry.get_by_code(db, code))}


@router.get("/{entity_id}", dependencies=[Depends(require_capability(Capability.VIEW_ENTITIES))])
def get_entity(
    entity_id: int,
    db: Session = Depends(get_db),
    registry: DefinitionRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    return {"status": "success", "data": definition_to_dict(registry.get_by_id(db, entity_id))}


@router.get("/{entity_id}/schema", dependencies=[Depends(require_capability(Capability.VIEW_ENTITIES))])
def get_entity_schema(
    entity_id: int,
    db: Session = Depends(get_db),
    registry: DefinitionRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """Schema and config only, for record forms."""

    definition = registry.get_by_id(db, entity_id)
    return {
        "status": "success",
        "data": {
            "code": definition.code,
            "name": definition.name,
            "schemaDefinition": dict(definition.schema_definition or {}),
            "derivedRecordConfig": definition_config(definition).to_wire(),
        },
    }


@router.put("/{entity_id}", dependencies=[Depends(require_capability(Capability.EDIT_ENTITY))])
def update_entity(
    entity_id: int,
    payload: EntityDefinitionUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    registry: DefinitionRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    definition = registry.update_by_id(db, entity_id, payload, actor)
    return {"status": "success", "data": definition_to_dict(definition)}


@router.patch(
    "/{entity_id}/toggle-activation",
    dependencies=[Depends(require_capability(Capability.EDIT_ENTITY))],
)
def toggle_entity_activation(
    entity_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    registry: DefinitionRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    definition = registry.toggle_usable(db, registry.get_by_id(db, entity_id), actor)
    return {
        "status": "success",
        "data": {
            "id": definition.id,
            "code": definition.code,
            "entityActive": definition_config(definition).activation.entity_active,
        },
    }


@router.delete("/{entity_id}", dependencies=[Depends(require_capability(Capability.DELETE_ENTITY))])
def delete_entity(
    entity_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    registry: DefinitionRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    definition = registry.get_by_id(db, entity_id)
    # Records must be removed first.
    registry.ensure_unused(db, definition)
    code = definition.code
    registry.delete(db, definition, actor)
    return {"status": "success", "message": f"Entity {code} deleted"}

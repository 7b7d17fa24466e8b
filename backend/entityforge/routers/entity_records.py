from typing import Any
from typing import Dict
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Query
from fastapi import status
from sqlalchemy.orm import Session

from entityforge.constants import ENTITY_RECORDS_PREFIX
from entityforge.database import get_db
from entityforge.dependencies.auth import get_actor
from entityforge.dependencies.auth import get_current_user
from entityforge.dependencies.auth import require_capability
from entityforge.dependencies.services import get_lifecycle
from entityforge.dependencies.services import get_registry
from entityforge.models.enums import Capability
from entityforge.schemas.schemas import Actor
from entityforge.schemas.schemas import EntityRecordCreate
from entityforge.schemas.schemas import EntityRecordUpdate
from entityforge.schemas.serialization import record_to_dict
from entityforge.services.definition_registry import DefinitionRegistry
from entityforge.services.record_lifecycle import LifecycleManager

router = APIRouter(
    prefix=ENTITY_RECORDS_PREFIX + "/{entity_code}",
    tags=["entity-records"],
    dependencies=[Depends(get_current_user)],
)


@router.get("/", dependencies=[Depends(require_capability(Capability.VIEW_ENTITY_RECORDS))])
def list_records(
    entity_code: str,
    current_only: bool = Query(True, alias="currentOnly"),
    active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    registry: DefinitionRegistry = Depends(get_registry),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> Dict[str, Any]:
    definition = registry.get_by_code(db, entity_code)
    result = lifecycle.list(
        db,
        definition,
        current_only=current_only,
        active=active,
        search=search,
        page=page,
        limit=limit,
    )
    return {
        "status": "success",
        "count": len(result.items),
        "total": result.total,
        "totalPages": result.total_pages,
        "currentPage": result.page,
        "data": [record_to_dict(r, definition, include_entity_name=True) for r in result.items],
    }


@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_capability(Capability.CREATE_ENTITY_RECORD))],
)
def create_record(
    entity_code: str,
    payload: EntityRecordCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    registry: DefinitionRegistry = Depends(get_registry),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> Dict[str, Any]:
    definition = registry.get_by_code(db, entity_code)
    record = lifecycle.create(db, definition, payload, actor)
    return {"status": "success", "data": record_to_dict(record, definition)}


@router.get("/{record_id}", dependencies=[Depends(require_capability(Capability.VIEW_ENTITY_RECORDS))])
def get_record(
    entity_code: str,
    record_id: int,
    db: Session = Depends(get_db),
    registry: DefinitionRegistry = Depends(get_registry),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> Dict[str, Any]:
    definition = registry.get_by_code(db, entity_code)
    record = lifecycle.get(db, definition, record_id)
    return {"status": "success", "data": record_to_dict(record, definition, include_entity_name=True)}


@router.put("/{record_id}", dependencies=[Depends(require_capability(Capability.EDIT_ENTITY_RECORD))])
def update_record(
    entity_code: str,
    record_id: int,
    payload: EntityRecordUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    registry: DefinitionRegistry = Depends(get_registry),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> Dict[str, Any]:
    """Update in place, or insert a new revision when the entity is versioned."""

    definition = registry.get_by_code(db, entity_code)
    record = lifecycle.get(db, definition, record_id)
    updated = lifecycle.update(db, definition, record, payload, actor)
    return {"status": "success", "data": record_to_dict(updated, definition)}


@router.patch(
    "/{record_id}/toggle-activation",
    dependencies=[Depends(require_capability(Capability.EDIT_ENTITY_RECORD))],
)
def toggle_record_activation(
    entity_code: str,
    record_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    registry: DefinitionRegistry = Depends(get_registry),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> Dict[str, Any]:
    definition = registry.get_by_code(db, entity_code)
    record = lifecycle.toggle_activation(db, definition, lifecycle.get(db, definition, record_id), actor)
    return {"status": "success", "data": record_to_dict(record, definition)}


@router.delete("/{record_id}", dependencies=[Depends(require_capability(Capability.DELETE_ENTITY_RECORD))])
def delete_record(
    entity_code: str,
    record_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    registry: DefinitionRegistry = Depends(get_registry),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> Dict[str, Any]:
    definition = registry.get_by_code(db, entity_code)
    lifecycle.delete(db, definition, lifecycle.get(db, definition, record_id), actor)
    return {"status": "success", "message": f"Record {record_id} deleted"}


@router.get(
    "/{record_id}/versions",
    dependencies=[Depends(require_capability(Capability.VIEW_ENTITY_RECORDS))],
)
def list_record_versions(
    entity_code: str,
    record_id: int,
    db: Session = Depends(get_db),
    registry: DefinitionRegistry = Depends(get_registry),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> Dict[str, Any]:
    definition = registry.get_by_code(db, entity_code)
    record = lifecycle.get(db, definition, record_id)
    revisions = lifecycle.versioning.list_revisions(db, definition, record)
    return {
        "status": "success",
        "count": len(revisions),
        "data": [record_to_dict(r, definition) for r in revisions],
    }

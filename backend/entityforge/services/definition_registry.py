"""Entity definition registry.

Owns definition identity (the upper-case ``code``), the immutability rules
around it, and the monotonic configuration flags: once
``versioning.enabled`` or ``hierarchy.enabled`` is true it stays true,
because flipping it back would orphan existing version chains and links.

All writes are optimistic: the definition row carries a version counter
and a concurrent writer loses with ``ConcurrentModification``.
"""

import logging
import re
from typing import Any
from typing import Dict
from typing import Mapping
from typing import Optional
from typing import Union

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy import func
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from entityforge.errors import ConcurrentModification
from entityforge.errors import DefinitionInUse
from entityforge.errors import DuplicateCode
from entityforge.errors import ImmutableFieldViolation
from entityforge.errors import InvalidSchema
from entityforge.errors import MonotonicConfigViolation
from entityforge.errors import NotFound
from entityforge.models.models import EntityDefinition
from entityforge.models.models import EntityRecord
from entityforge.schemas.schema_definition import DerivedRecordConfig
from entityforge.schemas.schema_definition import SchemaDefinition
from entityforge.schemas.schemas import Actor
from entityforge.schemas.schemas import EntityDefinitionCreate
from entityforge.schemas.schemas import EntityDefinitionUpdate
from entityforge.services.audit import AuditRecorder
from entityforge.services.audit import StructlogAuditRecorder
from entityforge.services.pagination import Page
from entityforge.services.pagination import clamp_pagination
from entityforge.services.schema_validator import parse_schema
from entityforge.utils.time import to_naive_utc
from entityforge.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^[A-Z0-9_]+$")
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Keys a serialised record already uses; the parent link cannot shadow them.
RESERVED_RECORD_KEYS = frozenset(
    {
        "id",
        "entityId",
        "entityCode",
        "data",
        "isActive",
        "effectiveFrom",
        "effectiveTo",
        "version",
        "isCurrent",
        "expiredAt",
        "createdBy",
        "updatedBy",
        "createdAt",
        "updatedAt",
    }
)

# Flags that may go false -> true but never back.
_MONOTONIC_FLAGS = ("versioning", "hierarchy")


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def definition_config(definition: EntityDefinition) -> DerivedRecordConfig:
    """Typed view of the stored ``derivedRecordConfig``."""

    return DerivedRecordConfig.model_validate(definition.derived_record_config or {})


def definition_schema(definition: EntityDefinition) -> SchemaDefinition:
    """Typed view of the stored ``schemaDefinition``."""

    return SchemaDefinition.model_validate(definition.schema_definition or {})


def _camelize(patch: Mapping[str, Any]) -> Dict[str, Any]:
    camel = {}
    for key, value in patch.items():
        name = to_camel(key) if "_" in key else key
        camel[name] = _camelize(value) if isinstance(value, Mapping) else value
    return camel


def _deep_merge(base: Dict[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


class DefinitionRegistry:
    """Create, read, update and delete entity definitions."""

    def __init__(self, recorder: Optional[AuditRecorder] = None):
        self._recorder = recorder or StructlogAuditRecorder("definitions")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_code(self, db: Session, code: str) -> Optional[EntityDefinition]:
        return db.query(EntityDefinition).filter(EntityDefinition.code == normalize_code(code)).first()

    def get_by_code(self, db: Session, code: str) -> EntityDefinition:
        definition = self.find_by_code(db, code)
        if definition is None:
            raise NotFound(f"Entity with code {normalize_code(code)} not found", details={"code": normalize_code(code)})
        return definition

    def get_by_id(self, db: Session, definition_id: int) -> EntityDefinition:
        definition = db.query(EntityDefinition).filter(EntityDefinition.id == definition_id).first()
        if definition is None:
            raise NotFound("Entity not found", details={"id": definition_id})
        return definition

    def list(
        self,
        db: Session,
        *,
        search: Optional[str] = None,
        active: Optional[bool] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Page[EntityDefinition]:
        """Return definitions newest first, filtered and paginated."""

        page, limit = clamp_pagination(page, limit)
        query = db.query(EntityDefinition)

        if search:
            needle = f"%{search.strip().lower()}%"
            query = query.filter(
                or_(
                    func.lower(EntityDefinition.name).like(needle),
                    func.lower(func.coalesce(EntityDefinition.description, "")).like(needle),
                )
            )

        if active is not None:
            # The flag lives inside the JSON config; filter in Python so the
            # query stays portable across backends.
            rows = query.order_by(EntityDefinition.created_at.desc(), EntityDefinition.id.desc()).all()
            rows = [d for d in rows if definition_config(d).activation.entity_active is active]
            start = (page - 1) * limit
            return Page(items=rows[start : start + limit], total=len(rows), page=page, limit=limit)

        total = query.count()
        items = (
            query.order_by(EntityDefinition.created_at.desc(), EntityDefinition.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return Page(items=items, total=total, page=page, limit=limit)

    def count_records(self, db: Session, definition: EntityDefinition) -> int:
        return db.query(EntityRecord).filter(EntityRecord.definition_id == definition.id).count()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        db: Session,
        payload: Union[EntityDefinitionCreate, Mapping[str, Any]],
        actor: Actor,
    ) -> EntityDefinition:
        """Create a definition; the code is upper-cased before the uniqueness check."""

        if not isinstance(payload, EntityDefinitionCreate):
            payload = self._parse_payload(EntityDefinitionCreate, payload)

        code = normalize_code(payload.code)
        if not CODE_PATTERN.match(code):
            raise InvalidSchema(
                "Entity code must be uppercase alphanumeric with underscores only",
                details={"field": "code", "code": code},
            )

        schema = parse_schema(payload.resolved_schema_definition())
        config = self._parse_config(payload.resolved_derived_record_config())

        if self.find_by_code(db, code) is not None:
            logger.warning("Entity creation failed: code %s already exists", code)
            raise DuplicateCode(f"Entity with code '{code}' already exists", details={"code": code})

        now = utc_now_naive()
        definition = EntityDefinition(
            code=code,
            name=payload.name,
            description=payload.description.strip() if payload.description else payload.description,
            schema_definition=schema.to_wire(),
            derived_record_config=config.to_wire(),
            created_by=actor.id,
            updated_by=actor.id,
            created_at=now,
            updated_at=now,
        )
        db.add(definition)
        try:
            db.commit()
        except IntegrityError as exc:
            # Lost a race with a concurrent create of the same code.
            db.rollback()
            raise DuplicateCode(f"Entity with code '{code}' already exists", details={"code": code}) from exc
        db.refresh(definition)

        logger.info("Entity definition %s created (id=%s)", definition.code, definition.id)
        self._recorder.record(
            "definition.created",
            actor,
            definition_id=definition.id,
            code=definition.code,
            versioning=config.versioning.enabled,
            hierarchy=config.hierarchy.enabled,
        )
        return definition

    def update(
        self,
        db: Session,
        code: str,
        patch: Union[EntityDefinitionUpdate, Mapping[str, Any]],
        actor: Actor,
    ) -> EntityDefinition:
        """Apply *patch* to the definition identified by *code*."""

        return self._apply_update(db, self.get_by_code(db, code), patch, actor)

    def update_by_id(
        self,
        db: Session,
        definition_id: int,
        patch: Union[EntityDefinitionUpdate, Mapping[str, Any]],
        actor: Actor,
    ) -> EntityDefinition:
        return self._apply_update(db, self.get_by_id(db, definition_id), patch, actor)

    def toggle_usable(self, db: Session, definition: EntityDefinition, actor: Actor) -> EntityDefinition:
        """Flip ``activation.entityActive`` – gates creation of new records only."""

        db.refresh(definition)
        config = definition_config(definition)
        previous = config.activation.entity_active
        config.activation.entity_active = not previous

        definition.derived_record_config = config.to_wire()
        definition.updated_by = actor.id
        definition.updated_at = utc_now_naive()
        self._commit(db, definition)

        logger.info("Entity %s usability toggled %s -> %s", definition.code, previous, not previous)
        self._recorder.record(
            "definition.usable_toggled",
            actor,
            definition_id=definition.id,
            code=definition.code,
            previous=previous,
            current=not previous,
        )
        return definition

    def ensure_unused(self, db: Session, definition: EntityDefinition) -> None:
        """Raise ``DefinitionInUse`` while any record references *definition*."""

        count = self.count_records(db, definition)
        if count:
            raise DefinitionInUse(
                f"Entity {definition.code} still has {count} record(s)",
                details={"code": definition.code, "records": count},
            )

    def delete(self, db: Session, definition: EntityDefinition, actor: Actor) -> None:
        """Hard-delete *definition*.

        Callers decide whether records may still exist (see :meth:`ensure_unused`).
        """

        definition_id, code = definition.id, definition.code
        db.delete(definition)
        db.commit()

        logger.info("Entity definition %s deleted (id=%s)", code, definition_id)
        self._recorder.record("definition.deleted", actor, definition_id=definition_id, code=code)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_update(
        self,
        db: Session,
        definition: EntityDefinition,
        patch: Union[EntityDefinitionUpdate, Mapping[str, Any]],
        actor: Actor,
    ) -> EntityDefinition:
        if not isinstance(patch, EntityDefinitionUpdate):
            patch = self._parse_payload(EntityDefinitionUpdate, patch)
        sent = patch.model_fields_set

        # Evaluate the rules against the latest stored state.
        db.refresh(definition)

        if "code" in sent and patch.code is not None and normalize_code(patch.code) != definition.code:
            logger.warning(
                "Attempted to modify immutable code of entity %s (attempted %r), ignored",
                definition.code,
                patch.code,
            )
            self._recorder.record(
                "definition.code_change_ignored",
                actor,
                definition_id=definition.id,
                code=definition.code,
                attempted_code=patch.code,
            )

        self._reject_immutable_changes(definition, patch, sent)

        changed = []

        if "name" in sent and patch.name is not None:
            definition.name = patch.name
            changed.append("name")
        if "description" in sent:
            definition.description = patch.description
            changed.append("description")
        if "schema_definition" in sent and patch.schema_definition is not None:
            definition.schema_definition = parse_schema(patch.schema_definition).to_wire()
            changed.append("schemaDefinition")
        if "derived_record_config" in sent and patch.derived_record_config is not None:
            current = definition_config(definition)
            merged = _deep_merge(current.to_wire(), _camelize(patch.derived_record_config))
            proposed = self._parse_config(merged)
            self._check_monotonic(definition, current, proposed)
            definition.derived_record_config = proposed.to_wire()
            changed.append("derivedRecordConfig")
            if proposed.versioning.enabled and not current.versioning.enabled:
                self._stamp_first_revisions(db, definition)

        definition.updated_by = actor.id
        definition.updated_at = utc_now_naive()
        self._commit(db, definition)

        logger.info("Entity definition %s updated: %s", definition.code, ", ".join(changed) or "no changes")
        self._recorder.record(
            "definition.updated",
            actor,
            definition_id=definition.id,
            code=definition.code,
            fields=changed,
        )
        return definition

    def _stamp_first_revisions(self, db: Session, definition: EntityDefinition) -> None:
        """Make every existing record the current version 1 of its chain."""

        try:
            stamped = (
                db.query(EntityRecord)
                .filter(EntityRecord.definition_id == definition.id, EntityRecord.version.is_(None))
                .update({"version": 1, "is_current": True}, synchronize_session="fetch")
            )
        except IntegrityError as exc:
            db.rollback()
            raise InvalidSchema(
                f"Existing {definition.code} records share a business key; versioning cannot be enabled",
                details={"code": definition.code, "field": "derivedRecordConfig.versioning.enabled"},
            ) from exc
        logger.info("Entity %s: %s existing records stamped as version 1", definition.code, stamped)

    def _reject_immutable_changes(self, definition: EntityDefinition, patch: EntityDefinitionUpdate, sent) -> None:
        checks = (
            ("id", definition.id),
            ("created_by", definition.created_by),
            ("created_at", definition.created_at),
        )
        for name, stored in checks:
            if name not in sent:
                continue
            value = getattr(patch, name)
            if value is None:
                continue
            if name == "created_at" and stored is not None:
                value, stored = to_naive_utc(value), to_naive_utc(stored)
            if value != stored:
                raise ImmutableFieldViolation(
                    f"Field '{to_camel(name)}' cannot be modified",
                    details={"field": to_camel(name)},
                )

    def _check_monotonic(
        self,
        definition: EntityDefinition,
        current: DerivedRecordConfig,
        proposed: DerivedRecordConfig,
    ) -> None:
        for flag in _MONOTONIC_FLAGS:
            if getattr(current, flag).enabled and not getattr(proposed, flag).enabled:
                logger.warning("Entity %s update rejected: attempted to disable %s", definition.code, flag)
                raise MonotonicConfigViolation(
                    f"Cannot disable {flag} once it has been enabled",
                    details={"code": definition.code, "flag": f"{flag}.enabled"},
                )

    def _parse_config(self, raw: Mapping[str, Any]) -> DerivedRecordConfig:
        try:
            config = DerivedRecordConfig.model_validate(raw or {})
        except PydanticValidationError as exc:
            raise InvalidSchema(
                "Derived record configuration is malformed",
                details={"problems": [f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors()]},
            ) from exc

        link_field = config.hierarchy.parent_link_field
        if not _IDENTIFIER.match(link_field):
            raise InvalidSchema(
                f"parentLinkField '{link_field}' must be a plain identifier",
                details={"field": "derivedRecordConfig.hierarchy.parentLinkField"},
            )
        if link_field in RESERVED_RECORD_KEYS:
            raise InvalidSchema(
                f"parentLinkField '{link_field}' collides with a record attribute",
                details={"field": "derivedRecordConfig.hierarchy.parentLinkField"},
            )
        return config

    @staticmethod
    def _parse_payload(model, payload: Mapping[str, Any]):
        try:
            return model.model_validate(payload)
        except PydanticValidationError as exc:
            raise InvalidSchema(
                "Entity definition payload is malformed",
                details={"problems": [f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors()]},
            ) from exc

    @staticmethod
    def _commit(db: Session, definition: EntityDefinition) -> None:
        try:
            db.commit()
        except StaleDataError as exc:
            db.rollback()
            raise ConcurrentModification(
                f"Entity {definition.code} was modified concurrently; reload and retry",
                details={"code": definition.code},
            ) from exc
        db.refresh(definition)


__all__ = [
    "CODE_PATTERN",
    "RESERVED_RECORD_KEYS",
    "DefinitionRegistry",
    "definition_config",
    "definition_schema",
    "normalize_code",
]

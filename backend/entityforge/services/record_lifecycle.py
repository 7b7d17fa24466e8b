"""Record lifecycle manager.

Turns raw create / update payloads into fully materialised record rows
according to the owning definition's ``derivedRecordConfig``:

* ``data`` is default-filled and validated against the definition schema,
* ``isActive`` is set when activation is enabled,
* ``effectiveFrom``/``effectiveTo`` are set when time-bounding is enabled,
* the parent reference is placed in its typed column when hierarchy is on.

Fields belonging to a disabled feature are ignored rather than rejected.
Updates under a versioned definition are handed to
:class:`~entityforge.services.versioning.VersioningEngine`; everything else
is updated in place.
"""

import json
import logging
from datetime import datetime
from typing import Any
from typing import Dict
from typing import Iterator
from typing import List
from typing import Mapping
from typing import Optional
from typing import Union

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from entityforge.errors import ActivationNotEnabled
from entityforge.errors import DefinitionInactive
from entityforge.errors import ImmutableFieldViolation
from entityforge.errors import NotFound
from entityforge.errors import ValidationFailed
from entityforge.models.enums import LinkType
from entityforge.models.models import EntityDefinition
from entityforge.models.models import EntityRecord
from entityforge.schemas.schema_definition import DerivedRecordConfig
from entityforge.schemas.schemas import Actor
from entityforge.schemas.schemas import EntityRecordCreate
from entityforge.schemas.schemas import EntityRecordUpdate
from entityforge.schemas.schemas import SchemaViolation
from entityforge.services.audit import AuditRecorder
from entityforge.services.audit import StructlogAuditRecorder
from entityforge.services.definition_registry import definition_config
from entityforge.services.definition_registry import definition_schema
from entityforge.services.definition_registry import normalize_code
from entityforge.services.pagination import Page
from entityforge.services.pagination import clamp_pagination
from entityforge.services.schema_validator import validate_or_raise
from entityforge.services.versioning import VersioningEngine
from entityforge.services.versioning import business_key
from entityforge.services.versioning import duplicate_key
from entityforge.services.versioning import find_current_by_key
from entityforge.services.versioning import key_token
from entityforge.utils.time import to_naive_utc
from entityforge.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

RecordPayload = Union[EntityRecordCreate, Mapping[str, Any]]
RecordPatch = Union[EntityRecordUpdate, Mapping[str, Any]]


def _parse(model, payload):
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        violations = [
            SchemaViolation(
                field=".".join(str(part) for part in err["loc"]),
                constraint="type",
                message=err["msg"],
            )
            for err in exc.errors()
        ]
        raise ValidationFailed(violations, message="Record payload is malformed") from exc


def _parent_ref(value: Any) -> Optional[str]:
    if value is None:
        return None
    ref = str(value).strip()
    return ref or None


def _check_window(effective_from: Optional[datetime], effective_to: Optional[datetime]) -> None:
    if effective_from is not None and effective_to is not None and effective_from >= effective_to:
        raise ValidationFailed(
            [
                SchemaViolation(
                    field="effectiveTo",
                    constraint="after_effective_from",
                    message="effectiveTo must be later than effectiveFrom",
                )
            ]
        )


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    return to_naive_utc(value) if value is not None else None


def _values(value: Any) -> Iterator[str]:
    if isinstance(value, Mapping):
        for item in value.values():
            yield from _values(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _values(item)
    elif isinstance(value, str):
        yield value
    elif value is not None:
        yield json.dumps(value, ensure_ascii=False, default=str)


def _search_text(data: Mapping[str, Any]) -> str:
    """Values of *data* (keys excluded), lower-cased, one per line."""

    return "\n".join(_values(data)).lower()


class LifecycleManager:
    """Create, update, toggle and delete records of a definition."""

    def __init__(
        self,
        recorder: Optional[AuditRecorder] = None,
        versioning: Optional[VersioningEngine] = None,
    ):
        self._recorder = recorder or StructlogAuditRecorder("records")
        self._versioning = versioning

    @property
    def versioning(self) -> VersioningEngine:
        if self._versioning is None:
            self._versioning = VersioningEngine(preparer=self, recorder=self._recorder)
        return self._versioning

    # ------------------------------------------------------------------
    # Preparation (no persistence)
    # ------------------------------------------------------------------

    def prepare_for_create(
        self,
        definition: EntityDefinition,
        payload: RecordPayload,
        actor: Actor,
    ) -> EntityRecord:
        """Build an unsaved record from *payload*.

        Raises ``DefinitionInactive`` or ``ValidationFailed``.
        """

        payload = _parse(EntityRecordCreate, payload)
        config = definition_config(definition)
        self._ensure_usable(definition, config)

        data = validate_or_raise(definition_schema(definition), payload.data)
        now = utc_now_naive()

        # Only the FK column is set; attaching the relationship would cascade
        # the draft into the session.
        record = EntityRecord(
            definition_id=definition.id,
            definition_code=definition.code,
            data=data,
            business_key=key_token(business_key(definition, data)),
            search_text=_search_text(data),
            created_by=actor.id,
            updated_by=actor.id,
            created_at=now,
            updated_at=now,
        )

        if config.activation.enabled:
            record.is_active = config.activation.default_state if payload.is_active is None else payload.is_active

        if config.activation.use_time_bounding:
            record.effective_from = _naive(payload.effective_from) or now
            record.effective_to = _naive(payload.effective_to)
            _check_window(record.effective_from, record.effective_to)

        if config.versioning.enabled:
            record.version = 1
            record.is_current = True
            record.expired_at = None

        if config.hierarchy.enabled:
            record.parent_ref = _parent_ref(payload.parent)
            record.parent_link_type = config.hierarchy.link_type.value if record.parent_ref else None

        return record

    def prepare_for_update(
        self,
        definition: EntityDefinition,
        existing: EntityRecord,
        patch: RecordPatch,
        actor: Actor,
    ) -> EntityRecord:
        """Build an unsaved record holding *existing* with *patch* applied.

        ``data`` is merged key by key over the existing data and re-validated.
        Version-chain columns are copied unchanged; the caller decides
        whether the result replaces *existing* or becomes a new revision.
        """

        patch = _parse(EntityRecordUpdate, patch)
        config = definition_config(definition)
        self._ensure_usable(definition, config)
        self._reject_system_fields(existing, patch)

        merged = dict(existing.data or {})
        if patch.sent("data") and patch.data is not None:
            merged.update(patch.data)
        data = validate_or_raise(definition_schema(definition), merged)
        now = utc_now_naive()

        record = EntityRecord(
            definition_id=existing.definition_id,
            definition_code=existing.definition_code,
            data=data,
            business_key=key_token(business_key(definition, data)),
            search_text=_search_text(data),
            version=existing.version,
            is_current=existing.is_current,
            expired_at=existing.expired_at,
            created_by=existing.created_by,
            created_at=existing.created_at,
            updated_by=actor.id,
            updated_at=now,
        )

        if config.activation.enabled:
            if patch.sent("is_active") and patch.is_active is not None:
                record.is_active = patch.is_active
            elif existing.is_active is not None:
                record.is_active = existing.is_active
            else:
                record.is_active = config.activation.default_state

        if config.activation.use_time_bounding:
            effective_from = _naive(patch.effective_from) if patch.sent("effective_from") else existing.effective_from
            effective_to = _naive(patch.effective_to) if patch.sent("effective_to") else existing.effective_to
            record.effective_from = effective_from or now
            record.effective_to = effective_to
            _check_window(record.effective_from, record.effective_to)

        if config.hierarchy.enabled:
            ref = _parent_ref(patch.parent) if patch.sent("parent") else existing.parent_ref
            record.parent_ref = ref
            if ref is None:
                record.parent_link_type = None
            elif patch.sent("parent"):
                record.parent_link_type = config.hierarchy.link_type.value
            else:
                record.parent_link_type = existing.parent_link_type or config.hierarchy.link_type.value

        return record

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def create(
        self,
        db: Session,
        definition: EntityDefinition,
        payload: RecordPayload,
        actor: Actor,
    ) -> EntityRecord:
        record = self.prepare_for_create(definition, payload, actor)

        key = business_key(definition, record.data) if record.is_current else {}
        if key and find_current_by_key(db, definition, key):
            raise duplicate_key(definition, key)

        db.add(record)
        try:
            db.commit()
        except IntegrityError as exc:
            # Lost a race with a concurrent create holding the same key.
            db.rollback()
            if not key:
                raise
            raise duplicate_key(definition, key) from exc
        except Exception:
            db.rollback()
            raise
        db.refresh(record)

        logger.info("Record %s created for entity %s", record.id, definition.code)
        self._recorder.record(
            "record.created",
            actor,
            record_id=record.id,
            code=definition.code,
            version=record.version,
        )
        return record

    def update(
        self,
        db: Session,
        definition: EntityDefinition,
        record: EntityRecord,
        patch: RecordPatch,
        actor: Actor,
    ) -> EntityRecord:
        """Update *record*; returns the new revision under versioning."""

        self._ensure_owned(definition, record)
        if definition_config(definition).versioning.enabled:
            return self.versioning.apply_update(db, definition, record, patch, actor)

        prepared = self.prepare_for_update(definition, record, patch, actor)
        changed = self._changed_fields(record, prepared)
        for column in (
            "data",
            "business_key",
            "search_text",
            "is_active",
            "effective_from",
            "effective_to",
            "parent_ref",
            "parent_link_type",
            "updated_by",
            "updated_at",
        ):
            setattr(record, column, getattr(prepared, column))

        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(record)

        logger.info("Record %s of entity %s updated in place", record.id, definition.code)
        self._recorder.record(
            "record.updated",
            actor,
            record_id=record.id,
            code=definition.code,
            fields=changed,
        )
        return record

    def toggle_activation(
        self,
        db: Session,
        definition: EntityDefinition,
        record: EntityRecord,
        actor: Actor,
    ) -> EntityRecord:
        """Flip ``isActive`` on *record*.

        Under versioning only the current revision can be toggled; retired
        revisions are read-only snapshots.
        """

        self._ensure_owned(definition, record)
        config = definition_config(definition)
        if not config.activation.enabled:
            raise ActivationNotEnabled(
                f"Activation is not enabled for entity {definition.code}",
                details={"code": definition.code},
            )
        if config.versioning.enabled and record.is_current is False:
            raise ImmutableFieldViolation(
                f"Record {record.id} is a retired revision and cannot be toggled",
                details={"field": "isActive", "id": record.id},
            )

        previous = bool(record.is_active)
        record.is_active = not previous
        record.updated_by = actor.id
        record.updated_at = utc_now_naive()
        db.commit()
        db.refresh(record)

        self._recorder.record(
            "record.activation_toggled",
            actor,
            record_id=record.id,
            code=definition.code,
            previous=previous,
            current=record.is_active,
        )
        return record

    def delete(self, db: Session, definition: EntityDefinition, record: EntityRecord, actor: Actor) -> None:
        """Hard-delete exactly *record* (any revision)."""

        self._ensure_owned(definition, record)
        record_id, version = record.id, record.version
        db.delete(record)
        db.commit()

        logger.info("Record %s of entity %s deleted", record_id, definition.code)
        self._recorder.record(
            "record.deleted",
            actor,
            record_id=record_id,
            code=definition.code,
            version=version,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, db: Session, definition: EntityDefinition, record_id: int) -> EntityRecord:
        record = (
            db.query(EntityRecord)
            .filter(EntityRecord.id == record_id, EntityRecord.definition_id == definition.id)
            .first()
        )
        if record is None:
            raise NotFound(
                f"Record {record_id} not found for entity {definition.code}",
                details={"code": definition.code, "id": record_id},
            )
        return record

    def list(
        self,
        db: Session,
        definition: EntityDefinition,
        *,
        current_only: bool = True,
        active: Optional[bool] = None,
        search: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Page[EntityRecord]:
        page, limit = clamp_pagination(page, limit)
        config = definition_config(definition)

        query = db.query(EntityRecord).filter(EntityRecord.definition_id == definition.id)
        if current_only and config.versioning.enabled:
            query = query.filter(EntityRecord.is_current.is_(True))
        if active is not None and config.activation.enabled:
            query = query.filter(EntityRecord.is_active.is_(active))
        needle = (search or "").strip().lower()
        if needle:
            query = query.filter(EntityRecord.search_text.contains(needle, autoescape=True))

        total = query.count()
        items = (
            query.order_by(EntityRecord.created_at.desc(), EntityRecord.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return Page(items=items, total=total, page=page, limit=limit)

    def resolve_parent(self, db: Session, definition: EntityDefinition, record: EntityRecord) -> Optional[EntityRecord]:
        """Return the record *record* points at, or ``None`` when unset or dangling."""

        if record.parent_ref is None:
            return None
        query = db.query(EntityRecord).filter(EntityRecord.definition_id == definition.id)
        if record.parent_link_type == LinkType.ID.value:
            if not record.parent_ref.isdigit():
                return None
            return query.filter(EntityRecord.id == int(record.parent_ref)).first()

        ref = record.parent_ref
        matches = [EntityRecord.data["code"].as_string() == ref]
        required = definition_schema(definition).required
        if len(required) == 1:
            values = [ref, int(ref)] if ref.lstrip("-").isdigit() else [ref]
            matches.append(EntityRecord.business_key.in_([key_token({required[0]: v}) for v in values]))

        candidates = (
            query.filter(EntityRecord.is_current.isnot(False), or_(*matches)).order_by(EntityRecord.id.desc()).all()
        )
        for candidate in candidates:
            # ``code`` wins over the key field when a record carries both.
            if self.business_code(definition, candidate) == ref:
                return candidate
        return None

    def list_children(self, db: Session, definition: EntityDefinition, record: EntityRecord) -> List[EntityRecord]:
        refs = {str(record.id)}
        code = self.business_code(definition, record)
        if code is not None:
            refs.add(code)

        query = db.query(EntityRecord).filter(
            EntityRecord.definition_id == definition.id,
            EntityRecord.parent_ref.in_(refs),
        )
        if definition_config(definition).versioning.enabled:
            query = query.filter(EntityRecord.is_current.is_(True))

        children = []
        for child in query.order_by(EntityRecord.id).all():
            if child.parent_link_type == LinkType.ID.value and child.parent_ref != str(record.id):
                continue
            if child.parent_link_type == LinkType.CODE.value and child.parent_ref != code:
                continue
            children.append(child)
        return children

    @staticmethod
    def business_code(definition: EntityDefinition, record: EntityRecord) -> Optional[str]:
        """Value a ``code`` parent link matches against."""

        data = record.data or {}
        if data.get("code") is not None:
            return str(data["code"])
        key = business_key(definition, data)
        if len(key) == 1:
            return str(next(iter(key.values())))
        return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_usable(definition: EntityDefinition, config: DerivedRecordConfig) -> None:
        if not config.activation.entity_active:
            raise DefinitionInactive(
                f"Entity {definition.code} is not active",
                details={"code": definition.code},
            )

    @staticmethod
    def _ensure_owned(definition: EntityDefinition, record: EntityRecord) -> None:
        if record.definition_id != definition.id:
            raise NotFound(
                f"Record {record.id} not found for entity {definition.code}",
                details={"code": definition.code, "id": record.id},
            )

    @staticmethod
    def _reject_system_fields(existing: EntityRecord, patch: EntityRecordUpdate) -> None:
        stored: Dict[str, Any] = {
            "entity_id": existing.definition_id,
            "entity_code": existing.definition_code,
            "version": existing.version,
            "is_current": existing.is_current,
            "expired_at": existing.expired_at,
        }
        for name, current in stored.items():
            if not patch.sent(name):
                continue
            value = getattr(patch, name)
            if name == "entity_code" and value is not None:
                value = normalize_code(value)
            if name == "expired_at" and value is not None:
                value = to_naive_utc(value)
            if value != current:
                raise ImmutableFieldViolation(
                    f"Field '{to_camel(name)}' cannot be modified",
                    details={"field": to_camel(name)},
                )

    @staticmethod
    def _changed_fields(before: EntityRecord, after: EntityRecord) -> List[str]:
        columns = ("data", "is_active", "effective_from", "effective_to", "parent_ref")
        return [to_camel(c) for c in columns if getattr(before, c) != getattr(after, c)]


__all__ = ["LifecycleManager"]

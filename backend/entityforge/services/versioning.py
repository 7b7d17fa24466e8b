"""Copy-on-write versioning for records of versioned definitions.

An update never mutates the current revision.  It is retired
(``isCurrent=false``, ``expiredAt=now``) and a successor with
``version + 1`` is inserted, both inside one transaction.  The retirement
is a conditional ``UPDATE ... WHERE is_current`` so that of two writers
racing on the same revision exactly one sees a row count of 1; the other
gets :class:`~entityforge.errors.ConcurrentModification` and must retry
against the fresh current revision.

A logical record is identified across revisions by its *business key*:
the ``(field, value)`` pairs of every required field present in the
revision's data.  Each revision stores the key in canonical form
(``business_key``, sorted-key JSON); a partial unique index allows one
current revision per key, so a create or key change that loses a race
surfaces as a ``unique`` violation instead of a second current row.
"""

import json
import logging
from typing import TYPE_CHECKING
from typing import Any
from typing import Dict
from typing import List
from typing import Mapping
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from entityforge.errors import ConcurrentModification
from entityforge.errors import IndeterminateIdentity
from entityforge.errors import ValidationFailed
from entityforge.errors import VersioningNotEnabled
from entityforge.models.models import EntityDefinition
from entityforge.models.models import EntityRecord
from entityforge.schemas.schema_definition import SchemaDefinition
from entityforge.schemas.schemas import Actor
from entityforge.schemas.schemas import SchemaViolation
from entityforge.services.audit import AuditRecorder
from entityforge.services.audit import StructlogAuditRecorder
from entityforge.utils.time import utc_now_naive

if TYPE_CHECKING:  # pragma: no cover
    from entityforge.services.record_lifecycle import LifecycleManager

logger = logging.getLogger(__name__)


def business_key(definition: EntityDefinition, data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return the key pairs for *data*, possibly empty."""

    schema = SchemaDefinition.model_validate(definition.schema_definition or {})
    data = data or {}
    return {name: data[name] for name in schema.required if data.get(name) is not None}


def key_token(key: Mapping[str, Any]) -> Optional[str]:
    """Canonical form of *key* as stored in ``entity_records.business_key``."""

    if not key:
        return None
    return json.dumps(key, sort_keys=True, separators=(",", ":"), default=str)


def duplicate_key(definition: EntityDefinition, key: Mapping[str, Any]) -> ValidationFailed:
    return ValidationFailed(
        [
            SchemaViolation(
                field=",".join(sorted(key)),
                constraint="unique",
                message=f"A current {definition.code} record with this key already exists",
            )
        ]
    )


def find_current_by_key(
    db: Session,
    definition: EntityDefinition,
    key: Mapping[str, Any],
    *,
    exclude_id: Optional[int] = None,
) -> List[EntityRecord]:
    """Current revisions of *definition* whose data carries *key*."""

    token = key_token(key)
    if token is None:
        return []
    query = db.query(EntityRecord).filter(
        EntityRecord.definition_id == definition.id,
        EntityRecord.business_key == token,
        EntityRecord.is_current.is_(True),
    )
    if exclude_id is not None:
        query = query.filter(EntityRecord.id != exclude_id)
    return query.all()


def _versioning_enabled(definition: EntityDefinition) -> bool:
    config = definition.derived_record_config or {}
    return bool((config.get("versioning") or {}).get("enabled"))


class VersioningEngine:
    def __init__(self, preparer: "Optional[LifecycleManager]" = None, recorder: Optional[AuditRecorder] = None):
        self._recorder = recorder or StructlogAuditRecorder("versioning")
        self._preparer = preparer

    @property
    def preparer(self) -> "LifecycleManager":
        if self._preparer is None:
            from entityforge.services.record_lifecycle import LifecycleManager

            self._preparer = LifecycleManager(recorder=self._recorder, versioning=self)
        return self._preparer

    def resolve_business_key(self, definition: EntityDefinition, data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Like :func:`business_key` but raises ``IndeterminateIdentity`` on an empty key."""

        key = business_key(definition, data)
        if not key:
            raise IndeterminateIdentity(
                f"Cannot determine the business key of this {definition.code} record",
                details={"code": definition.code},
            )
        return key

    def apply_update(
        self,
        db: Session,
        definition: EntityDefinition,
        current: EntityRecord,
        raw_patch: Any,
        actor: Actor,
    ) -> EntityRecord:
        """Retire *current* and insert its successor; return the successor."""

        self._ensure_enabled(definition)
        if current.is_current is False:
            raise ConcurrentModification(
                f"Record {current.id} is no longer the current revision",
                details={"code": definition.code, "id": current.id},
            )

        key = self.resolve_business_key(definition, current.data)
        revision = self.preparer.prepare_for_update(definition, current, raw_patch, actor)

        new_key = business_key(definition, revision.data)
        if new_key and new_key != key and find_current_by_key(db, definition, new_key, exclude_id=current.id):
            raise duplicate_key(definition, new_key)

        now = utc_now_naive()
        revision.version = (current.version or 1) + 1
        revision.is_current = True
        revision.expired_at = None
        revision.created_by = actor.id
        revision.created_at = now
        revision.updated_by = actor.id
        revision.updated_at = now

        try:
            retired = (
                db.query(EntityRecord)
                .filter(EntityRecord.id == current.id, EntityRecord.is_current.is_(True))
                .update({"is_current": False, "expired_at": now}, synchronize_session=False)
            )
            if retired != 1:
                raise ConcurrentModification(
                    f"Record {current.id} was retired by a concurrent update; reload and retry",
                    details={"code": definition.code, "id": current.id},
                )
            db.add(revision)
            db.commit()
        except IntegrityError as exc:
            # Another writer took the new key between the check and the insert.
            db.rollback()
            raise duplicate_key(definition, new_key) from exc
        except Exception:
            db.rollback()
            raise

        db.refresh(current)
        db.refresh(revision)

        logger.info(
            "Record %s of entity %s revised: version %s -> %s (id %s)",
            current.id,
            definition.code,
            current.version,
            revision.version,
            revision.id,
        )
        self._recorder.record(
            "record.revised",
            actor,
            code=definition.code,
            retired_id=current.id,
            record_id=revision.id,
            version=revision.version,
            key=key,
        )
        return revision

    def list_revisions(self, db: Session, definition: EntityDefinition, record: EntityRecord) -> List[EntityRecord]:
        """Every revision sharing *record*'s business key, newest version first."""

        self._ensure_enabled(definition)
        key = self.resolve_business_key(definition, record.data)

        revisions = (
            db.query(EntityRecord)
            .filter(
                EntityRecord.definition_id == definition.id,
                EntityRecord.business_key == key_token(key),
            )
            .order_by(EntityRecord.version.desc(), EntityRecord.id.desc())
            .all()
        )
        return revisions

    @staticmethod
    def _ensure_enabled(definition: EntityDefinition) -> None:
        if not _versioning_enabled(definition):
            raise VersioningNotEnabled(
                f"Versioning is not enabled for entity {definition.code}",
                details={"code": definition.code},
            )


__all__ = [
    "VersioningEngine",
    "business_key",
    "find_current_by_key",
    "duplicate_key",
    "key_token",
]

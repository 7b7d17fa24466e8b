# SQLAlchemy core imports
from sqlalchemy import JSON
from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey
from sqlalchemy import Index
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import text
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.orm import relationship

# Local helpers / enums
from entityforge.database import Base
from entityforge.models.enums import UserRole
from entityforge.utils.time import utc_now_naive

# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


class User(Base):
    """Account the authentication layer resolves requests to.

    The engine itself only ever sees the :class:`~entityforge.schemas.schemas.Actor`
    value derived from this row.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Role / permission level – backed by :class:`entityforge.models.enums.UserRole`.
    role = Column(
        SAEnum(UserRole, native_enum=False, name="user_role_enum"),
        nullable=False,
        default=UserRole.USER.value,
    )

    created_at = Column(DateTime, default=utc_now_naive)
    updated_at = Column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)


# ---------------------------------------------------------------------------
# Entity definitions – runtime-defined record types
# ---------------------------------------------------------------------------


class EntityDefinition(Base):
    __tablename__ = "entity_definitions"

    id = Column(Integer, primary_key=True, index=True)

    # Upper-case machine identifier, fixed at creation.
    code = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    # JSON-schema subset: {"type": "object", "properties": {...}, "required": [...]}
    schema_definition = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)
    # {"activation": {...}, "versioning": {...}, "hierarchy": {...}}
    derived_record_config = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)

    created_by = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=utc_now_naive)
    updated_at = Column(DateTime, default=utc_now_naive)

    # Optimistic concurrency – every flush bumps the counter and a stale
    # writer fails with StaleDataError.
    row_version = Column(Integer, nullable=False)

    records = relationship("EntityRecord", back_populates="definition", passive_deletes=True)

    __mapper_args__ = {"version_id_col": row_version}


# ---------------------------------------------------------------------------
# Entity records – instances of a definition (and, when versioned, revisions)
# ---------------------------------------------------------------------------


class EntityRecord(Base):
    __tablename__ = "entity_records"

    id = Column(Integer, primary_key=True, index=True)

    definition_id = Column(Integer, ForeignKey("entity_definitions.id"), nullable=False, index=True)
    # Denormalised copy of the definition code, immutable per record.
    definition_code = Column(String, nullable=False, index=True)

    data = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)

    # Activation (NULL when the definition does not enable it)
    is_active = Column(Boolean, nullable=True)

    # Time-bounding (NULL when disabled; effective_to NULL = open-ended)
    effective_from = Column(DateTime, nullable=True)
    effective_to = Column(DateTime, nullable=True)

    # Versioning (NULL when disabled)
    version = Column(Integer, nullable=True)
    is_current = Column(Boolean, nullable=True, index=True)
    expired_at = Column(DateTime, nullable=True)

    # Canonical JSON of the business key (sorted keys), NULL when the key is empty.
    business_key = Column(String, nullable=True)
    # Lower-cased data values without their keys, one per line; backs free-text search.
    search_text = Column(Text, nullable=True)

    # Hierarchy – the parent reference is a typed column; the configured
    # parentLinkField name only appears when serialising.
    parent_ref = Column(String, nullable=True, index=True)
    parent_link_type = Column(String, nullable=True)

    created_by = Column(String, nullable=False)
    updated_by = Column(String, nullable=False)
    created_at = Column(DateTime, default=utc_now_naive)
    updated_at = Column(DateTime, default=utc_now_naive)

    definition = relationship("EntityDefinition", back_populates="records")

    __table_args__ = (
        Index("ix_entity_records_definition_current", "definition_id", "is_current"),
        Index("ix_entity_records_definition_key", "definition_id", "business_key"),
        # At most one current revision per business key.
        Index(
            "uq_entity_records_current_key",
            "definition_id",
            "business_key",
            unique=True,
            sqlite_where=text("is_current = 1"),
            postgresql_where=text("is_current"),
        ),
    )

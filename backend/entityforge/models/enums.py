"""Shared *Enum* definitions for SQLAlchemy & Pydantic models.

The Enums inherit from ``str`` so that:

* JSON serialisation remains unchanged (values render as plain strings).
* Equality checks against raw literals (``role == "ADMIN"``) keep working.
"""

from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class LinkType(str, Enum):
    """How a child record references its parent."""

    ID = "id"  # a specific record row (revision)
    CODE = "code"  # the parent's business code (logical parent)


class Capability(str, Enum):
    VIEW_ENTITIES = "view_entities"
    CREATE_ENTITY = "create_entity"
    EDIT_ENTITY = "edit_entity"
    DELETE_ENTITY = "delete_entity"
    VIEW_ENTITY_RECORDS = "view_entity_records"
    CREATE_ENTITY_RECORD = "create_entity_record"
    EDIT_ENTITY_RECORD = "edit_entity_record"
    DELETE_ENTITY_RECORD = "delete_entity_record"


__all__ = [
    "UserRole",
    "LinkType",
    "Capability",
]

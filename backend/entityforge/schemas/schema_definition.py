"""Typed model of a definition's data schema and record configuration.

A definition's ``schemaDefinition`` is a small JSON-schema subset.  Each
property is parsed into one member of a closed tagged union keyed on
``type`` (string / number / integer / boolean / array / object) so the
validator can dispatch on the kind instead of poking at raw dicts.

Wire names stay camelCase (``minLength``, ``defaultState`` …); Python
attributes are snake_case.
"""

from __future__ import annotations

from typing import Annotated
from typing import Any
from typing import Dict
from typing import List
from typing import Literal
from typing import Optional
from typing import Union

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator
from pydantic.alias_generators import to_camel

from entityforge.models.enums import LinkType

SUPPORTED_FORMATS = frozenset({"email", "date-time", "date", "uri"})


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


# ---------------------------------------------------------------------------
# Field kinds
# ---------------------------------------------------------------------------


class _FieldBase(CamelModel):
    # Unknown annotation keys (e.g. ``title``, ``x-ui``) are kept verbatim.
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="allow")

    description: Optional[str] = None
    enum: Optional[List[Any]] = None
    # Presence matters (a default of ``None`` is still a default) so callers
    # check ``has_default`` rather than the value.
    default: Any = None

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set


class StringField(_FieldBase):
    type: Literal["string"]
    min_length: Optional[int] = Field(None, ge=0)
    max_length: Optional[int] = Field(None, ge=0)
    pattern: Optional[str] = None
    format: Optional[str] = None


class NumberField(_FieldBase):
    type: Literal["number"]
    minimum: Optional[float] = None
    maximum: Optional[float] = None


class IntegerField(_FieldBase):
    type: Literal["integer"]
    minimum: Optional[float] = None
    maximum: Optional[float] = None


class BooleanField(_FieldBase):
    type: Literal["boolean"]


class ArrayField(_FieldBase):
    type: Literal["array"]
    items: Optional["FieldSchema"] = None


class ObjectField(_FieldBase):
    type: Literal["object"]
    properties: Dict[str, "FieldSchema"] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)


FieldSchema = Annotated[
    Union[StringField, NumberField, IntegerField, BooleanField, ArrayField, ObjectField],
    Field(discriminator="type"),
]

ArrayField.model_rebuild()
ObjectField.model_rebuild()


class SchemaDefinition(CamelModel):
    """Top-level record schema – always an object."""

    type: Literal["object"] = "object"
    properties: Dict[str, FieldSchema] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)

    @field_validator("required")
    @classmethod
    def _dedupe_required(cls, value: List[str]) -> List[str]:
        # ``required`` is a set; keep first-seen order for stable output.
        return list(dict.fromkeys(value))

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                name: field.model_dump(by_alias=True, exclude_unset=True, mode="json")
                for name, field in self.properties.items()
            },
            "required": list(self.required),
        }


# ---------------------------------------------------------------------------
# derivedRecordConfig
# ---------------------------------------------------------------------------


class ActivationConfig(CamelModel):
    enabled: bool = True
    default_state: bool = True
    # Definition-level usability flag: gates creation of new records.
    entity_active: bool = True
    use_time_bounding: bool = False


class VersioningConfig(CamelModel):
    enabled: bool = False


class HierarchyConfig(CamelModel):
    enabled: bool = False
    parent_link_field: str = "parentId"
    link_type: LinkType = LinkType.ID

    @field_validator("link_type", mode="before")
    @classmethod
    def _accept_legacy_id(cls, value: Any) -> Any:
        # Older payloads spell the row reference "_id".
        if value == "_id":
            return LinkType.ID
        return value

    @field_validator("parent_link_field")
    @classmethod
    def _strip_link_field(cls, value: str) -> str:
        return value.strip()


class DerivedRecordConfig(CamelModel):
    activation: ActivationConfig = Field(default_factory=ActivationConfig)
    versioning: VersioningConfig = Field(default_factory=VersioningConfig)
    hierarchy: HierarchyConfig = Field(default_factory=HierarchyConfig)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


__all__ = [
    "SUPPORTED_FORMATS",
    "CamelModel",
    "StringField",
    "NumberField",
    "IntegerField",
    "BooleanField",
    "ArrayField",
    "ObjectField",
    "FieldSchema",
    "SchemaDefinition",
    "ActivationConfig",
    "VersioningConfig",
    "HierarchyConfig",
    "DerivedRecordConfig",
]

"""Record data validation against a definition's schema subset.

The validator is a pure function over *(schema, payload)*:

* defaults are materialised for absent optional fields **before** checks,
* every ``required`` field must be present and non-null,
* every present declared field must match its kind and constraints,
* undeclared keys pass through untouched (open schema).

Definition-time parsing goes through the typed field-kind union in
:mod:`entityforge.schemas.schema_definition`.  Record data is checked with
``jsonschema`` (Draft 2020-12 plus its format checker) against the wire form
of that model, and every error is collected rather than only the first.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from dataclasses import field as dc_field
from typing import Any
from typing import Dict
from typing import Iterable
from typing import List
from typing import Mapping
from typing import Union

from jsonschema import Draft202012Validator
from jsonschema import FormatChecker
from jsonschema.exceptions import SchemaError
from pydantic import ValidationError as PydanticValidationError

from entityforge.errors import InvalidSchema
from entityforge.errors import ValidationFailed
from entityforge.schemas.schema_definition import SUPPORTED_FORMATS
from entityforge.schemas.schema_definition import ArrayField
from entityforge.schemas.schema_definition import ObjectField
from entityforge.schemas.schema_definition import SchemaDefinition
from entityforge.schemas.schema_definition import StringField
from entityforge.schemas.schemas import SchemaViolation

SchemaLike = Union[SchemaDefinition, Mapping[str, Any]]

_FORMAT_CHECKER = FormatChecker()


@dataclass
class ValidationResult:
    """Outcome of :func:`validate`: the materialised data plus any violations."""

    data: Dict[str, Any]
    violations: List[SchemaViolation] = dc_field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations


# ---------------------------------------------------------------------------
# Schema parsing (definition time)
# ---------------------------------------------------------------------------


def parse_schema(raw: SchemaLike) -> SchemaDefinition:
    """Turn a raw ``schemaDefinition`` into the typed model or raise ``InvalidSchema``."""

    if isinstance(raw, SchemaDefinition):
        schema = raw
    else:
        try:
            schema = SchemaDefinition.model_validate(raw)
        except PydanticValidationError as exc:
            problems = [
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in exc.errors()
            ]
            raise InvalidSchema("Schema definition is malformed", details={"problems": problems}) from exc

    problems = check_schema(schema)
    if problems:
        raise InvalidSchema(problems[0], details={"problems": problems})
    return schema


def check_schema(schema: SchemaDefinition) -> List[str]:
    """Return definition-time problems with *schema* (empty when usable)."""

    problems: List[str] = []
    _check_properties(schema.properties, schema.required, "", problems)
    if not problems:
        # Pass-through annotation keys must still leave a well-formed JSON schema.
        try:
            Draft202012Validator.check_schema(schema.to_wire())
        except SchemaError as exc:
            problems.append(f"{_format_path(exc.absolute_path) or '<root>'}: {exc.message}")
    return problems


def _check_properties(properties, required, path: str, problems: List[str]) -> None:
    for name in required:
        if name not in properties:
            problems.append(f"Required field '{_join(path, name)}' is not defined in properties")
    for name, field in properties.items():
        _check_field(field, _join(path, name), problems)


def _check_field(field, path: str, problems: List[str]) -> None:
    if field.enum is not None and len(field.enum) == 0:
        problems.append(f"{path}: enum must list at least one value")

    if isinstance(field, StringField):
        if field.min_length is not None and field.max_length is not None and field.min_length > field.max_length:
            problems.append(f"{path}: minLength exceeds maxLength")
        if field.pattern is not None:
            try:
                re.compile(field.pattern)
            except re.error as exc:
                problems.append(f"{path}: invalid pattern ({exc})")
        if field.format is not None and field.format not in SUPPORTED_FORMATS:
            problems.append(f"{path}: unsupported format '{field.format}'")
    elif field.type in ("number", "integer"):
        if field.minimum is not None and field.maximum is not None and field.minimum > field.maximum:
            problems.append(f"{path}: minimum exceeds maximum")
    elif isinstance(field, ArrayField) and field.items is not None:
        _check_field(field.items, f"{path}[]", problems)
    elif isinstance(field, ObjectField):
        _check_properties(field.properties, field.required, path, problems)

    if field.has_default and field.default is not None and not problems:
        wire = field.model_dump(by_alias=True, exclude_unset=True, mode="json")
        for error in _validator(wire).iter_errors(_prune_nulls(field, copy.deepcopy(field.default))):
            problems.append(f"{path}: default value is invalid ({error.message})")


# ---------------------------------------------------------------------------
# Record validation
# ---------------------------------------------------------------------------


def apply_defaults(schema: SchemaLike, payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of *payload* with defaults filled for absent optional fields."""

    schema = _coerce(schema)
    return _fill_defaults(schema.properties, schema.required, payload)


def validate(schema: SchemaLike, payload: Any) -> ValidationResult:
    """Validate *payload* against *schema*; never raises for bad data."""

    schema = _coerce(schema)

    if not isinstance(payload, Mapping):
        violation = _violation("", "type", f"record data must be an object, got {type(payload).__name__}")
        return ValidationResult(data={}, violations=[violation])

    data = _fill_defaults(schema.properties, schema.required, payload)
    # Null optional fields are skipped; a null required field is reported
    # as missing.  Both fall out of dropping declared nulls before the run.
    checked = _prune_object(schema.properties, data)
    errors = _validator(schema.to_wire()).iter_errors(checked)
    return ValidationResult(data=data, violations=_to_violations(errors))


def validate_or_raise(schema: SchemaLike, payload: Any) -> Dict[str, Any]:
    """Return the materialised data or raise :class:`ValidationFailed`."""

    result = validate(schema, payload)
    if not result.ok:
        raise ValidationFailed(result.violations)
    return result.data


def _coerce(schema: SchemaLike) -> SchemaDefinition:
    if isinstance(schema, SchemaDefinition):
        return schema
    return parse_schema(schema)


def _validator(wire: Mapping[str, Any]) -> Draft202012Validator:
    return Draft202012Validator(wire, format_checker=_FORMAT_CHECKER)


# Defaults ------------------------------------------------------------------


def _fill_defaults(properties, required, payload: Mapping[str, Any]) -> Dict[str, Any]:
    data = dict(payload)
    required_names = set(required)
    for name, field in properties.items():
        if name not in data:
            if name not in required_names and field.has_default:
                data[name] = copy.deepcopy(field.default)
            continue
        data[name] = _fill_nested(field, data[name])
    return data


def _fill_nested(field, value: Any) -> Any:
    if isinstance(field, ObjectField) and isinstance(value, Mapping):
        return _fill_defaults(field.properties, field.required, value)
    if isinstance(field, ArrayField) and isinstance(field.items, ObjectField) and isinstance(value, list):
        return [_fill_nested(field.items, item) for item in value]
    return value


# Nulls ---------------------------------------------------------------------


def _prune_object(properties, value: Mapping[str, Any]) -> Dict[str, Any]:
    pruned = {}
    for name, item in value.items():
        field = properties.get(name)
        if field is None:
            pruned[name] = item
        elif item is not None:
            pruned[name] = _prune_nulls(field, item)
    return pruned


def _prune_nulls(field, value: Any) -> Any:
    if isinstance(field, ObjectField) and isinstance(value, Mapping):
        return _prune_object(field.properties, value)
    if isinstance(field, ArrayField) and field.items is not None and isinstance(value, list):
        return [_prune_nulls(field.items, item) for item in value]
    return value


# Error mapping -------------------------------------------------------------


def _to_violations(errors: Iterable) -> List[SchemaViolation]:
    violations: List[SchemaViolation] = []
    seen = set()
    for error in sorted(errors, key=lambda e: list(map(str, e.absolute_path))):
        base = _format_path(error.absolute_path)
        if error.validator == "required":
            # One error per missing name; the name itself is not on the error.
            missing = [name for name in error.validator_value if name not in error.instance]
            for name in missing:
                path = _join(base, name)
                if (path, "required") not in seen:
                    seen.add((path, "required"))
                    violations.append(_violation(path, "required", f"'{path}' is required"))
            continue
        key = (base, error.validator)
        if key in seen:
            continue
        seen.add(key)
        violations.append(_violation(base, error.validator, error.message))
    return violations


def _format_path(parts: Iterable) -> str:
    path = ""
    for part in parts:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path = _join(path, str(part))
    return path


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _violation(path: str, constraint: str, message: str) -> SchemaViolation:
    return SchemaViolation(field=path, constraint=constraint, message=message)


__all__ = [
    "ValidationResult",
    "parse_schema",
    "check_schema",
    "apply_defaults",
    "validate",
    "validate_or_raise",
]

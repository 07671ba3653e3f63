"""JSON Schema validation adapter for formflow.

ValidationEngine wraps the jsonschema library. It checks and compiles a
compiled action schema once, then evaluates value maps against it and
normalizes jsonschema errors into one FieldError per failing field.

Rules applied per field, in this order, stopping at the first violation:

    required -> type -> format -> minLength/maxLength -> minimum/maximum
    -> enum/pattern

A value that is absent, None, or a whitespace-only string counts as missing.
Missing optional fields are not checked any further.

The field-keyed message map (``ValidationResult.outcome``) is empty exactly
when every field passes; it is what the workflow engine stores as
``field_errors``.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

import jsonschema
from dateutil.parser import isoparse
from jsonschema import Draft7Validator, FormatChecker

from formflow.compiler import CompiledSchema
from formflow.errors import FieldError
from formflow.types import FieldErrorCode

logger = logging.getLogger(__name__)

# Lower rank wins when a value breaks several rules.
RULE_ORDER: Dict[str, int] = {
    "type": 0,
    "format": 1,
    "minLength": 2,
    "maxLength": 2,
    "minimum": 3,
    "maximum": 3,
    "exclusiveMinimum": 3,
    "exclusiveMaximum": 3,
    "enum": 4,
    "const": 4,
    "pattern": 4,
    "oneOf": 5,
}

TYPE_DESCRIPTIONS: Dict[str, str] = {
    "string": "text",
    "number": "a number",
    "integer": "an integer",
    "boolean": "true or false",
}

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_email(instance: Any) -> bool:
    """Exactly one ``@``, non-empty local and domain parts, a dot in the domain."""
    if not isinstance(instance, str):
        return True
    if any(ch.isspace() for ch in instance):
        return False
    parts = instance.split("@")
    if len(parts) != 2:
        return False
    local, domain = parts
    return bool(local) and bool(domain) and "." in domain


def is_date(instance: Any) -> bool:
    """A calendar-valid ``YYYY-MM-DD`` date."""
    if not isinstance(instance, str):
        return True
    if not _DATE_RE.match(instance):
        return False
    isoparse(instance)
    return True


def build_format_checker() -> FormatChecker:
    """Format checker with the formats compiled schemas use."""
    checker = FormatChecker(formats=())
    checker.checks("email")(is_email)
    checker.checks("date", raises=(ValueError, OverflowError))(is_date)
    return checker


def is_blank(value: Any) -> bool:
    """Whether a value counts as not supplied."""
    return value is None or (isinstance(value, str) and not value.strip())


def _format_limit(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating a value map against a compiled schema.

    Attributes:
        is_valid: Whether every field passed
        errors: At most one FieldError per field, in field order
        data: The values that were validated
        missing_fields: Required fields that had no value
        invalid_fields: Fields whose value broke a rule

    Examples:
        >>> schema = {'type': 'object', 'properties': {'name': {'type': 'string'}}, 'required': ['name']}
        >>> engine = ValidationEngine(schema)
        >>> result = engine.validate({'name': 'test'})
        >>> result.is_valid
        True
        >>> result.outcome
        {}
    """
    is_valid: bool
    errors: List[FieldError]
    data: Optional[Dict[str, Any]] = None
    missing_fields: Optional[List[str]] = None
    invalid_fields: Optional[List[str]] = None

    @property
    def outcome(self) -> Dict[str, str]:
        """Field name -> message map; empty means valid."""
        return {e.path: e.message for e in self.errors}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "fieldErrors": self.outcome,
        }
        if self.data is not None:
            result["data"] = self.data
        if self.missing_fields is not None:
            result["missingFields"] = self.missing_fields
        if self.invalid_fields is not None:
            result["invalidFields"] = self.invalid_fields
        return result


class ValidationEngine:
    """Validates form values against a compiled action schema.

    The schema is checked and one jsonschema validator per field is built at
    construction time; validate() has no side effects and never mutates the
    values it is given.

    Attributes:
        schema: The JSON Schema being validated against
        format_checker: Format checker shared by the field validators

    Examples:
        >>> schema = {
        ...     'type': 'object',
        ...     'properties': {
        ...         'name': {'type': 'string', 'title': 'Name'},
        ...         'age': {'type': 'integer', 'title': 'Age', 'minimum': 18}
        ...     },
        ...     'required': ['name']
        ... }
        >>> engine = ValidationEngine(schema)
        >>> engine.validate({'name': 'Alice', 'age': 30}).is_valid
        True
        >>> engine.validate({'age': 15}).outcome
        {'name': 'Name is required', 'age': 'Age must be ≥ 18'}
    """

    def __init__(self, schema: Union[CompiledSchema, Dict[str, Any]]) -> None:
        """Initialize the engine.

        Args:
            schema: A CompiledSchema, or a JSON Schema object of the same shape

        Raises:
            jsonschema.SchemaError: If the schema itself is invalid
        """
        json_schema = schema.json_schema if isinstance(schema, CompiledSchema) else schema
        Draft7Validator.check_schema(json_schema)
        self.schema = json_schema
        self.format_checker = build_format_checker()

        properties: Dict[str, Any] = json_schema.get("properties", {})
        self._required = set(json_schema.get("required", []))
        self._labels = {name: prop.get("title") or name for name, prop in properties.items()}
        self._validators = {
            name: Draft7Validator(prop, format_checker=self.format_checker)
            for name, prop in properties.items()
        }
        self._field_order = list(properties)
        self._field_order.extend(n for n in json_schema.get("required", []) if n not in properties)

    def label_for(self, name: str) -> str:
        return self._labels.get(name, name)

    def validate(self, values: Mapping[str, Any]) -> ValidationResult:
        """Validate a value map.

        Args:
            values: Field name -> value

        Returns:
            ValidationResult; ``outcome`` holds the field-keyed messages
        """
        field_errors: List[FieldError] = []
        missing_fields: List[str] = []
        invalid_fields: List[str] = []

        for name in self._field_order:
            value = values.get(name)
            if is_blank(value):
                if name in self._required:
                    field_errors.append(self._required_error(name))
                    missing_fields.append(name)
                continue

            validator = self._validators.get(name)
            if validator is None:
                continue
            violations = list(validator.iter_errors(value))
            if not violations:
                continue

            first = min(violations, key=lambda e: RULE_ORDER.get(str(e.validator), len(RULE_ORDER)))
            field_errors.append(self._translate_error(name, first))
            invalid_fields.append(name)

        if field_errors:
            logger.debug("Validation failed for fields: %s", ", ".join(e.path for e in field_errors))

        return ValidationResult(
            is_valid=not field_errors,
            errors=field_errors,
            data=dict(values),
            missing_fields=missing_fields,
            invalid_fields=invalid_fields,
        )

    def _required_error(self, name: str) -> FieldError:
        return FieldError(
            path=name,
            code=FieldErrorCode.REQUIRED,
            message=f"{self.label_for(name)} is required",
            expected="required field",
            received=None,
        )

    def _translate_error(self, name: str, error: jsonschema.ValidationError) -> FieldError:
        """Translate a jsonschema ValidationError into a FieldError.

        Error mapping:
            - 'type' -> INVALID_TYPE
            - 'format' and 'pattern' -> INVALID_FORMAT
            - 'minLength' -> TOO_SHORT, 'maxLength' -> TOO_LONG
            - 'minimum' -> TOO_SMALL, 'maximum' -> TOO_LARGE
            - 'enum', 'const' and 'oneOf' -> INVALID_VALUE
            - anything else -> CUSTOM
        """
        label = self.label_for(name)
        keyword = error.validator
        limit = error.validator_value

        if keyword == "type":
            expected_type = limit if isinstance(limit, str) else "/".join(limit)
            return FieldError(
                path=name,
                code=FieldErrorCode.INVALID_TYPE,
                message=f"{label} must be {TYPE_DESCRIPTIONS.get(expected_type, expected_type)}",
                expected=expected_type,
                received=type(error.instance).__name__,
            )

        if keyword == "format":
            return FieldError(
                path=name,
                code=FieldErrorCode.INVALID_FORMAT,
                message=f"{label} must be a valid {limit}",
                expected=limit,
                received=error.instance,
            )

        if keyword == "minLength":
            return FieldError(
                path=name,
                code=FieldErrorCode.TOO_SHORT,
                message=f"{label} must have at least {limit} characters",
                expected=f"minimum {limit} characters",
                received=f"{len(error.instance)} characters",
            )

        if keyword == "maxLength":
            return FieldError(
                path=name,
                code=FieldErrorCode.TOO_LONG,
                message=f"{label} must have at most {limit} characters",
                expected=f"maximum {limit} characters",
                received=f"{len(error.instance)} characters",
            )

        if keyword in ("minimum", "exclusiveMinimum"):
            op = "≥" if keyword == "minimum" else ">"
            return FieldError(
                path=name,
                code=FieldErrorCode.TOO_SMALL,
                message=f"{label} must be {op} {_format_limit(limit)}",
                expected=f"{keyword}: {limit}",
                received=error.instance,
            )

        if keyword in ("maximum", "exclusiveMaximum"):
            op = "≤" if keyword == "maximum" else "<"
            return FieldError(
                path=name,
                code=FieldErrorCode.TOO_LARGE,
                message=f"{label} must be {op} {_format_limit(limit)}",
                expected=f"{keyword}: {limit}",
                received=error.instance,
            )

        if keyword in ("enum", "const", "oneOf"):
            return FieldError(
                path=name,
                code=FieldErrorCode.INVALID_VALUE,
                message=f"{label} must be one of the allowed values",
                expected=self.schema["properties"][name].get("enum", limit),
                received=error.instance,
            )

        if keyword == "pattern":
            return FieldError(
                path=name,
                code=FieldErrorCode.INVALID_FORMAT,
                message=f"{label} does not match the required pattern",
                expected=f"pattern: {limit}",
                received=error.instance,
            )

        return FieldError(
            path=name,
            code=FieldErrorCode.CUSTOM,
            message=f"{label} is invalid: {error.message}",
            expected=limit,
            received=error.instance,
        )


def validate(values: Mapping[str, Any], schema: Union[CompiledSchema, Dict[str, Any]]) -> Dict[str, str]:
    """Validate values against a schema and return the field-keyed message map.

    Builds a fresh ValidationEngine; callers validating repeatedly against
    the same schema should keep an engine (the registry does).
    """
    return ValidationEngine(schema).validate(values).outcome


__all__ = [
    "RULE_ORDER",
    "ValidationResult",
    "ValidationEngine",
    "build_format_checker",
    "is_blank",
    "is_email",
    "is_date",
    "validate",
]

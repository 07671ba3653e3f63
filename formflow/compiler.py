"""Schema compiler: field list -> validation schema, UI layout and defaults.

compile_fields() is a pure function. The same field list always compiles to
structurally identical output, which is what lets the registry cache one
CompiledSchema per action.

The validation schema is a Draft 7 JSON Schema object; the UI layout is a
JSON Forms style ``VerticalLayout`` holding one ``Control`` per field. The
compiler only attaches rendering hints (placeholder, multi-line, enumerated
options); choosing a concrete widget is up to the renderer.

Examples:
    >>> from formflow.definitions import FieldDefinition
    >>> compiled = compile_fields(
    ...     [FieldDefinition(name="username", label="Username", required=True, min_length=3)],
    ...     title="Create User",
    ... )
    >>> compiled.json_schema["required"]
    ['username']
    >>> compiled.json_schema["properties"]["username"]
    {'type': 'string', 'title': 'Username', 'minLength': 3}
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from formflow.definitions import FieldDefinition, check_fields
from formflow.types import FieldKind

logger = logging.getLogger(__name__)

STRING_TYPE = "string"
NUMERIC_TYPES = ("number", "integer")

# kind -> (JSON Schema type, format)
KIND_TO_SCHEMA_TYPE: Dict[FieldKind, Tuple[str, Optional[str]]] = {
    FieldKind.STRING: ("string", None),
    FieldKind.TEXT: ("string", None),
    FieldKind.TEXTAREA: ("string", None),
    FieldKind.PASSWORD: ("string", None),
    FieldKind.EMAIL: ("string", "email"),
    FieldKind.NUMBER: ("number", None),
    FieldKind.INTEGER: ("integer", None),
    FieldKind.BOOLEAN: ("boolean", None),
    FieldKind.DATE: ("string", "date"),
    FieldKind.SELECT: ("string", None),
    FieldKind.RADIO: ("string", None),
}


@dataclass(frozen=True)
class CompiledSchema:
    """Everything derived from one field list.

    Treat the contained dicts as read-only: a CompiledSchema is shared by
    every session of its action. Use to_dict() for a private copy.

    Attributes:
        title: Schema title (normally the action label)
        json_schema: Draft 7 JSON Schema for the value map
        ui_schema: UI layout description
        defaults: Field name -> default value, for fields that declare one
        fields: The field definitions the schema was compiled from
    """
    title: str
    json_schema: Dict[str, Any]
    ui_schema: Dict[str, Any]
    defaults: Dict[str, Any]
    fields: Tuple[FieldDefinition, ...]

    @property
    def required(self) -> List[str]:
        return list(self.json_schema.get("required", []))

    def initial_values(self) -> Dict[str, Any]:
        """A fresh copy of the default-values map, for seeding a session."""
        return copy.deepcopy(self.defaults)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "jsonSchema": copy.deepcopy(self.json_schema),
            "uiSchema": copy.deepcopy(self.ui_schema),
            "defaults": copy.deepcopy(self.defaults),
        }


def schema_type_for(field_def: FieldDefinition) -> Tuple[str, Optional[str]]:
    """Return the (JSON Schema type, format) pair for a field's kind.

    Kinds outside FieldKind are free-form strings.
    """
    if isinstance(field_def.kind, FieldKind):
        return KIND_TO_SCHEMA_TYPE[field_def.kind]
    logger.debug("Unknown kind '%s' on field '%s' compiled as string", field_def.kind, field_def.name)
    return STRING_TYPE, None


def compile_property(field_def: FieldDefinition) -> Dict[str, Any]:
    """Build the JSON Schema property for a single field."""
    schema_type, schema_format = schema_type_for(field_def)
    prop: Dict[str, Any] = {"type": schema_type}

    if field_def.label:
        prop["title"] = field_def.label
    if field_def.description:
        prop["description"] = field_def.description
    if schema_format:
        prop["format"] = schema_format

    if schema_type == STRING_TYPE:
        if field_def.min_length is not None:
            prop["minLength"] = field_def.min_length
        if field_def.max_length is not None:
            prop["maxLength"] = field_def.max_length
        if field_def.pattern is not None:
            prop["pattern"] = field_def.pattern
    elif schema_type in NUMERIC_TYPES:
        if field_def.minimum is not None:
            prop["minimum"] = field_def.minimum
        if field_def.maximum is not None:
            prop["maximum"] = field_def.maximum

    if isinstance(field_def.kind, FieldKind) and field_def.kind.is_enumerated:
        prop["enum"] = [o.value for o in field_def.options]
        prop["oneOf"] = [{"const": o.value, "title": o.label} for o in field_def.options]

    if field_def.has_default:
        prop["default"] = copy.deepcopy(field_def.default)

    return prop


def json_pointer_token(name: str) -> str:
    """Escape a property name for use in a JSON pointer (RFC 6901)."""
    return name.replace("~", "~0").replace("/", "~1")


def compile_control(field_def: FieldDefinition) -> Dict[str, Any]:
    """Build the UI layout control descriptor for a single field."""
    control: Dict[str, Any] = {
        "type": "Control",
        "scope": f"#/properties/{json_pointer_token(field_def.name)}",
        "label": field_def.display_label,
    }

    options: Dict[str, Any] = {}
    if field_def.placeholder:
        options["placeholder"] = field_def.placeholder
    if field_def.kind == FieldKind.TEXTAREA:
        options["multi"] = True
    if field_def.kind == FieldKind.PASSWORD:
        options["format"] = "password"
    if isinstance(field_def.kind, FieldKind) and field_def.kind.is_enumerated:
        options["enumOptions"] = [o.to_dict() for o in field_def.options]
        if field_def.kind == FieldKind.RADIO:
            options["format"] = "radio"
    if options:
        control["options"] = options

    return control


def compile_fields(fields: Iterable[FieldDefinition], title: str = "Form") -> CompiledSchema:
    """Compile a field list into its validation schema, UI layout and defaults.

    Args:
        fields: Ordered field definitions
        title: Title of the resulting schema

    Returns:
        CompiledSchema with properties and UI controls in field order

    Raises:
        InvalidDefinitionError: If two fields share a name
    """
    fields = check_fields(fields)

    properties: Dict[str, Any] = {}
    required: List[str] = []
    defaults: Dict[str, Any] = {}
    elements: List[Dict[str, Any]] = []

    for field_def in fields:
        properties[field_def.name] = compile_property(field_def)
        if field_def.required:
            required.append(field_def.name)
        if field_def.has_default:
            defaults[field_def.name] = copy.deepcopy(field_def.default)
        elements.append(compile_control(field_def))

    json_schema: Dict[str, Any] = {
        "title": title,
        "type": "object",
        "properties": properties,
        "required": required,
    }
    ui_schema: Dict[str, Any] = {
        "type": "VerticalLayout",
        "elements": elements,
    }

    return CompiledSchema(
        title=title,
        json_schema=json_schema,
        ui_schema=ui_schema,
        defaults=defaults,
        fields=fields,
    )


__all__ = [
    "KIND_TO_SCHEMA_TYPE",
    "CompiledSchema",
    "schema_type_for",
    "compile_property",
    "compile_control",
    "json_pointer_token",
    "compile_fields",
]

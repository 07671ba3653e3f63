"""Field and action definitions.

An action is described by an ordered list of field definitions (the
``formJson`` of the action). Definitions are immutable value objects; they
are checked for their invariants when constructed:

- field names are unique within an action
- select and radio fields carry at least one option, with unique string values

Wire dictionaries use the ``type`` key for the field kind, matching the
formJson documents operators write. ``kind`` is accepted as an alias.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from typing_extensions import TypeAlias

from formflow.errors import InvalidDefinitionError
from formflow.types import FieldKind

logger = logging.getLogger(__name__)

SubmitHandler: TypeAlias = Callable[[Dict[str, Any]], Any]
"""Submit handler: receives the validated values, returns a result.

It may be a plain callable or a coroutine function. Raising (or, for a
coroutine, failing) means the submission was rejected.
"""

_UNSET = object()


@dataclass(frozen=True)
class FieldOption:
    """One ``{value, label}`` choice of a select or radio field."""
    value: str
    label: str

    def __post_init__(self):
        # select and radio compile to string schemas
        if not isinstance(self.value, str):
            raise InvalidDefinitionError(
                f"Option value {self.value!r} must be a string, got {type(self.value).__name__}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "label": self.label}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldOption":
        return cls(value=data["value"], label=str(data.get("label", data["value"])))


@dataclass(frozen=True)
class FieldDefinition:
    """A single named, typed input slot of an action.

    ``kind`` is normally a FieldKind. A definition loaded leniently may keep
    an unrecognized kind as a plain string; the compiler treats those as
    free-form strings.

    Attributes:
        name: Key of the field, unique within its action
        kind: Field kind
        label: Human label used in the UI and in error messages
        required: Whether a value must be supplied
        min_length: Minimum string length
        max_length: Maximum string length
        minimum: Inclusive numeric lower bound
        maximum: Inclusive numeric upper bound
        pattern: Regular expression a string value must match
        options: Choices of a select or radio field
        default: Initial value; ``has_default`` tells whether one was given
        placeholder: Rendering hint
        description: Help text copied into the schema

    Examples:
        >>> f = FieldDefinition(name="username", kind=FieldKind.STRING, required=True, min_length=3)
        >>> f.display_label
        'username'
    """
    name: str
    kind: Union[FieldKind, str] = FieldKind.STRING
    label: Optional[str] = None
    required: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    pattern: Optional[str] = None
    options: Tuple[FieldOption, ...] = ()
    default: Any = _UNSET
    placeholder: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise InvalidDefinitionError("Field name must be a non-empty string")
        if not isinstance(self.kind, FieldKind):
            try:
                object.__setattr__(self, "kind", FieldKind(self.kind))
            except ValueError:
                pass  # unknown kinds compile as strings
        if not isinstance(self.options, tuple):
            object.__setattr__(self, "options", tuple(self.options))
        if isinstance(self.kind, FieldKind) and self.kind.is_enumerated and not self.options:
            raise InvalidDefinitionError(
                f"Field '{self.name}' of kind '{self.kind.value}' requires at least one option"
            )
        values = [o.value for o in self.options]
        duplicates = sorted({v for v in values if values.count(v) > 1})
        if duplicates:
            raise InvalidDefinitionError(
                f"Field '{self.name}' has duplicate option values: {', '.join(duplicates)}"
            )

    @property
    def display_label(self) -> str:
        """The label, falling back to the field name."""
        return self.label or self.name

    @property
    def has_default(self) -> bool:
        return self.default is not _UNSET

    @property
    def kind_value(self) -> str:
        return self.kind.value if isinstance(self.kind, FieldKind) else str(self.kind)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a formJson entry."""
        result: Dict[str, Any] = {
            "name": self.name,
            "type": self.kind_value,
        }
        if self.label is not None:
            result["label"] = self.label
        if self.required:
            result["required"] = True
        if self.min_length is not None:
            result["minLength"] = self.min_length
        if self.max_length is not None:
            result["maxLength"] = self.max_length
        if self.minimum is not None:
            result["minimum"] = self.minimum
        if self.maximum is not None:
            result["maximum"] = self.maximum
        if self.pattern is not None:
            result["pattern"] = self.pattern
        if self.options:
            result["options"] = [o.to_dict() for o in self.options]
        if self.has_default:
            result["default"] = self.default
        if self.placeholder is not None:
            result["placeholder"] = self.placeholder
        if self.description is not None:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], strict: bool = False) -> "FieldDefinition":
        """Create FieldDefinition from a formJson entry.

        Args:
            data: The formJson entry
            strict: Raise on an unknown kind instead of keeping it as a string

        Raises:
            InvalidDefinitionError: If the entry is malformed
        """
        if "name" not in data:
            raise InvalidDefinitionError(f"Field definition has no name: {data!r}")

        raw_kind = data.get("type", data.get("kind", FieldKind.STRING.value))
        try:
            kind: Union[FieldKind, str] = FieldKind(raw_kind)
        except ValueError:
            if strict:
                raise InvalidDefinitionError(
                    f"Field '{data['name']}' has unknown kind '{raw_kind}'"
                ) from None
            logger.warning("Field '%s' has unknown kind '%s', treating it as a string", data["name"], raw_kind)
            kind = str(raw_kind)

        return cls(
            name=data["name"],
            kind=kind,
            label=data.get("label"),
            required=bool(data.get("required", False)),
            min_length=data.get("minLength"),
            max_length=data.get("maxLength"),
            minimum=data.get("minimum"),
            maximum=data.get("maximum"),
            pattern=data.get("pattern"),
            options=tuple(FieldOption.from_dict(o) for o in data.get("options") or ()),
            default=data["default"] if "default" in data else _UNSET,
            placeholder=data.get("placeholder"),
            description=data.get("description"),
        )


def check_fields(fields: Iterable[FieldDefinition]) -> Tuple[FieldDefinition, ...]:
    """Return the fields as a tuple after checking that names are unique.

    Raises:
        InvalidDefinitionError: If two fields share a name
    """
    fields = tuple(fields)
    seen = set()
    for f in fields:
        if f.name in seen:
            raise InvalidDefinitionError(f"Duplicate field name '{f.name}'")
        seen.add(f.name)
    return fields


@dataclass(frozen=True)
class ActionDefinition:
    """A named operation: a field list plus the handler that executes it.

    Attributes:
        id: Registry key
        label: Human label, used as the schema title
        fields: Ordered field definitions
        handler: Submit handler; None for definitions that are only described
    """
    id: str
    label: str
    fields: Tuple[FieldDefinition, ...]
    handler: Optional[SubmitHandler] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if not self.id:
            raise InvalidDefinitionError("Action id must be a non-empty string")
        object.__setattr__(self, "fields", check_fields(self.fields))

    def field_named(self, name: str) -> Optional[FieldDefinition]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def form_json(self) -> List[Dict[str, Any]]:
        """The field list in its wire form."""
        return [f.to_dict() for f in self.fields]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization (the handler is not serialized)."""
        return {
            "id": self.id,
            "label": self.label,
            "formJson": self.form_json(),
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        handler: Optional[SubmitHandler] = None,
        strict: bool = False,
    ) -> "ActionDefinition":
        """Create ActionDefinition from ``{id, label, formJson}``."""
        if "id" not in data:
            raise InvalidDefinitionError(f"Action definition has no id: {data!r}")
        return cls(
            id=data["id"],
            label=data.get("label") or data["id"],
            fields=tuple(FieldDefinition.from_dict(f, strict=strict) for f in data.get("formJson", [])),
            handler=handler,
        )


__all__ = [
    "SubmitHandler",
    "FieldOption",
    "FieldDefinition",
    "ActionDefinition",
    "check_fields",
]

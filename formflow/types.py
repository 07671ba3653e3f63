"""Core type definitions for formflow.

This module defines the fundamental enumerations used throughout the package:
- FieldKind: The closed set of field kinds an action definition may declare
- FormState: Lifecycle states of a form workflow session
- EventType: Commands a session accepts, plus the internal submission outcomes
- FieldErrorCode: Validation error codes for individual fields

These types form the contract between the schema compiler, the validation
adapter and the workflow engine.
"""

from enum import Enum
from typing import FrozenSet


class FieldKind(str, Enum):
    """Kinds of form field.

    The kind decides the JSON Schema type a field compiles to. ``text``,
    ``textarea`` and ``password`` are rendering variants of ``string``;
    ``radio`` is a rendering variant of ``select``.
    """
    STRING = "string"
    TEXT = "text"
    TEXTAREA = "textarea"
    PASSWORD = "password"
    EMAIL = "email"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    SELECT = "select"
    RADIO = "radio"
    DATE = "date"

    @property
    def is_enumerated(self) -> bool:
        return self in (FieldKind.SELECT, FieldKind.RADIO)


class FormState(str, Enum):
    """Form session lifecycle states.

    ``validating`` is transient: it is always left within the same event.
    ``success`` ends one submission attempt but the session stays alive.
    """
    IDLE = "idle"
    EDITING = "editing"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    SUCCESS = "success"


class EventType(str, Enum):
    """Events understood by the form workflow engine.

    The first group are commands a Session Host may forward from a client.
    ``SUBMIT_DONE`` and ``SUBMIT_ERROR`` are raised internally when the
    submit handler settles and are never accepted from the wire.
    """
    OPEN = "OPEN"
    PREFILL = "PREFILL"
    CHANGE = "CHANGE"
    SUBMIT = "SUBMIT"
    RETRY = "RETRY"
    RESET = "RESET"
    NEW = "NEW"
    CLOSE = "CLOSE"
    SUBMIT_DONE = "SUBMIT_DONE"
    SUBMIT_ERROR = "SUBMIT_ERROR"


INTERNAL_EVENTS: FrozenSet[EventType] = frozenset({
    EventType.SUBMIT_DONE,
    EventType.SUBMIT_ERROR,
})


class FieldErrorCode(str, Enum):
    """Validation error codes for individual field failures."""
    REQUIRED = "required"
    INVALID_TYPE = "invalid_type"
    INVALID_FORMAT = "invalid_format"
    INVALID_VALUE = "invalid_value"
    TOO_LONG = "too_long"
    TOO_SHORT = "too_short"
    TOO_SMALL = "too_small"
    TOO_LARGE = "too_large"
    CUSTOM = "custom"


__all__ = [
    "FieldKind",
    "FormState",
    "EventType",
    "INTERNAL_EVENTS",
    "FieldErrorCode",
]

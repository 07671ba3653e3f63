"""Error types and structured field errors for formflow.

All exceptions raised by the package derive from FormflowError:

- DefinitionError: an unknown action id was requested
- InvalidDefinitionError: a field list or action definition is malformed
- ValidationError: submitted values failed validation (field-keyed messages)
- SubmissionError: the submit handler rejected the values
- ProtocolError: an inbound session message could not be understood

FieldError is the structured per-field record produced by the validation
adapter; its ``message`` is what ends up in a session's ``field_errors``.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from formflow.types import FieldErrorCode


class FormflowError(Exception):
    """Base class for every error raised by formflow."""


class DefinitionError(FormflowError):
    """Raised when an action id is not present in the registry.

    Attributes:
        action_id: The id that was looked up
    """

    def __init__(self, action_id: str, message: Optional[str] = None):
        self.action_id = action_id
        super().__init__(message or f"Action '{action_id}' not found")


class InvalidDefinitionError(FormflowError):
    """Raised when a field list or action definition breaks an invariant."""


class ValidationError(FormflowError):
    """Raised when values fail validation outside of a workflow session.

    Inside a session validation failures are never raised; they are stored
    on the session context and the machine returns to ``editing``.

    Attributes:
        errors: Mapping of field name to human-readable message
    """

    def __init__(self, errors: Mapping[str, str], message: str = "Validation failed"):
        self.errors: Dict[str, str] = dict(errors)
        super().__init__(message)


class SubmissionError(FormflowError):
    """Raised by (or on behalf of) a submit handler that rejects the values.

    Attributes:
        message: Human-readable reason, shown as the session's server error
        payload: Optional structured rejection data
    """

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None):
        self.message = message
        self.payload = payload
        super().__init__(message)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], default: str = "Submission failed") -> "SubmissionError":
        """Build a SubmissionError from a ``{"message": ...}`` rejection payload."""
        message = payload.get("message") or default
        return cls(str(message), payload=payload)


class ProtocolError(FormflowError):
    """Raised when an inbound message is unparseable or names an unknown event.

    Attributes:
        raw: The offending message, as received
    """

    def __init__(self, message: str, raw: Any = None):
        self.raw = raw
        super().__init__(message)


@dataclass(frozen=True)
class FieldError:
    """Per-field validation error details.

    Attributes:
        path: Field name the error applies to
        code: Specific validation error code
        message: Human-readable message naming the field's label
        expected: Optional - what was expected (type, format, limit, values)
        received: Optional - what was actually received

    Examples:
        >>> err = FieldError(
        ...     path="email",
        ...     code=FieldErrorCode.INVALID_FORMAT,
        ...     message="Email must be a valid email",
        ...     expected="email",
        ...     received="not-an-email"
        ... )
        >>> err.path
        'email'
    """
    path: str
    code: FieldErrorCode
    message: str
    expected: Optional[Any] = None
    received: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "path": self.path,
            "code": self.code.value if isinstance(self.code, FieldErrorCode) else self.code,
            "message": self.message,
        }
        if self.expected is not None:
            result["expected"] = self.expected
        if self.received is not None:
            result["received"] = self.received
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldError":
        """Create FieldError from dict."""
        code = data["code"]
        if isinstance(code, str):
            code = FieldErrorCode(code)
        return cls(
            path=data["path"],
            code=code,
            message=data["message"],
            expected=data.get("expected"),
            received=data.get("received"),
        )


__all__ = [
    "FormflowError",
    "DefinitionError",
    "InvalidDefinitionError",
    "ValidationError",
    "SubmissionError",
    "ProtocolError",
    "FieldError",
]

"""Session context and state snapshots.

SessionContext is the mutable per-session record owned by exactly one
FormWorkflow; no other component may change it. Snapshot is the immutable
view of ``{state, context}`` handed to subscribers after every transition.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from formflow.types import EventType, FormState


@dataclass
class SessionContext:
    """Per-session workflow data.

    Attributes:
        values: Field name -> current value
        field_errors: Field name -> message, only for currently-invalid fields
        submitting: True while the submit handler is in flight
        result: Payload of the last successful submission
        server_error: Message of the last rejected submission
    """
    values: Dict[str, Any] = field(default_factory=dict)
    field_errors: Dict[str, str] = field(default_factory=dict)
    submitting: bool = False
    result: Any = None
    server_error: Optional[str] = None

    def copy(self) -> "SessionContext":
        """Deep copy, so snapshots never alias live session data."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "values": copy.deepcopy(self.values),
            "fieldErrors": dict(self.field_errors),
            "submitting": self.submitting,
            "result": copy.deepcopy(self.result),
            "serverError": self.server_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionContext":
        """Create SessionContext from dict."""
        return cls(
            values=dict(data.get("values") or {}),
            field_errors=dict(data.get("fieldErrors") or {}),
            submitting=bool(data.get("submitting", False)),
            result=data.get("result"),
            server_error=data.get("serverError"),
        )


@dataclass(frozen=True)
class Snapshot:
    """State and context right after one transition.

    Attributes:
        state: State entered by the transition
        context: Copy of the session context at that moment
        event: Event that caused the transition (None for the initial snapshot)
        ts: UTC timestamp of the transition
    """
    state: FormState
    context: SessionContext
    event: Optional[EventType]
    ts: datetime

    def matches(self, state: FormState) -> bool:
        return self.state == state

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the outbound ``{state, context}`` message body."""
        return {
            "state": self.state.value,
            "context": self.context.to_dict(),
        }


__all__ = [
    "SessionContext",
    "Snapshot",
]

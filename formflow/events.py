"""Inbound events and outbound snapshot dispatch.

FormEvent is a command sent to a form workflow (OPEN, CHANGE, SUBMIT, ...).
FormEvent.from_dict() parses the wire form a Session Host receives and
raises ProtocolError for anything it cannot understand.

SnapshotEmitter delivers Snapshots to subscribers synchronously, in
registration order, so observers see states in the exact order traversed.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from formflow.context import Snapshot
from formflow.errors import ProtocolError
from formflow.types import INTERNAL_EVENTS, EventType, FormState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FormEvent:
    """A single event sent to a form workflow.

    Attributes:
        type: Event type
        name: Field name (CHANGE)
        value: New field value (CHANGE)
        data: Values to merge (PREFILL), or the handler outcome (SUBMIT_DONE/SUBMIT_ERROR)

    Examples:
        >>> FormEvent.from_dict({"type": "CHANGE", "name": "username", "value": "jsmith"})
        FormEvent(type=<EventType.CHANGE: 'CHANGE'>, name='username', value='jsmith', data=None)
    """
    type: EventType
    name: Optional[str] = None
    value: Any = None
    data: Any = None

    def __post_init__(self):
        if isinstance(self.type, str) and not isinstance(self.type, EventType):
            object.__setattr__(self, "type", EventType(self.type))

    @classmethod
    def open(cls) -> "FormEvent":
        return cls(EventType.OPEN)

    @classmethod
    def prefill(cls, data: Dict[str, Any]) -> "FormEvent":
        return cls(EventType.PREFILL, data=dict(data))

    @classmethod
    def change(cls, name: str, value: Any) -> "FormEvent":
        return cls(EventType.CHANGE, name=name, value=value)

    @classmethod
    def submit(cls) -> "FormEvent":
        return cls(EventType.SUBMIT)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire form."""
        result: Dict[str, Any] = {"type": self.type.value}
        if self.name is not None:
            result["name"] = self.name
            result["value"] = self.value
        if self.data is not None and self.type == EventType.PREFILL:
            result["data"] = self.data
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "FormEvent":
        """Parse an inbound command.

        ``field`` is accepted as an alias of ``name`` and ``initialData`` of
        ``data``. Internal events are not accepted from the wire.

        Raises:
            ProtocolError: If the message is not a command this engine knows
        """
        if not isinstance(data, dict):
            raise ProtocolError("Event must be a JSON object", raw=data)

        raw_type = data.get("type")
        try:
            event_type = EventType(raw_type)
        except ValueError:
            raise ProtocolError(f"Unknown event type: {raw_type!r}", raw=data) from None
        if event_type in INTERNAL_EVENTS:
            raise ProtocolError(f"Event type {raw_type!r} cannot be sent by a client", raw=data)

        if event_type == EventType.CHANGE:
            name = data.get("name", data.get("field"))
            if not isinstance(name, str) or not name:
                raise ProtocolError("CHANGE requires a field name", raw=data)
            return cls(event_type, name=name, value=data.get("value"))

        if event_type == EventType.PREFILL:
            prefill = data.get("data", data.get("initialData")) or {}
            if not isinstance(prefill, dict):
                raise ProtocolError("PREFILL data must be an object", raw=data)
            return cls(event_type, data=dict(prefill))

        return cls(event_type)


SnapshotListener = Callable[[Snapshot], None]
"""Type alias for snapshot listener callbacks.

Listeners are called synchronously after each transition. An exception
raised by a listener is logged and does not reach the engine.
"""


class SnapshotEmitter:
    """Dispatches snapshots to listeners.

    Features:
    - State-specific subscriptions (only snapshots entering that state)
    - Wildcard subscriptions (every snapshot)
    - Synchronous dispatch in registration order
    - Error isolation (a failing listener is logged, the rest still run)

    Examples:
        >>> emitter = SnapshotEmitter()
        >>> seen = []
        >>> emitter.on(FormState.SUCCESS, lambda s: seen.append(s.context.result))
        >>> emitter.on_any(lambda s: seen.append(s.state.value))
    """

    def __init__(self):
        """Initialize emitter with empty listener registries."""
        self._listeners: Dict[FormState, List[SnapshotListener]] = {}
        self._any_listeners: List[SnapshotListener] = []

    def on(self, state: FormState, listener: SnapshotListener) -> None:
        """Subscribe to snapshots entering a specific state."""
        self._listeners.setdefault(state, []).append(listener)

    def on_any(self, listener: SnapshotListener) -> Callable[[], None]:
        """Subscribe to every snapshot.

        Returns:
            A callable that removes the subscription
        """
        self._any_listeners.append(listener)
        return lambda: self.off_any(listener)

    def off(self, state: FormState, listener: SnapshotListener) -> None:
        """Unsubscribe from a specific state."""
        listeners = self._listeners.get(state, [])
        if listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: SnapshotListener) -> None:
        """Remove a wildcard subscription."""
        if listener in self._any_listeners:
            self._any_listeners.remove(listener)

    def emit(self, snapshot: Snapshot) -> None:
        """Dispatch a snapshot to all matching listeners.

        State-specific listeners run first, then wildcard listeners.
        """
        listeners = list(self._listeners.get(snapshot.state, [])) + list(self._any_listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener %r failed on state %s", listener, snapshot.state.value)

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, state: Optional[FormState] = None) -> int:
        """Count registered listeners.

        Args:
            state: If provided, count listeners for this state only.
                   If None, count all listeners (including wildcard).
        """
        if state is not None:
            return len(self._listeners.get(state, []))
        return len(self._any_listeners) + sum(len(ls) for ls in self._listeners.values())


__all__ = [
    "FormEvent",
    "SnapshotListener",
    "SnapshotEmitter",
]

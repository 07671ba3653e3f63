"""Form workflow state machine.

One FormWorkflow instance governs one form session:

    idle --OPEN/PREFILL--> editing --SUBMIT/RETRY--> validating
    validating --(valid)--> submitting --(resolved)--> success
    validating --(invalid)--> editing
    submitting --(rejected)--> editing
    success --OPEN/NEW--> editing, success --RESET/CLOSE--> idle
    editing --RESET/CLOSE--> idle

Validation happens in the entry action of ``validating``, which stores the
outcome as ``field_errors``. The guard that leaves ``validating`` only reads
that stored outcome. Events without a transition in the current state are
ignored; in particular nothing is accepted while ``submitting`` except the
handler's own outcome.

Every event is processed to completion, including automatic transitions,
before the next one. Events sent while another is being processed (for
example from a listener) are queued. A Snapshot is emitted for every
transition, in the order the states are traversed.

Usage:
    >>> from formflow.compiler import compile_fields
    >>> from formflow.definitions import FieldDefinition
    >>> schema = compile_fields([FieldDefinition(name="username", label="Username", required=True, min_length=3)])
    >>> wf = FormWorkflow(schema, submit=lambda values: {"id": "user_1"})
    >>> wf.send(FormEvent.open()).state
    <FormState.EDITING: 'editing'>
    >>> wf.send(FormEvent.change("username", "ab")).state
    <FormState.EDITING: 'editing'>
    >>> wf.send(FormEvent.submit()).context.field_errors
    {'username': 'Username must have at least 3 characters'}
"""

import asyncio
import copy
import inspect
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Deque, Dict, List, Optional, Union

from formflow.compiler import CompiledSchema
from formflow.config import FormflowConfig
from formflow.context import SessionContext, Snapshot
from formflow.definitions import SubmitHandler
from formflow.errors import ProtocolError, SubmissionError
from formflow.events import FormEvent, SnapshotEmitter, SnapshotListener
from formflow.types import INTERNAL_EVENTS, EventType, FormState
from formflow.validation import ValidationEngine

logger = logging.getLogger(__name__)


# Event-driven transitions, per state. ``validating`` has none: it is left
# automatically as soon as it is entered.
VALID_TRANSITIONS: Dict[FormState, Dict[EventType, FormState]] = {
    FormState.IDLE: {
        EventType.OPEN: FormState.EDITING,
        EventType.PREFILL: FormState.EDITING,
    },
    FormState.EDITING: {
        EventType.CHANGE: FormState.EDITING,
        EventType.SUBMIT: FormState.VALIDATING,
        EventType.RETRY: FormState.VALIDATING,
        EventType.RESET: FormState.IDLE,
        EventType.CLOSE: FormState.IDLE,
    },
    FormState.VALIDATING: {},
    FormState.SUBMITTING: {
        EventType.SUBMIT_DONE: FormState.SUCCESS,
        EventType.SUBMIT_ERROR: FormState.EDITING,
    },
    FormState.SUCCESS: {
        EventType.OPEN: FormState.EDITING,
        EventType.NEW: FormState.EDITING,
        EventType.RESET: FormState.IDLE,
        EventType.CLOSE: FormState.IDLE,
    },
}


def rejection_message(error: BaseException, default: str) -> str:
    """Extract the server error message from a handler rejection.

    SubmissionError carries it directly; an exception raised with a
    ``{"message": ...}`` payload as its argument uses that; otherwise the
    exception text, falling back to ``default``.
    """
    if isinstance(error, SubmissionError):
        return error.message or default
    if error.args and isinstance(error.args[0], dict):
        return str(error.args[0].get("message") or default)
    return str(error) or default


@dataclass(frozen=True)
class TransitionRecord:
    """One entry of a workflow's transition history."""
    from_state: FormState
    to_state: FormState
    event: EventType
    ts: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "event": self.event.value,
            "ts": self.ts.isoformat(),
        }


class FormWorkflow:
    """Finite-state machine for one form session.

    Attributes:
        session_id: Identifier of the session this workflow serves
        schema: Compiled schema of the action being filled in
        config: Runtime settings

    Examples:
        >>> from formflow.compiler import compile_fields
        >>> wf = FormWorkflow(compile_fields([]), submit=lambda values: "ok")
        >>> wf.state
        <FormState.IDLE: 'idle'>
        >>> wf.can_accept(EventType.SUBMIT)
        False
    """

    def __init__(
        self,
        schema: CompiledSchema,
        submit: SubmitHandler,
        validator: Optional[ValidationEngine] = None,
        config: Optional[FormflowConfig] = None,
        session_id: Optional[str] = None,
    ):
        """Initialize the workflow in the ``idle`` state.

        Args:
            schema: Compiled schema; its defaults seed the session values
            submit: Handler called with the values once they validate
            validator: Prebuilt validator for ``schema``; built here if omitted
            config: Runtime settings
            session_id: Identifier for logs; generated if omitted
        """
        self.session_id = session_id or f"ses_{uuid.uuid4().hex[:16]}"
        self.schema = schema
        self.config = config or FormflowConfig()
        self._submit = submit
        self._validator = validator or ValidationEngine(schema)
        self._state = FormState.IDLE
        self._context = SessionContext(values=schema.initial_values())
        self._emitter = SnapshotEmitter()
        self._queue: Deque[FormEvent] = deque()
        self._processing = False
        self._stopped = False
        self._attempt = 0
        self._pending: Optional["asyncio.Future[None]"] = None
        self._history: List[TransitionRecord] = []

    @property
    def state(self) -> FormState:
        return self._state

    @property
    def context(self) -> SessionContext:
        """A copy of the session context; the live one is never handed out."""
        return self._context.copy()

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def has_pending_submission(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def snapshot(self, event: Optional[EventType] = None) -> Snapshot:
        """The current state and a copy of the context."""
        return Snapshot(
            state=self._state,
            context=self._context.copy(),
            event=event,
            ts=datetime.now(timezone.utc),
        )

    def can_accept(self, event_type: EventType) -> bool:
        """Whether the current state has a transition for this event."""
        return event_type in VALID_TRANSITIONS[self._state]

    def on(self, state: FormState, listener: SnapshotListener) -> None:
        """Subscribe to snapshots entering ``state``."""
        self._emitter.on(state, listener)

    def subscribe(self, listener: SnapshotListener):
        """Subscribe to every snapshot; returns an unsubscribe callable."""
        return self._emitter.on_any(listener)

    def get_transitions(self) -> List[TransitionRecord]:
        """Transition history in chronological order."""
        return list(self._history)

    def send(self, event: Union[FormEvent, EventType, str]) -> Snapshot:
        """Send a command and process it to completion.

        Args:
            event: A FormEvent, or the type of an argument-less event

        Returns:
            Snapshot of the state reached. If called from inside a listener,
            the event is queued and the current snapshot is returned.

        Raises:
            ProtocolError: If ``event`` is not a known command
        """
        if not isinstance(event, FormEvent):
            try:
                event = FormEvent(EventType(event))
            except ValueError:
                raise ProtocolError(f"Unknown event type: {event!r}", raw=event) from None
        if event.type in INTERNAL_EVENTS:
            raise ProtocolError(f"Event type '{event.type.value}' is internal", raw=event)

        self._queue.append(event)
        self._drain()
        return self.snapshot(event.type)

    async def settle(self) -> Snapshot:
        """Wait for an in-flight submission, if any, and return the snapshot."""
        if self._pending is not None and not self._pending.done():
            await asyncio.wait({self._pending})
        return self.snapshot()

    def stop(self) -> None:
        """End the session.

        An in-flight submission is abandoned: its task is cancelled and any
        outcome that still arrives is discarded. Further events are ignored.
        """
        if self._stopped:
            return
        self._stopped = True
        self._queue.clear()
        if self._pending is not None and not self._pending.done():
            logger.info("Session %s stopped while submitting, abandoning submission", self.session_id)
            self._pending.cancel()
        self._emitter.clear()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "sessionId": self.session_id,
            "state": self._state.value,
            "context": self._context.to_dict(),
        }

    # -- processing -------------------------------------------------------

    def _drain(self) -> None:
        if self._processing:
            return
        self._processing = True
        try:
            while self._queue:
                self._process(self._queue.popleft())
        finally:
            self._processing = False

    def _process(self, event: FormEvent) -> None:
        if self._stopped:
            logger.debug("Session %s is stopped, ignoring %s", self.session_id, event.type.value)
            return

        target = VALID_TRANSITIONS[self._state].get(event.type)
        if target is None:
            logger.debug(
                "Session %s ignoring %s in state %s",
                self.session_id, event.type.value, self._state.value,
            )
            return

        self._run_actions(event)
        self._enter(target, event.type)

    def _run_actions(self, event: FormEvent) -> None:
        """Transition actions for ``event`` taken from the current state."""
        ctx = self._context

        if event.type in (EventType.OPEN, EventType.NEW, EventType.RESET):
            self._reset_context()
        elif event.type == EventType.PREFILL:
            self._reset_context()
            self._context.values.update(copy.deepcopy(event.data or {}))
        elif event.type == EventType.CHANGE:
            ctx.values[event.name] = event.value
            ctx.field_errors.pop(event.name, None)
        elif event.type in (EventType.SUBMIT, EventType.RETRY):
            ctx.server_error = None
        elif event.type == EventType.SUBMIT_DONE:
            ctx.result = event.data
            ctx.server_error = None
            ctx.submitting = False
        elif event.type == EventType.SUBMIT_ERROR:
            ctx.server_error = rejection_message(event.data, self.config.default_server_error)
            ctx.submitting = False

    def _enter(self, target: FormState, cause: EventType) -> None:
        previous = self._state
        self._state = target

        if target == FormState.VALIDATING:
            self._validate()

        self._history.append(TransitionRecord(previous, target, cause, datetime.now(timezone.utc)))
        logger.debug("Session %s: %s -> %s on %s", self.session_id, previous.value, target.value, cause.value)
        self._emitter.emit(self.snapshot(cause))

        if target == FormState.VALIDATING:
            if self._is_valid():
                self._context.submitting = True
                self._enter(FormState.SUBMITTING, cause)
            else:
                self._enter(FormState.EDITING, cause)
        elif target == FormState.SUBMITTING:
            self._start_submission()

    def _reset_context(self) -> None:
        self._context = SessionContext(values=self.schema.initial_values())

    def _validate(self) -> None:
        """Entry action of ``validating``: compute and store the outcome."""
        result = self._validator.validate(self._context.values)
        self._context.field_errors = result.outcome

    def _is_valid(self) -> bool:
        """Guard leaving ``validating``; reads the stored outcome only."""
        return not self._context.field_errors

    # -- submission -------------------------------------------------------

    def _start_submission(self) -> None:
        self._attempt += 1
        attempt = self._attempt
        values = copy.deepcopy(self._context.values)

        try:
            outcome = self._submit(values)
        except Exception as exc:
            self._settle(attempt, error=exc)
            return

        if not inspect.isawaitable(outcome):
            self._settle(attempt, result=outcome)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(outcome):
                outcome.close()
            logger.error("Session %s has a coroutine handler but no running event loop", self.session_id)
            self._settle(attempt, error=SubmissionError(self.config.default_server_error))
            return
        self._pending = loop.create_task(self._await_submission(attempt, outcome))

    async def _await_submission(self, attempt: int, outcome: Awaitable[Any]) -> None:
        try:
            if self.config.submit_timeout is not None:
                result = await asyncio.wait_for(outcome, self.config.submit_timeout)
            else:
                result = await outcome
        except asyncio.TimeoutError:
            self._settle(attempt, error=SubmissionError("Submission timed out"))
        except Exception as exc:
            self._settle(attempt, error=exc)
        else:
            self._settle(attempt, result=result)

    def _settle(self, attempt: int, result: Any = None, error: Optional[BaseException] = None) -> None:
        if self._stopped or attempt != self._attempt or self._state != FormState.SUBMITTING:
            logger.debug("Session %s discarding outcome of stale submission %d", self.session_id, attempt)
            return
        if error is None:
            self._queue.append(FormEvent(EventType.SUBMIT_DONE, data=result))
        else:
            self._queue.append(FormEvent(EventType.SUBMIT_ERROR, data=error))
        self._drain()


__all__ = [
    "VALID_TRANSITIONS",
    "FormWorkflow",
    "TransitionRecord",
    "rejection_message",
]

"""Session host: the bridge between a client connection and a FormWorkflow.

A SessionHost owns exactly one FormWorkflow. It turns inbound wire messages
into events, forwards every snapshot outbound as a ``STATE`` message, and
tears the workflow down when the connection ends. Transport is left to the
caller: the host only needs a ``send`` callable for outbound messages.

Outbound messages:
    {"type": "STATE", "state": "<state>", "context": {...}}
    {"type": "ERROR", "message": "Action not found"}
    {"type": "ERROR", "message": "Action cannot be submitted"}

Malformed inbound messages are logged and ignored; the session keeps its
state. Handler failures are logged here with their traceback and surface to
the client only as ``context.serverError``.
"""

import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from formflow.context import Snapshot
from formflow.definitions import SubmitHandler
from formflow.errors import DefinitionError, ProtocolError, SubmissionError
from formflow.events import FormEvent
from formflow.registry import ActionRegistry
from formflow.state_machine import FormWorkflow

logger = logging.getLogger(__name__)

OutboundSender = Callable[[Dict[str, Any]], None]

ACTION_NOT_FOUND = "Action not found"
ACTION_NOT_SUBMITTABLE = "Action cannot be submitted"


def parse_message(raw: Union[str, bytes, bytearray, Dict[str, Any]]) -> FormEvent:
    """Parse an inbound wire message into a FormEvent.

    Raises:
        ProtocolError: If the message is not valid JSON or not a known command
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"Message is not valid UTF-8: {exc}", raw=raw) from exc
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise ProtocolError(f"Message is not valid JSON: {exc}", raw=raw) from exc
    return FormEvent.from_dict(raw)


def state_message(snapshot: Snapshot) -> Dict[str, Any]:
    """Outbound ``STATE`` message for a snapshot."""
    message: Dict[str, Any] = {"type": "STATE"}
    message.update(snapshot.to_dict())
    return message


class SessionHost:
    """One client session of one action.

    Attributes:
        registry: Registry the action is looked up in
        action_id: Action this session fills in
        session_id: Identifier used in logs
        workflow: The session's workflow, once started

    Examples:
        >>> registry = ActionRegistry()
        >>> outbox = []
        >>> host = SessionHost(registry, "missing", send=outbox.append)
        >>> host.start()
        False
        >>> outbox
        [{'type': 'ERROR', 'message': 'Action not found'}]
    """

    def __init__(
        self,
        registry: ActionRegistry,
        action_id: str,
        send: OutboundSender,
        session_id: Optional[str] = None,
    ):
        self.registry = registry
        self.action_id = action_id
        self.session_id = session_id
        self.workflow: Optional[FormWorkflow] = None
        self._send = send
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> bool:
        """Create the workflow and send its initial snapshot.

        Returns:
            False if the action is unknown or has no handler; an ERROR
            message has then been sent and the session is closed.
        """
        try:
            action = self.registry.get_definition(self.action_id)
        except DefinitionError:
            logger.warning("Session requested unknown action '%s'", self.action_id)
            return self._refuse(ACTION_NOT_FOUND)

        try:
            self.workflow = self.registry.create_workflow(
                action.id,
                submit=self._logged(action.handler) if action.handler else None,
                session_id=self.session_id,
            )
        except SubmissionError as exc:
            logger.warning("Session requested action '%s': %s", self.action_id, exc)
            return self._refuse(ACTION_NOT_SUBMITTABLE)

        self.session_id = self.workflow.session_id
        self.workflow.subscribe(self._forward)
        logger.info("Session %s started for action '%s'", self.session_id, self.action_id)
        self._forward(self.workflow.snapshot())
        return True

    def describe(self) -> Dict[str, Any]:
        """Schema and UI layout of this session's action."""
        return self.registry.describe(self.action_id)

    def handle_message(self, raw: Union[str, bytes, bytearray, Dict[str, Any]]) -> Optional[Snapshot]:
        """Process one inbound message.

        Returns:
            The resulting snapshot, or None if the message was ignored
        """
        if self._closed or self.workflow is None:
            logger.debug("Session %s is not running, dropping message", self.session_id)
            return None
        try:
            event = parse_message(raw)
        except ProtocolError as exc:
            logger.warning("Session %s ignoring malformed message: %s", self.session_id, exc)
            return None
        return self.workflow.send(event)

    async def settle(self) -> Optional[Snapshot]:
        """Wait for the workflow's in-flight submission, if any."""
        if self.workflow is None:
            return None
        return await self.workflow.settle()

    def close(self) -> None:
        """End the session; a pending submission is abandoned."""
        if self._closed:
            return
        self._closed = True
        if self.workflow is not None:
            self.workflow.stop()
        logger.info("Session %s closed", self.session_id)

    def _refuse(self, message: str) -> bool:
        self._send({"type": "ERROR", "message": message})
        self._closed = True
        return False

    def _forward(self, snapshot: Snapshot) -> None:
        if self._closed:
            return
        self._send(state_message(snapshot))

    def _logged(self, handler: SubmitHandler) -> SubmitHandler:
        """Wrap a handler so its failures are logged before the workflow sees them."""

        def submit(values: Dict[str, Any]) -> Any:
            try:
                outcome = handler(values)
            except Exception:
                logger.exception("Session %s: handler for '%s' failed", self.session_id, self.action_id)
                raise
            if inspect.isawaitable(outcome):
                return self._await_logged(outcome)
            return outcome

        return submit

    async def _await_logged(self, outcome: Awaitable[Any]) -> Any:
        try:
            return await outcome
        except Exception:
            logger.exception("Session %s: handler for '%s' failed", self.session_id, self.action_id)
            raise


__all__ = [
    "ACTION_NOT_FOUND",
    "ACTION_NOT_SUBMITTABLE",
    "OutboundSender",
    "SessionHost",
    "parse_message",
    "state_message",
]

"""Action registry.

ActionRegistry holds the action definitions a process serves together with
their compiled schemas and validators, which are built once at registration
and shared read-only by every session. Registries are plain objects: tests
and multi-tenant hosts can keep as many independent ones as they need.

Usage:
    >>> registry = ActionRegistry()
    >>> _ = registry.register_dict(
    ...     {"id": "createUser", "label": "Create User",
    ...      "formJson": [{"name": "username", "type": "string", "required": True}]},
    ...     handler=lambda values: {"id": "user_1"},
    ... )
    >>> registry.list_actions()
    [{'id': 'createUser', 'label': 'Create User'}]
"""

import inspect
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from jsonschema import SchemaError

from formflow.compiler import CompiledSchema, compile_fields
from formflow.config import FormflowConfig
from formflow.definitions import ActionDefinition, SubmitHandler
from formflow.errors import DefinitionError, InvalidDefinitionError, SubmissionError, ValidationError
from formflow.state_machine import FormWorkflow, rejection_message
from formflow.validation import ValidationEngine, ValidationResult

logger = logging.getLogger(__name__)


class ActionRegistry:
    """Registered actions and their compiled schemas.

    Attributes:
        config: Runtime settings handed to the workflows this registry creates
    """

    def __init__(self, config: Optional[FormflowConfig] = None):
        self.config = config or FormflowConfig()
        self._actions: Dict[str, ActionDefinition] = {}
        self._compiled: Dict[str, CompiledSchema] = {}
        self._validators: Dict[str, ValidationEngine] = {}

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def register(self, action: ActionDefinition, replace: bool = False) -> CompiledSchema:
        """Register an action and compile its schema.

        Args:
            action: The definition to register
            replace: Allow re-registering an existing id (recompiles)

        Returns:
            The compiled schema

        Raises:
            InvalidDefinitionError: If the id is taken and ``replace`` is False,
                or a constraint does not form a valid schema
        """
        if action.id in self._actions and not replace:
            raise InvalidDefinitionError(f"Action '{action.id}' is already registered")

        compiled = compile_fields(action.fields, title=action.label)
        try:
            validator = ValidationEngine(compiled)
        except SchemaError as exc:
            raise InvalidDefinitionError(f"Action '{action.id}': {exc.message}") from exc

        self._actions[action.id] = action
        self._compiled[action.id] = compiled
        self._validators[action.id] = validator
        logger.info("Registered action '%s' with %d fields", action.id, len(action.fields))
        return compiled

    def register_dict(
        self,
        data: Dict[str, Any],
        handler: Optional[SubmitHandler] = None,
        replace: bool = False,
    ) -> CompiledSchema:
        """Register an action from its ``{id, label, formJson}`` document."""
        action = ActionDefinition.from_dict(data, handler=handler, strict=self.config.strict_field_kinds)
        return self.register(action, replace=replace)

    def load(
        self,
        documents: Iterable[Dict[str, Any]],
        handlers: Optional[Mapping[str, SubmitHandler]] = None,
    ) -> List[str]:
        """Register several action documents; handlers are looked up by id.

        Returns:
            The registered ids, in document order
        """
        handlers = handlers or {}
        ids = []
        for data in documents:
            self.register_dict(data, handler=handlers.get(data.get("id", "")))
            ids.append(data["id"])
        return ids

    def load_file(
        self,
        path: Union[str, Path],
        handlers: Optional[Mapping[str, SubmitHandler]] = None,
    ) -> List[str]:
        """Register the actions of a JSON file (a list, or ``{"actions": [...]}``)."""
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if isinstance(data, dict):
            data = data.get("actions", [])
        if not isinstance(data, list):
            raise InvalidDefinitionError(f"{path}: expected a list of action definitions")
        return self.load(data, handlers=handlers)

    def get_definition(self, action_id: str) -> ActionDefinition:
        """Look up an action.

        Raises:
            DefinitionError: If the id is not registered
        """
        try:
            return self._actions[action_id]
        except KeyError:
            raise DefinitionError(action_id) from None

    def get_compiled(self, action_id: str) -> CompiledSchema:
        """Cached compiled schema of an action.

        Raises:
            DefinitionError: If the id is not registered
        """
        self.get_definition(action_id)
        return self._compiled[action_id]

    def get_validator(self, action_id: str) -> ValidationEngine:
        """Cached validator of an action.

        Raises:
            DefinitionError: If the id is not registered
        """
        self.get_definition(action_id)
        return self._validators[action_id]

    def list_actions(self) -> List[Dict[str, str]]:
        """``{id, label}`` of every registered action, in registration order."""
        return [{"id": a.id, "label": a.label} for a in self._actions.values()]

    def describe(self, action_id: str) -> Dict[str, Any]:
        """Schema, UI layout and raw field list of an action, for a client."""
        action = self.get_definition(action_id)
        compiled = self.get_compiled(action_id)
        payload = compiled.to_dict()
        payload["formJson"] = action.form_json()
        return payload

    def validate(self, action_id: str, values: Mapping[str, Any]) -> ValidationResult:
        """Validate values against an action's schema."""
        return self.get_validator(action_id).validate(values)

    async def execute(self, action_id: str, values: Mapping[str, Any]) -> Any:
        """Validate values and run the action's handler.

        Returns:
            The handler's result

        Raises:
            DefinitionError: If the id is not registered
            ValidationError: If the values do not validate
            SubmissionError: If the action has no handler or the handler fails
        """
        action = self.get_definition(action_id)
        result = self.validate(action_id, values)
        if not result.is_valid:
            raise ValidationError(result.outcome)
        if action.handler is None:
            raise SubmissionError(f"Action '{action_id}' has no handler")

        try:
            outcome = action.handler(dict(values))
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except SubmissionError:
            logger.exception("Handler for '%s' rejected the submission", action_id)
            raise
        except Exception as exc:
            logger.exception("Handler for '%s' failed", action_id)
            raise SubmissionError(rejection_message(exc, self.config.default_server_error)) from exc
        return outcome

    def create_workflow(
        self,
        action_id: str,
        submit: Optional[SubmitHandler] = None,
        session_id: Optional[str] = None,
    ) -> FormWorkflow:
        """Create a workflow for one session of an action.

        Args:
            action_id: Registered action id
            submit: Handler override; defaults to the action's own handler
            session_id: Identifier for logs

        Raises:
            DefinitionError: If the id is not registered
            SubmissionError: If neither the action nor the caller supplies a handler
        """
        action = self.get_definition(action_id)
        handler = submit or action.handler
        if handler is None:
            raise SubmissionError(f"Action '{action_id}' has no handler")
        return FormWorkflow(
            self.get_compiled(action_id),
            submit=handler,
            validator=self.get_validator(action_id),
            config=self.config,
            session_id=session_id,
        )


__all__ = [
    "ActionRegistry",
]

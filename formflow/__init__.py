"""formflow: declarative form workflows.

An action is described once, as an ordered field list. formflow derives
from it:
- A JSON Schema for validation and a UI layout for rendering (compiler)
- A field-keyed error map for any set of submitted values (validation)
- A per-session state machine that collects input, validates it, submits it
  to the action's handler and reports the outcome (state_machine)

Basic usage:
    >>> from formflow import ActionRegistry, FormEvent
    >>> registry = ActionRegistry()
    >>> _ = registry.register_dict(
    ...     {"id": "createUser", "label": "Create User",
    ...      "formJson": [{"name": "username", "type": "string", "label": "Username",
    ...                    "required": True, "minLength": 3}]},
    ...     handler=lambda values: {"id": "user_1"},
    ... )
    >>> wf = registry.create_workflow("createUser")
    >>> _ = wf.send(FormEvent.open())
    >>> _ = wf.send(FormEvent.change("username", "abcd"))
    >>> snapshot = wf.send(FormEvent.submit())
    >>> snapshot.state.value, snapshot.context.result
    ('success', {'id': 'user_1'})
"""

__version__ = "0.1.0"
__author__ = "formflow Team"

# Version info
VERSION = (0, 1, 0)

# Core exports
from formflow.compiler import CompiledSchema, compile_fields
from formflow.config import FormflowConfig
from formflow.definitions import ActionDefinition, FieldDefinition, FieldOption
from formflow.events import FormEvent
from formflow.registry import ActionRegistry
from formflow.session import SessionHost
from formflow.state_machine import FormWorkflow
from formflow.types import EventType, FieldKind, FormState
from formflow.validation import ValidationEngine, validate

# Package metadata
__all__ = [
    "__version__",
    "VERSION",
    "ActionDefinition",
    "ActionRegistry",
    "CompiledSchema",
    "EventType",
    "FieldDefinition",
    "FieldKind",
    "FieldOption",
    "FormEvent",
    "FormState",
    "FormWorkflow",
    "FormflowConfig",
    "SessionHost",
    "ValidationEngine",
    "compile_fields",
    "validate",
]

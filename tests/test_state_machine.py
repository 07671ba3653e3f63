"""Unit tests for the form workflow state machine.

Tests cover:
- Initialization and the transition table
- OPEN / PREFILL / CHANGE / RESET / NEW / CLOSE handling
- SUBMIT through validating to submitting or back to editing
- Handler resolution and rejection (sync and coroutine handlers)
- Ignored events, including CHANGE while submitting
- Snapshot ordering, listener isolation and transition history
- Stopping a session with a submission in flight
"""

import asyncio

import pytest

from formflow.compiler import compile_fields
from formflow.config import FormflowConfig
from formflow.definitions import FieldDefinition, FieldOption
from formflow.errors import ProtocolError, SubmissionError
from formflow.events import FormEvent
from formflow.state_machine import VALID_TRANSITIONS, FormWorkflow, rejection_message
from formflow.types import EventType, FieldKind, FormState


USERNAME_SCHEMA = compile_fields(
    [FieldDefinition(name="username", label="Username", required=True, min_length=3)],
    title="Create User",
)

USER_SCHEMA = compile_fields(
    [
        FieldDefinition(name="username", label="Username", required=True, min_length=3),
        FieldDefinition(name="email", label="Email", kind=FieldKind.EMAIL, required=True),
        FieldDefinition(
            name="role", label="Role", kind=FieldKind.SELECT, required=True,
            options=(FieldOption("user", "User"), FieldOption("admin", "Admin")), default="user",
        ),
    ],
    title="Create User",
)


class RecordingHandler:
    """Submit handler that records the values it was called with."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def __call__(self, values):
        self.calls.append(values)
        if self.error is not None:
            raise self.error
        return self.result


def make_workflow(schema=USERNAME_SCHEMA, handler=None, **kwargs):
    return FormWorkflow(schema, submit=handler or RecordingHandler({"id": "user_1"}), **kwargs)


def record_states(workflow):
    seen = []
    workflow.subscribe(lambda snapshot: seen.append(snapshot.state))
    return seen


class TestInitialization:
    """Test workflow initialization."""

    def test_starts_idle_with_defaults(self):
        """Should start idle with defaults seeded into values."""
        wf = make_workflow(USER_SCHEMA)
        assert wf.state == FormState.IDLE
        ctx = wf.context
        assert ctx.values == {"role": "user"}
        assert ctx.field_errors == {}
        assert ctx.submitting is False
        assert ctx.result is None
        assert ctx.server_error is None

    def test_session_id_generated(self):
        """Should generate a session id unless one is given."""
        assert make_workflow().session_id.startswith("ses_")
        assert make_workflow(session_id="abc").session_id == "abc"

    def test_transition_table_covers_all_states(self):
        """Should define transitions for every state."""
        assert set(VALID_TRANSITIONS) == set(FormState)
        assert VALID_TRANSITIONS[FormState.VALIDATING] == {}
        assert EventType.CHANGE not in VALID_TRANSITIONS[FormState.SUBMITTING]

    def test_context_property_is_a_copy(self):
        """Should not expose the live context."""
        wf = make_workflow()
        wf.send(EventType.OPEN)
        wf.context.values["username"] = "hacked"
        assert "username" not in wf.context.values


class TestOpenAndPrefill:
    """Test leaving idle."""

    def test_open_enters_editing(self):
        """Should enter editing on OPEN."""
        wf = make_workflow()
        snapshot = wf.send(FormEvent.open())
        assert snapshot.state == FormState.EDITING
        assert wf.state == FormState.EDITING

    def test_prefill_merges_data(self):
        """Should merge PREFILL data over the defaults."""
        wf = make_workflow(USER_SCHEMA)
        wf.send(FormEvent.prefill({"username": "jsmith", "role": "admin"}))
        assert wf.state == FormState.EDITING
        assert wf.context.values == {"username": "jsmith", "role": "admin"}

    def test_prefill_data_is_copied(self):
        """Should not alias the caller's prefill dict."""
        data = {"tags": ["a"]}
        wf = make_workflow(compile_fields([FieldDefinition(name="tags")]))
        wf.send(FormEvent(EventType.PREFILL, data=data))
        data["tags"].append("b")
        assert wf.context.values == {"tags": ["a"]}

    def test_accepts_event_type_strings(self):
        """Should accept the type of an argument-less event."""
        wf = make_workflow()
        assert wf.send("OPEN").state == FormState.EDITING

    def test_unknown_event_type_raises(self):
        """Should raise ProtocolError for an unknown event type."""
        wf = make_workflow()
        with pytest.raises(ProtocolError):
            wf.send("EXPLODE")

    def test_internal_events_rejected(self):
        """Should not let callers inject handler outcomes."""
        wf = make_workflow()
        with pytest.raises(ProtocolError):
            wf.send(FormEvent(EventType.SUBMIT_DONE, data={"id": "forged"}))


class TestEditing:
    """Test CHANGE, RESET and CLOSE while editing."""

    def test_change_sets_value(self):
        """Should store the changed value and stay in editing."""
        wf = make_workflow()
        wf.send(FormEvent.open())
        snapshot = wf.send(FormEvent.change("username", "jsmith"))
        assert snapshot.state == FormState.EDITING
        assert snapshot.context.values["username"] == "jsmith"

    def test_change_clears_only_that_fields_error(self):
        """Should clear the changed field's error and keep the others."""
        wf = make_workflow(USER_SCHEMA)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("email", "bad"))
        wf.send(FormEvent.submit())
        assert set(wf.context.field_errors) == {"username", "email"}

        wf.send(FormEvent.change("username", "jsmith"))
        assert wf.context.field_errors == {"email": "Email must be a valid email"}

    def test_reset_returns_to_idle_with_defaults(self):
        """Should reset the context and return to idle."""
        wf = make_workflow(USER_SCHEMA)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "jsmith"))
        wf.send(EventType.RESET)
        assert wf.state == FormState.IDLE
        assert wf.context.values == {"role": "user"}

    def test_close_returns_to_idle(self):
        """Should return to idle on CLOSE."""
        wf = make_workflow()
        wf.send(FormEvent.open())
        assert wf.send(EventType.CLOSE).state == FormState.IDLE

    def test_change_ignored_while_idle(self):
        """Should ignore CHANGE before the form is opened."""
        wf = make_workflow()
        snapshot = wf.send(FormEvent.change("username", "jsmith"))
        assert snapshot.state == FormState.IDLE
        assert "username" not in snapshot.context.values


class TestSubmit:
    """Test SUBMIT through validation."""

    def test_invalid_values_return_to_editing(self):
        """Should store the outcome and return to editing without calling the handler."""
        handler = RecordingHandler({"id": "user_1"})
        wf = make_workflow(handler=handler)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "ab"))
        snapshot = wf.send(FormEvent.submit())

        assert snapshot.state == FormState.EDITING
        assert snapshot.context.field_errors == {"username": "Username must have at least 3 characters"}
        assert snapshot.context.submitting is False
        assert handler.calls == []

    def test_valid_values_reach_success(self):
        """Should submit valid values and store the handler result."""
        handler = RecordingHandler({"id": "user_1"})
        wf = make_workflow(handler=handler)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        snapshot = wf.send(FormEvent.submit())

        assert snapshot.state == FormState.SUCCESS
        assert snapshot.context.result == {"id": "user_1"}
        assert snapshot.context.submitting is False
        assert handler.calls == [{"username": "abcd"}]

    def test_states_traversed_in_order(self):
        """Should emit validating, submitting, success in order."""
        wf = make_workflow()
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        seen = record_states(wf)
        wf.send(FormEvent.submit())
        assert seen == [FormState.VALIDATING, FormState.SUBMITTING, FormState.SUCCESS]

    def test_invalid_submit_traverses_validating(self):
        """Should emit validating then editing on invalid values."""
        wf = make_workflow()
        wf.send(FormEvent.open())
        seen = record_states(wf)
        wf.send(FormEvent.submit())
        assert seen == [FormState.VALIDATING, FormState.EDITING]

    def test_validating_snapshot_carries_outcome(self):
        """Should expose the stored outcome while validating."""
        wf = make_workflow()
        wf.send(FormEvent.open())
        validating = []
        wf.on(FormState.VALIDATING, lambda s: validating.append(s.context.field_errors))
        wf.send(FormEvent.submit())
        assert validating == [{"username": "Username is required"}]

    def test_submitting_snapshot_has_flag_set(self):
        """Should set submitting before the handler runs."""
        wf = make_workflow()
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        flags = []
        wf.on(FormState.SUBMITTING, lambda s: flags.append(s.context.submitting))
        wf.send(FormEvent.submit())
        assert flags == [True]

    def test_submit_ignored_while_idle(self):
        """Should ignore SUBMIT before the form is opened."""
        handler = RecordingHandler()
        wf = make_workflow(handler=handler)
        assert wf.send(FormEvent.submit()).state == FormState.IDLE
        assert handler.calls == []


class TestRejection:
    """Test handler rejection."""

    def test_submission_error_message_stored(self):
        """Should return to editing with the rejection message."""
        wf = make_workflow(handler=RecordingHandler(error=SubmissionError("duplicate username")))
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        snapshot = wf.send(FormEvent.submit())

        assert snapshot.state == FormState.EDITING
        assert snapshot.context.server_error == "duplicate username"
        assert snapshot.context.submitting is False
        assert snapshot.context.result is None

    def test_payload_message_used(self):
        """Should read the message of a dict rejection payload."""
        wf = make_workflow(handler=RecordingHandler(error=RuntimeError({"message": "duplicate username"})))
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        assert wf.send(FormEvent.submit()).context.server_error == "duplicate username"

    def test_default_message(self):
        """Should fall back to the configured default message."""
        config = FormflowConfig(default_server_error="Could not save")
        wf = make_workflow(handler=RecordingHandler(error=RuntimeError()), config=config)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        assert wf.send(FormEvent.submit()).context.server_error == "Could not save"

    def test_server_error_cleared_on_next_submit(self):
        """Should clear the server error when the user submits again."""
        handler = RecordingHandler(error=SubmissionError("duplicate username"))
        wf = make_workflow(handler=handler)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        wf.send(FormEvent.submit())

        handler.error = None
        handler.result = {"id": "user_2"}
        snapshot = wf.send(EventType.RETRY)
        assert snapshot.state == FormState.SUCCESS
        assert snapshot.context.server_error is None
        assert snapshot.context.result == {"id": "user_2"}

    def test_server_error_survives_change(self):
        """Should keep the server error while the user edits."""
        wf = make_workflow(handler=RecordingHandler(error=SubmissionError("duplicate username")))
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        wf.send(FormEvent.submit())
        snapshot = wf.send(FormEvent.change("username", "abcde"))
        assert snapshot.context.server_error == "duplicate username"

    def test_rejection_message_helper(self):
        """Should pick the message from the most specific source."""
        assert rejection_message(SubmissionError("a"), "d") == "a"
        assert rejection_message(ValueError({"message": "b"}), "d") == "b"
        assert rejection_message(ValueError({"code": 1}), "d") == "d"
        assert rejection_message(ValueError("c"), "d") == "c"
        assert rejection_message(ValueError(), "d") == "d"


class TestSuccess:
    """Test leaving success."""

    def _succeeded(self):
        wf = make_workflow(USER_SCHEMA)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "jsmith"))
        wf.send(FormEvent.change("email", "jsmith@example.com"))
        assert wf.send(FormEvent.submit()).state == FormState.SUCCESS
        return wf

    @pytest.mark.parametrize("event_type", [EventType.OPEN, EventType.NEW])
    def test_open_or_new_resets_to_editing(self, event_type):
        """Should reset the context and return to editing."""
        wf = self._succeeded()
        snapshot = wf.send(event_type)
        assert snapshot.state == FormState.EDITING
        assert snapshot.context.values == {"role": "user"}
        assert snapshot.context.result is None

    def test_close_returns_to_idle(self):
        """Should return to idle on CLOSE."""
        wf = self._succeeded()
        assert wf.send(EventType.CLOSE).state == FormState.IDLE

    def test_reset_returns_to_idle(self):
        """Should return to idle with a fresh context on RESET."""
        wf = self._succeeded()
        snapshot = wf.send(EventType.RESET)
        assert snapshot.state == FormState.IDLE
        assert snapshot.context.result is None

    def test_change_ignored_after_success(self):
        """Should ignore CHANGE in success."""
        wf = self._succeeded()
        snapshot = wf.send(FormEvent.change("username", "other"))
        assert snapshot.state == FormState.SUCCESS
        assert snapshot.context.values["username"] == "jsmith"


class TestListeners:
    """Test snapshot delivery."""

    def test_listener_failure_is_isolated(self):
        """Should keep running when a listener raises."""
        wf = make_workflow()
        seen = []

        def broken(snapshot):
            raise RuntimeError("listener bug")

        wf.subscribe(broken)
        wf.subscribe(lambda s: seen.append(s.state))
        wf.send(FormEvent.open())
        assert wf.state == FormState.EDITING
        assert seen == [FormState.EDITING]

    def test_unsubscribe(self):
        """Should stop delivering after unsubscribing."""
        wf = make_workflow()
        seen = []
        unsubscribe = wf.subscribe(lambda s: seen.append(s.state))
        wf.send(FormEvent.open())
        unsubscribe()
        wf.send(EventType.CLOSE)
        assert seen == [FormState.EDITING]

    def test_ignored_events_emit_nothing(self):
        """Should not emit a snapshot for an ignored event."""
        wf = make_workflow()
        seen = record_states(wf)
        wf.send(FormEvent.submit())
        assert seen == []

    def test_events_sent_from_listener_are_queued(self):
        """Should finish the current event before one sent from a listener."""
        wf = make_workflow()
        seen = record_states(wf)
        sent = []

        def change_on_open(snapshot):
            if snapshot.state == FormState.EDITING and not sent:
                sent.append(True)
                wf.send(FormEvent.change("username", "abcd"))
                wf.send(FormEvent.submit())

        wf.subscribe(change_on_open)
        wf.send(FormEvent.open())
        assert seen == [
            FormState.EDITING,
            FormState.EDITING,
            FormState.VALIDATING,
            FormState.SUBMITTING,
            FormState.SUCCESS,
        ]

    def test_snapshots_are_independent_copies(self):
        """Should not let a later transition change an earlier snapshot."""
        wf = make_workflow()
        snapshots = []
        wf.subscribe(snapshots.append)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        assert "username" not in snapshots[0].context.values
        assert snapshots[1].context.values == {"username": "abcd"}

    def test_snapshot_to_dict(self):
        """Should serialize to the outbound {state, context} shape."""
        wf = make_workflow()
        data = wf.send(FormEvent.open()).to_dict()
        assert data == {
            "state": "editing",
            "context": {
                "values": {},
                "fieldErrors": {},
                "submitting": False,
                "result": None,
                "serverError": None,
            },
        }


class TestHistory:
    """Test the transition history."""

    def test_history_records_transitions(self):
        """Should record each transition with its cause."""
        wf = make_workflow()
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        wf.send(FormEvent.submit())

        history = [(t.from_state, t.to_state, t.event) for t in wf.get_transitions()]
        assert history == [
            (FormState.IDLE, FormState.EDITING, EventType.OPEN),
            (FormState.EDITING, FormState.EDITING, EventType.CHANGE),
            (FormState.EDITING, FormState.VALIDATING, EventType.SUBMIT),
            (FormState.VALIDATING, FormState.SUBMITTING, EventType.SUBMIT),
            (FormState.SUBMITTING, FormState.SUCCESS, EventType.SUBMIT_DONE),
        ]
        assert wf.get_transitions()[0].to_dict()["from"] == "idle"

    def test_to_dict(self):
        """Should serialize session id, state and context."""
        wf = make_workflow(session_id="ses_1")
        wf.send(FormEvent.open())
        data = wf.to_dict()
        assert data["sessionId"] == "ses_1"
        assert data["state"] == "editing"
        assert data["context"]["values"] == {}


class TestAsyncSubmission:
    """Test coroutine handlers."""

    @pytest.mark.asyncio
    async def test_coroutine_handler_resolves(self):
        """Should stay in submitting until the coroutine resolves."""
        async def handler(values):
            await asyncio.sleep(0)
            return {"id": "user_1", "username": values["username"]}

        wf = make_workflow(handler=handler)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        snapshot = wf.send(FormEvent.submit())
        assert snapshot.state == FormState.SUBMITTING
        assert wf.has_pending_submission is True

        settled = await wf.settle()
        assert settled.state == FormState.SUCCESS
        assert settled.context.result == {"id": "user_1", "username": "abcd"}

    @pytest.mark.asyncio
    async def test_coroutine_handler_rejects(self):
        """Should return to editing when the coroutine raises."""
        async def handler(values):
            raise SubmissionError.from_payload({"message": "duplicate username"})

        wf = make_workflow(handler=handler)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        wf.send(FormEvent.submit())
        settled = await wf.settle()
        assert settled.state == FormState.EDITING
        assert settled.context.server_error == "duplicate username"

    @pytest.mark.asyncio
    async def test_change_ignored_while_submitting(self):
        """Should not process CHANGE while the handler is in flight."""
        release = asyncio.Event()
        received = []

        async def handler(values):
            received.append(values)
            await release.wait()
            return {"id": "user_1"}

        wf = make_workflow(handler=handler)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        wf.send(FormEvent.submit())

        snapshot = wf.send(FormEvent.change("username", "zzzz"))
        assert snapshot.state == FormState.SUBMITTING
        assert snapshot.context.values["username"] == "abcd"

        release.set()
        settled = await wf.settle()
        assert settled.state == FormState.SUCCESS
        assert received == [{"username": "abcd"}]
        assert settled.context.values["username"] == "abcd"

    @pytest.mark.asyncio
    async def test_stop_abandons_submission(self):
        """Should discard the outcome of a submission abandoned by stop()."""
        release = asyncio.Event()

        async def handler(values):
            await release.wait()
            return {"id": "late"}

        wf = make_workflow(handler=handler)
        seen = record_states(wf)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        wf.send(FormEvent.submit())
        await asyncio.sleep(0)
        wf.stop()
        release.set()
        await wf.settle()

        assert wf.stopped is True
        assert wf.state == FormState.SUBMITTING
        assert wf.context.result is None
        assert FormState.SUCCESS not in seen
        assert wf.send(FormEvent.open()).state == FormState.SUBMITTING

    @pytest.mark.asyncio
    async def test_submit_timeout(self):
        """Should reject a coroutine that outlives the configured timeout."""
        async def handler(values):
            await asyncio.sleep(10)

        wf = make_workflow(handler=handler, config=FormflowConfig(submit_timeout=0.01))
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        wf.send(FormEvent.submit())
        settled = await wf.settle()
        assert settled.state == FormState.EDITING
        assert settled.context.server_error == "Submission timed out"

    def test_coroutine_without_event_loop_rejected(self):
        """Should reject instead of crashing when no event loop is running."""
        async def handler(values):
            return {"id": "user_1"}

        wf = make_workflow(handler=handler)
        wf.send(FormEvent.open())
        wf.send(FormEvent.change("username", "abcd"))
        snapshot = wf.send(FormEvent.submit())
        assert snapshot.state == FormState.EDITING
        assert snapshot.context.server_error == "Submission failed"

"""Tests for the agentic loop: turns, pauses, resumes and circuit blocks."""

import pytest

from luxloop.agent import (
    EXPIRED_PAUSE,
    FEEDBACK_CONFIRMED,
    FEEDBACK_DETAILED,
    FEEDBACK_PROBLEM,
    NO_PAUSE,
    AgenticLoop,
    FeedbackReply,
    LoopStatus,
    PauseKind,
    create_session,
)
from luxloop.errors import SessionBusyError
from luxloop.history import check_pairing
from luxloop.memory import MemoryStore
from luxloop.models import FunctionCall, MockModel, Role

CREATE_DOORS = FunctionCall(
    "create_instance", {"class_name": "Folder", "parent": "Workspace", "name": "Doors"}
)
LOOK = FunctionCall("get_instance", {"path": "Workspace"})


def _tool_messages(session):
    return [m for m in session.history.messages() if m.role is Role.TOOL]


class _ExplodingModel:
    model_id = "exploding"

    async def generate(self, messages):
        raise RuntimeError("connection reset by peer")


class TestTurns:
    @pytest.mark.asyncio
    async def test_plain_reply(self, make_loop, session):
        loop, model = make_loop(MockModel.reply("Done."))

        result = await loop.start("Say hi")

        assert result.status is LoopStatus.COMPLETED
        assert result.text == "Done."
        assert result.iteration == 1
        assert [m.role for m in session.history.messages()] == [Role.USER, Role.MODEL]

    @pytest.mark.asyncio
    async def test_read_calls_then_answer(self, make_loop, session):
        loop, model = make_loop(MockModel.calls(LOOK), MockModel.reply("Workspace has Level."))

        result = await loop.start("What is in Workspace?")

        assert result.status is LoopStatus.COMPLETED
        assert result.iteration == 2
        (tool,) = _tool_messages(session)
        assert tool.function_responses[0].response["name"] == "Workspace"
        assert check_pairing(session.history.messages())

    @pytest.mark.asyncio
    async def test_iteration_limit(self, make_loop):
        loop, model = make_loop(*[MockModel.calls(LOOK)] * 60)

        result = await loop.start("Look forever")

        assert result.status is LoopStatus.FAILED
        assert result.error == "Agent exceeded maximum iterations (50)"
        assert result.iteration == 51
        assert model.call_count == 50

    @pytest.mark.asyncio
    async def test_model_failure_is_verbatim(self, make_loop):
        loop, _ = make_loop(MockModel.failure("503 Service Unavailable"))

        result = await loop.start("Hi")

        assert result.status is LoopStatus.FAILED
        assert result.error == "503 Service Unavailable"
        assert result.iteration == 1

    @pytest.mark.asyncio
    async def test_model_exception(self, session):
        loop = AgenticLoop(_ExplodingModel(), session, summarize=False)

        result = await loop.start("Hi")

        assert result.error == "connection reset by peer"

    @pytest.mark.asyncio
    async def test_busy_session_rejects_second_turn(self, make_loop, session):
        loop, _ = make_loop()

        async with session.lock:
            with pytest.raises(SessionBusyError):
                await loop.start("Hi")

    @pytest.mark.asyncio
    async def test_validation_failure_skips_handler(self, make_loop, session):
        loop, _ = make_loop(
            MockModel.calls(FunctionCall("get_script", {"path": "Workspace.Ghost"})),
            MockModel.reply("It does not exist."),
        )

        await loop.start("Read the ghost script")

        response = _tool_messages(session)[0].function_responses[0].response
        assert response["validation_failed"] is True
        assert "Path doesn't exist: Workspace.Ghost" in response["error"]
        assert session.circuit.consecutive_failures == 0


class TestApproval:
    @pytest.mark.asyncio
    async def test_pause_then_approve(self, make_loop, session, tree):
        loop, model = make_loop(MockModel.calls(CREATE_DOORS, LOOK), MockModel.reply("Created."))

        paused = await loop.start("Add a Doors folder")

        assert paused.status is LoopStatus.AWAITING_APPROVAL
        assert paused.success and paused.paused
        assert paused.operation["id"] == 1
        assert paused.operation["type"] == "create_instance"
        assert paused.operation["message"] == 'Queued for approval (#1): Create Folder "Doors" in Workspace'
        assert not tree.exists("Workspace.Doors")
        assert session.paused.kind is PauseKind.BATCH
        assert session.history.last().role is Role.MODEL

        result = await loop.resume_with_approval(True)

        assert result.status is LoopStatus.COMPLETED
        assert result.text == "Created."
        assert result.iteration == 2
        assert tree.exists("Workspace.Doors")
        assert session.paused is None

        (tool,) = _tool_messages(session)
        first, second = tool.function_responses
        assert first.response["approved"] is True
        assert first.response["path"] == "Workspace.Doors"
        assert second.name == "get_instance"
        assert check_pairing(session.history.messages())

    @pytest.mark.asyncio
    async def test_deny(self, make_loop, session, tree):
        loop, _ = make_loop(MockModel.calls(CREATE_DOORS), MockModel.reply("Okay, skipped."))
        await loop.start("Add a Doors folder")

        result = await loop.resume_with_approval(False)

        assert result.status is LoopStatus.COMPLETED
        assert not tree.exists("Workspace.Doors")
        response = _tool_messages(session)[0].function_responses[0].response
        assert response["error"] == "User denied this operation"
        assert response["error_kind"] == "user_denied"
        assert session.circuit.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_failed_apply_is_reported(self, make_loop, session, tree):
        loop, _ = make_loop(MockModel.calls(CREATE_DOORS), MockModel.reply("It already existed."))
        await loop.start("Add a Doors folder")
        tree.create("Workspace", "Doors", "Folder")

        await loop.resume_with_approval(True)

        response = _tool_messages(session)[0].function_responses[0].response
        assert response["error_category"] == "already_exists"
        assert "already exists" in response["error"]
        assert session.circuit.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_pause_from_earlier_task_expires(self, make_loop, session, tree):
        loop, _ = make_loop(MockModel.calls(CREATE_DOORS, LOOK), MockModel.reply("OK."))
        await loop.start("Add a Doors folder")
        await loop.continue_conversation("Never mind, do nothing")

        (abandoned,) = _tool_messages(session)
        assert [r.response.get("abandoned") for r in abandoned.function_responses] == [True, True]
        assert check_pairing(session.history.messages())

        history_before = session.history.messages()
        result = await loop.resume_with_approval(True)

        assert result.status is LoopStatus.FAILED
        assert result.error == EXPIRED_PAUSE
        assert session.history.messages() == history_before
        assert session.approval_queue.get(1).is_pending
        assert not tree.exists("Workspace.Doors")

    @pytest.mark.asyncio
    async def test_pause_from_earlier_conversation_expires(self, make_loop, session, tree):
        loop, _ = make_loop(MockModel.calls(CREATE_DOORS), MockModel.reply("Hello."))
        await loop.start("Add a Doors folder")
        fresh = await loop.start("Something else entirely")
        assert fresh.status is LoopStatus.COMPLETED

        history_before = session.history.messages()
        result = await loop.resume_with_approval(True)

        assert result.status is LoopStatus.FAILED
        assert result.error == EXPIRED_PAUSE
        assert session.history.messages() == history_before
        assert session.approval_queue.get(1).is_pending
        assert not tree.exists("Workspace.Doors")

    @pytest.mark.asyncio
    async def test_patch_without_read_carries_freshness_warning(self, make_loop, session):
        patch_main = FunctionCall("patch_script", {
            "path": "ServerScriptService.Main",
            "search_content": 'print("ready")',
            "replace_content": 'print("go")',
        })
        loop, _ = make_loop(MockModel.calls(patch_main))

        result = await loop.start("Change the message")

        assert result.status is LoopStatus.AWAITING_APPROVAL
        response = session.paused.responses[-1].response
        assert "Script not read in this conversation" in response["freshness_warning"]

    @pytest.mark.asyncio
    async def test_patch_after_read_has_no_freshness_warning(self, make_loop, session):
        read_main = FunctionCall("get_script", {"path": "ServerScriptService.Main"})
        patch_main = FunctionCall("patch_script", {
            "path": "ServerScriptService.Main",
            "search_content": 'print("ready")',
            "replace_content": 'print("go")',
        })
        loop, _ = make_loop(MockModel.calls(read_main, patch_main))

        await loop.start("Change the message")

        assert "freshness_warning" not in session.paused.responses[-1].response

    @pytest.mark.asyncio
    async def test_nothing_to_resume(self, make_loop):
        loop, _ = make_loop()

        result = await loop.resume_with_approval(True)

        assert result.status is LoopStatus.FAILED
        assert result.error == NO_PAUSE

    @pytest.mark.asyncio
    async def test_wrong_resume_kind_keeps_pause(self, make_loop, session):
        loop, _ = make_loop(MockModel.calls(CREATE_DOORS))
        await loop.start("Add a Doors folder")

        result = await loop.resume_with_feedback(FeedbackReply("looks fine", positive=True))

        assert result.error == NO_PAUSE
        assert session.paused is not None

    @pytest.mark.asyncio
    async def test_non_dangerous_write_applies_unattended(self, tree, config):
        config.loop.dangerous_operations = ["delete_instance"]
        session = create_session("unattended", tree, config)
        loop = AgenticLoop(
            MockModel([MockModel.calls(CREATE_DOORS), MockModel.reply("Done.")]),
            session,
            summarize=False,
        )

        result = await loop.start("Add a Doors folder")

        assert result.status is LoopStatus.COMPLETED
        assert tree.exists("Workspace.Doors")
        assert session.approval_queue.stats()["approved"] == 1


class TestFeedback:
    ASK = FunctionCall(
        "request_user_feedback",
        {
            "question": "Does the door open?",
            "context": "Added a hinge script",
            "verification_type": "functional",
        },
    )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "positive, interpretation",
        [(True, FEEDBACK_CONFIRMED), (False, FEEDBACK_PROBLEM), (None, FEEDBACK_DETAILED)],
    )
    async def test_resume_with_feedback(self, make_loop, session, positive, interpretation):
        loop, _ = make_loop(MockModel.calls(self.ASK), MockModel.reply("Thanks."))

        paused = await loop.start("Make the door open")
        assert paused.status is LoopStatus.AWAITING_FEEDBACK
        assert paused.feedback_request["question"] == "Does the door open?"

        result = await loop.resume_with_feedback(FeedbackReply("It swings", positive=positive))

        assert result.status is LoopStatus.COMPLETED
        response = _tool_messages(session)[0].function_responses[0].response
        assert response == {
            "user_feedback": "It swings",
            "positive": positive,
            "verification_type": "functional",
            "original_question": "Does the door open?",
            "interpretation": interpretation,
        }


class TestCircuitBreaker:
    @pytest.fixture
    def breaker_session(self, tree, config):
        config.circuit.failure_threshold = 2
        config.circuit.warning_threshold = 1
        return create_session("breaker", tree, config, path_resolver=lambda path: True)

    @staticmethod
    def _missing(name: str) -> FunctionCall:
        return FunctionCall("get_script", {"path": f"Workspace.{name}"})

    @pytest.mark.asyncio
    async def test_open_circuit_skips_rest_of_batch(self, breaker_session):
        model = MockModel([
            MockModel.calls(self._missing("A"), self._missing("B"), self._missing("C"), LOOK),
            MockModel.reply("The scripts are missing."),
        ])
        loop = AgenticLoop(model, breaker_session, summarize=False)

        result = await loop.start("Read A, B and C")

        assert result.status is LoopStatus.COMPLETED
        (tool,) = _tool_messages(breaker_session)
        responses = [r.response for r in tool.function_responses]
        assert len(responses) == 4
        assert "circuit_breaker" in responses[1]
        assert responses[2]["circuit_open"] is True
        assert responses[2]["error"].startswith("Circuit breaker OPEN")
        assert responses[3]["skipped"] is True
        assert breaker_session.circuit_blocks == 1
        assert check_pairing(breaker_session.history.messages())

    @pytest.mark.asyncio
    async def test_repeat_block_with_no_options_ends_turn(self, breaker_session):
        breaker_session.classifier.loop_threshold = 2
        model = MockModel([
            MockModel.calls(self._missing("A"), self._missing("B"), self._missing("C")),
            MockModel.calls(self._missing("D")),
            MockModel.reply("never reached"),
        ])
        loop = AgenticLoop(model, breaker_session, summarize=False)

        result = await loop.start("Read everything")

        assert result.status is LoopStatus.FAILED
        assert result.error.startswith("Circuit breaker OPEN")
        assert result.iteration == 2
        assert model.call_count == 2
        assert check_pairing(breaker_session.history.messages())

    @pytest.mark.asyncio
    async def test_new_task_closes_circuit(self, breaker_session):
        model = MockModel([
            MockModel.calls(self._missing("A"), self._missing("B")),
            MockModel.reply("Both missing."),
            MockModel.calls(LOOK),
            MockModel.reply("Workspace is fine."),
        ])
        loop = AgenticLoop(model, breaker_session, summarize=False)
        await loop.start("Read A and B")
        assert breaker_session.circuit.is_open

        result = await loop.continue_conversation("Look at Workspace instead")

        assert result.status is LoopStatus.COMPLETED
        assert "error" not in _tool_messages(breaker_session)[-1].function_responses[0].response


class TestDecisionMemory:
    @pytest.mark.asyncio
    async def test_finished_task_teaches_the_next_session(self, tree, config):
        store = MemoryStore()
        first = create_session("first", tree, config, decision_store=store)
        loop = AgenticLoop(
            MockModel([MockModel.calls(LOOK), MockModel.reply("Looked.")]), first, summarize=False
        )
        await loop.start("Check the workspace folder layout")

        (pattern,) = store.load("decision-memory")["patterns"]["successful"]
        assert pattern["tools"] == ["get_instance"]
        assert pattern["summary"] == "Looked."

        second = create_session("second", tree, config, decision_store=store)
        loop = AgenticLoop(MockModel([MockModel.reply("Sure.")]), second, summarize=False)
        await loop.start("Tidy the workspace folder")

        request = second.history.messages()[0]
        assert len(request.parts) == 2
        assert request.text.startswith("Tidy the workspace folder")
        assert "## Past Experience" in request.text
        assert "Similar task succeeded using: get_instance" in request.text

    @pytest.mark.asyncio
    async def test_failed_task_and_validation_failures_recorded(self, tree, config):
        store = MemoryStore()
        session = create_session("failing", tree, config, decision_store=store)
        ghost = FunctionCall("get_script", {"path": "Workspace.Ghost"})
        loop = AgenticLoop(
            MockModel([MockModel.calls(ghost, LOOK), MockModel.failure("quota exceeded")]),
            session,
            summarize=False,
        )

        result = await loop.start("Inspect the workspace folder")

        assert result.status is LoopStatus.FAILED
        (pattern,) = store.load("decision-memory")["patterns"]["failed"]
        assert pattern["tools"] == ["get_script", "get_instance"]
        assert pattern["tool_success_rate"] == 0.5
        assert pattern["summary"] == "quota exceeded"

    @pytest.mark.asyncio
    async def test_sequence_spans_approval(self, tree, config):
        store = MemoryStore()
        session = create_session("approving", tree, config, decision_store=store)
        loop = AgenticLoop(
            MockModel([MockModel.calls(CREATE_DOORS), MockModel.reply("Created.")]),
            session,
            summarize=False,
        )

        await loop.start("Add a Doors folder")
        assert session.decisions.recording
        assert store.load("decision-memory") is None

        await loop.resume_with_approval(True)

        (pattern,) = store.load("decision-memory")["patterns"]["successful"]
        assert pattern["tools"] == ["create_instance", "create_instance"]
        assert not session.decisions.recording

"""Tests for the message log, token estimates and call/response pairing."""

from luxloop.history import ConversationHistory, check_pairing, estimate_tokens
from luxloop.models import FunctionCall, FunctionResponse, Message, TextPart


def _call(path: str = "Workspace") -> FunctionCall:
    return FunctionCall("get_instance", {"path": path})


def _response(path: str = "Workspace") -> FunctionResponse:
    return FunctionResponse("get_instance", {"path": path})


class TestTokens:
    def test_text_is_a_quarter_of_chars(self):
        assert estimate_tokens([Message.user("abcd" * 10)]) == 10

    def test_calls_cost_flat_rate(self):
        assert estimate_tokens([Message.model(_call(), _call())]) == 200

    def test_rounds_up(self):
        assert estimate_tokens([Message.user("abcde")]) == 2

    def test_responses_use_serialized_size(self):
        response = FunctionResponse("x", {"a": 1})
        # '{"a": 1}' is 8 chars
        assert estimate_tokens([Message.tool([response])]) == 2


class TestPairing:
    def test_answered_batch(self):
        messages = [
            Message.user("hi"),
            Message.model(_call("A"), _call("B")),
            Message.tool([_response("A"), _response("B")]),
            Message.model(TextPart("done")),
        ]
        assert check_pairing(messages)

    def test_trailing_unanswered_batch_is_allowed(self):
        assert check_pairing([Message.user("hi"), Message.model(_call())])

    def test_missing_response(self):
        messages = [
            Message.model(_call("A"), _call("B")),
            Message.tool([_response("A")]),
        ]
        assert not check_pairing(messages)

    def test_tool_message_without_model(self):
        assert not check_pairing([Message.user("hi"), Message.tool([_response()])])

    def test_unanswered_batch_followed_by_user(self):
        assert not check_pairing([Message.model(_call()), Message.user("again")])


class TestConversationHistory:
    def test_append_and_reset(self):
        history = ConversationHistory()
        history.append(Message.user("hi"))
        history.record_tool_execution("get_instance", "get_instance Workspace", True)

        assert len(history) == 1
        assert history.last().text == "hi"

        history.reset()
        assert len(history) == 0
        assert history.tool_log_summary()["total"] == 0

    def test_tool_log_summary(self):
        history = ConversationHistory()
        history.record_tool_execution("create_script", "Create Script", True)
        history.record_tool_execution("patch_script", "Patch", False)

        summary = history.tool_log_summary()

        assert summary["total"] == 2
        assert summary["successful"] == 1
        assert summary["failed"] == 1
        assert summary["items"][1]["tool_name"] == "patch_script"

    def test_persistence(self):
        history = ConversationHistory()
        history.append(Message.user("hi"))
        history.append(Message.model(_call()))
        history.append(Message.tool([_response()]))
        history.record_tool_execution("get_instance", "", True)

        restored = ConversationHistory.from_dict(history.to_dict())

        assert restored.messages() == history.messages()
        assert restored.tool_log_summary() == history.tool_log_summary()

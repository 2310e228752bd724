"""Scripted mock model for tests and offline demos."""

from __future__ import annotations

from dataclasses import dataclass, field

from luxloop.models.protocol import (
    FunctionCall,
    Message,
    ModelResponse,
    TextPart,
)


@dataclass(slots=True)
class MockModel:
    """Mock model that replays a fixed sequence of responses.

    Each entry is returned once, in order. When the script runs out the
    model answers with a plain "Done." so loops always terminate.

    Example:
        mock = MockModel([
            MockModel.calls(FunctionCall("get_instance", {"path": "Workspace"})),
            MockModel.reply("Finished."),
        ])
    """

    responses: list[ModelResponse] = field(default_factory=list)
    _call_count: int = field(default=0, init=False)
    _histories: list[tuple[Message, ...]] = field(default_factory=list, init=False)

    @property
    def model_id(self) -> str:
        return "mock-model"

    @property
    def call_count(self) -> int:
        """Number of times generate was called."""
        return self._call_count

    @property
    def histories(self) -> list[tuple[Message, ...]]:
        """The history passed to each call."""
        return self._histories

    @staticmethod
    def reply(text: str) -> ModelResponse:
        return ModelResponse.ok(Message.model(TextPart(text)))

    @staticmethod
    def calls(*calls: FunctionCall, thinking: str | None = None) -> ModelResponse:
        parts: list = [TextPart(thinking)] if thinking else []
        parts.extend(calls)
        return ModelResponse.ok(Message.model(*parts))

    @staticmethod
    def failure(error: str) -> ModelResponse:
        return ModelResponse.failed(error)

    async def generate(self, messages: tuple[Message, ...]) -> ModelResponse:
        self._histories.append(tuple(messages))
        self._call_count += 1

        if self._call_count <= len(self.responses):
            return self.responses[self._call_count - 1]
        return self.reply("Done.")

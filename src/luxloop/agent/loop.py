"""Agentic loop: think, act, observe until the model stops calling tools.

Each iteration compresses history if needed, asks the model for the next
message and runs the requested tool calls one at a time, in order. Later
calls in a batch may depend on instances created by earlier ones, so a
batch is never run concurrently.

Dangerous write operations pause the turn. The pause is a plain
`PausedState` on the session; `resume_with_approval` and
`resume_with_feedback` finish the batch from that snapshot plus the
human's decision.

With decision memory on the session, each request carries matching past
experience and the tool sequence of a finished task is stored.

Example:
    >>> loop = AgenticLoop(model, session)
    >>> result = await loop.start("Create a Part named Floor in Workspace")
    >>> if result.status is LoopStatus.AWAITING_APPROVAL:
    ...     result = await loop.resume_with_approval(True)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from luxloop.agent.session import AgentSession
from luxloop.agent.state import (
    FeedbackReply,
    LoopResult,
    LoopStatus,
    PausedState,
    PauseKind,
)
from luxloop.errors.types import SessionBusyError
from luxloop.history.compression import Summarize
from luxloop.history.summarizer import ModelSummarizer
from luxloop.models.protocol import (
    FunctionCall,
    FunctionResponse,
    Message,
    ModelProtocol,
    Role,
    TextPart,
)
from luxloop.types import ToolResult

logger = logging.getLogger(__name__)

EXPIRED_PAUSE = "Operation expired - it was from a different task. Please try again."
NO_PAUSE = "No paused operation to resume"
SKIPPED_RESPONSE = "Skipped: tool execution is blocked by the circuit breaker"

FEEDBACK_CONFIRMED = "User confirmed everything looks correct. You can proceed."
FEEDBACK_PROBLEM = "User reported a problem. Investigate and fix before proceeding."
FEEDBACK_DETAILED = "User provided detailed feedback. Read and respond appropriately."


def interpret_feedback(reply: FeedbackReply) -> str:
    if reply.positive is True:
        return FEEDBACK_CONFIRMED
    if reply.positive is False:
        return FEEDBACK_PROBLEM
    return FEEDBACK_DETAILED


@dataclass(slots=True)
class AgenticLoop:
    """Drives one session's model through tool-calling turns.

    Attributes:
        model: Model transport
        session: Conversation state the loop reads and mutates
        summarizer: Used for AI-summary compression; defaults to asking
            the same model. Pass None with `summarize=False` to always use
            structured truncation.
        summarize: Whether to attempt AI summaries at all
    """

    model: ModelProtocol
    session: AgentSession
    summarizer: Summarize | None = None
    summarize: bool = True

    def __post_init__(self) -> None:
        if self.summarizer is None and self.summarize:
            self.summarizer = ModelSummarizer(self.model).summarize

    @property
    def max_iterations(self) -> int:
        return self.session.config.loop.max_iterations

    # =========================================================================
    # Entry Points
    # =========================================================================

    async def start(self, message: str) -> LoopResult:
        """Start a new conversation with `message`."""
        async with self._turn():
            self.session.begin_conversation()
            self._add_request(message)
            return self._close_sequence(await self._run(1))

    async def continue_conversation(self, message: str) -> LoopResult:
        """Add `message` to the existing conversation as a new task."""
        async with self._turn():
            self.session.begin_task()
            self._add_request(message)
            return self._close_sequence(await self._run(1))

    async def resume_with_approval(self, approved: bool) -> LoopResult:
        """Apply or reject the paused operation and finish the batch."""
        async with self._turn():
            paused = self._take_pause(PauseKind.BATCH)
            if isinstance(paused, LoopResult):
                return paused

            call = paused.call
            if approved:
                result = await self.session.executor.apply_operation(paused.operation_id)
                if result.success:
                    self.session.circuit.record_success()
                    response = {**result.to_response(), "approved": True}
                else:
                    response = self._failure_response(call, result)
            else:
                result = self.session.executor.reject_operation(paused.operation_id)
                response = result.to_response()

            self.session.record_tool_outcome(call.name, call.args, result.success)
            logger.info(
                "Resumed batch after %s",
                "approval" if approved else "denial",
                extra={"operation_id": paused.operation_id, "cursor": paused.cursor},
            )
            return self._close_sequence(await self._resume(paused, response))

    async def resume_with_feedback(self, reply: FeedbackReply) -> LoopResult:
        """Hand the user's verification result to the model and finish the batch."""
        async with self._turn():
            paused = self._take_pause(PauseKind.FEEDBACK)
            if isinstance(paused, LoopResult):
                return paused

            self.session.executor.resolve_feedback(paused.operation_id)
            request = paused.feedback_request or {}
            response = {
                "user_feedback": reply.text,
                "positive": reply.positive,
                "verification_type": request.get("verification_type", "visual"),
                "original_question": request.get("question", ""),
                "interpretation": interpret_feedback(reply),
            }
            logger.info(
                "Resumed batch with user feedback",
                extra={"operation_id": paused.operation_id, "positive": reply.positive},
            )
            return self._close_sequence(await self._resume(paused, response))

    def _add_request(self, message: str) -> None:
        """Append the user message, with past experience when decision memory has some."""
        decisions = self.session.decisions
        if decisions is None:
            self.session.history.append(Message.user(message))
            return
        experience = decisions.format_for_prompt(message)
        decisions.start_sequence(message)
        parts = (TextPart(message), TextPart(experience)) if experience else (TextPart(message),)
        self.session.history.append(Message(Role.USER, parts))

    def _close_sequence(self, result: LoopResult) -> LoopResult:
        """Store the task's tool sequence once the task has finished."""
        decisions = self.session.decisions
        if decisions is None or not decisions.recording:
            return result
        if result.status is LoopStatus.COMPLETED:
            decisions.end_sequence(True, result.text)
        elif result.status is LoopStatus.FAILED:
            decisions.end_sequence(False, result.error or "")
        return result

    @asynccontextmanager
    async def _turn(self) -> AsyncIterator[None]:
        if self.session.busy:
            raise SessionBusyError(
                f"Conversation {self.session.conversation_id} is already running a turn"
            )
        async with self.session.lock:
            yield

    def _take_pause(self, kind: PauseKind) -> PausedState | LoopResult:
        """Claim the session's pause, or explain why there is nothing to resume."""
        paused = self.session.paused
        if paused is None or paused.kind is not kind:
            return LoopResult.failed(NO_PAUSE, 0)
        self.session.paused = None
        if paused.task_id != self.session.task_id:
            logger.warning(
                "Discarding pause from an earlier task",
                extra={"paused_task": paused.task_id, "task_id": self.session.task_id},
            )
            return LoopResult.failed(EXPIRED_PAUSE, paused.iteration)
        return paused

    async def _resume(self, paused: PausedState, response: dict[str, Any]) -> LoopResult:
        responses = list(paused.responses)
        responses[paused.cursor] = FunctionResponse(paused.call.name, response)
        outcome = await self._process_batch(
            paused.batch, paused.cursor + 1, responses, paused.iteration, paused.thinking
        )
        if outcome is not None:
            return outcome
        return await self._run(paused.iteration + 1)

    # =========================================================================
    # Iterations
    # =========================================================================

    async def _run(self, iteration: int) -> LoopResult:
        session = self.session
        while True:
            if iteration > self.max_iterations:
                logger.warning("Iteration limit reached", extra={"iteration": iteration})
                return LoopResult.failed(
                    f"Agent exceeded maximum iterations ({self.max_iterations})", iteration
                )

            await session.compressor.compress_if_needed(session.history, self.summarizer)

            try:
                response = await self.model.generate(session.history.messages())
            except Exception as e:
                logger.exception("Model call raised", extra={"model": self.model.model_id})
                return LoopResult.failed(str(e) or type(e).__name__, iteration)
            if not response.success or response.message is None:
                return LoopResult.failed(response.error or "Model call failed", iteration)

            message = response.message
            session.history.append(message)
            calls = message.function_calls
            if not calls:
                return LoopResult.completed(message.text, iteration)

            logger.debug("Iteration %d: %d tool calls", iteration, len(calls))
            outcome = await self._process_batch(calls, 0, [], iteration, message.text)
            if outcome is not None:
                return outcome
            iteration += 1

    async def _process_batch(
        self,
        calls: tuple[FunctionCall, ...],
        start: int,
        responses: list[FunctionResponse],
        iteration: int,
        thinking: str,
    ) -> LoopResult | None:
        """Run calls[start:] in order.

        Returns:
            A pause or terminal result, or None when the batch finished and
            its tool message is in history.
        """
        session = self.session
        for index in range(start, len(calls)):
            call = calls[index]

            gate = session.circuit.can_proceed()
            if not gate.allowed:
                return self._circuit_blocked(calls, index, responses, iteration, gate.message)

            result, response = await self._execute_call(call, gate.message)
            responses.append(FunctionResponse(call.name, response))
            if result is None or not result.success:
                continue

            if result.pending:
                if call.name in session.dangerous_operations:
                    return self._pause(
                        PauseKind.BATCH, calls, index, responses, iteration, thinking, result
                    )
                responses[-1] = FunctionResponse(
                    call.name, await self._apply_unattended(call, result)
                )
            elif result.awaiting_feedback:
                if call.name in session.feedback_operations:
                    return self._pause(
                        PauseKind.FEEDBACK, calls, index, responses, iteration, thinking, result
                    )
                session.executor.resolve_feedback(result.operation_id)

        session.history.append(Message.tool(responses))
        return None

    async def _execute_call(
        self, call: FunctionCall, circuit_warning: str | None
    ) -> tuple[ToolResult | None, dict[str, Any]]:
        """Validate and execute one call.

        Returns:
            (result, response payload). The result is None when validation
            stopped the call before execution.
        """
        session = self.session
        name, args = call.name, call.args

        validation = session.validator.validate(name, args, session.registry.get(name))
        if not validation.valid:
            logger.warning("Tool call failed validation", extra={"tool": name})
            session.record_tool_outcome(name, args, False)
            return None, {"error": validation.format_for_llm(), "validation_failed": True}

        preflight = session.classifier.preflight(name)
        freshness = session.resilience.freshness_warning(name, args)
        result = await session.executor.execute(name, args)
        if result.success:
            session.circuit.record_success()
            response = result.to_response()
        else:
            response = self._failure_response(call, result)
        session.record_tool_outcome(name, args, result.success)

        warnings = validation.format_for_llm()
        if warnings:
            response["validation_warnings"] = warnings
        if preflight:
            response["warning"] = preflight
        if freshness:
            response["freshness_warning"] = freshness
        if circuit_warning:
            response["circuit_warning"] = circuit_warning
        return result, response

    def _failure_response(self, call: FunctionCall, result: ToolResult) -> dict[str, Any]:
        """Record a failure and build the classified error payload."""
        session = self.session
        error = result.error or "Unknown error"
        outcome = session.circuit.record_failure(call.name, error)

        classification = session.classifier.classify(error, call.name, call.args, result.kind)
        plan = session.classifier.adaptive_recovery(classification)
        if plan.recommended is not None:
            session.classifier.record_recovery_attempt(
                classification.category, plan.recommended.name
            )
        session.last_error = classification

        response = result.to_response()
        response["error"] = session.classifier.format_for_llm(classification, plan)
        response["error_category"] = classification.category.value
        if outcome.message:
            response["circuit_breaker"] = outcome.message
        return response

    async def _apply_unattended(self, call: FunctionCall, queued: ToolResult) -> dict[str, Any]:
        """Apply a queued write immediately when its tool does not need approval."""
        result = await self.session.executor.apply_operation(queued.operation_id)
        if result.success:
            return result.to_response()
        return self._failure_response(call, result)

    # =========================================================================
    # Pauses and Blocks
    # =========================================================================

    def _pause(
        self,
        kind: PauseKind,
        calls: tuple[FunctionCall, ...],
        index: int,
        responses: list[FunctionResponse],
        iteration: int,
        thinking: str,
        result: ToolResult,
    ) -> LoopResult:
        session = self.session
        feedback_request = result.data.get("feedback_request")
        session.paused = PausedState(
            kind=kind,
            task_id=session.task_id or "",
            iteration=iteration,
            batch=tuple(calls),
            cursor=index,
            responses=responses,
            operation_id=result.operation_id,
            thinking=thinking,
            feedback_request=feedback_request,
        )
        logger.info(
            "Paused for %s", kind.value,
            extra={"operation_id": result.operation_id, "cursor": index},
        )

        if kind is PauseKind.FEEDBACK:
            return LoopResult(
                LoopStatus.AWAITING_FEEDBACK,
                iteration,
                text=thinking,
                feedback_request=feedback_request,
            )

        operation = session.approval_queue.get(result.operation_id)
        return LoopResult(
            LoopStatus.AWAITING_APPROVAL,
            iteration,
            text=thinking,
            operation={
                "id": result.operation_id,
                "type": operation.type if operation else calls[index].name,
                "data": dict(operation.data) if operation else {},
                "message": result.data.get("message", ""),
            },
        )

    def _circuit_blocked(
        self,
        calls: tuple[FunctionCall, ...],
        index: int,
        responses: list[FunctionResponse],
        iteration: int,
        message: str | None,
    ) -> LoopResult | None:
        """Answer the rest of the batch and decide whether the turn can go on.

        The first block in a task gives the model another iteration to
        react. A repeat block with no recovery options left ends the turn.
        """
        session = self.session
        message = message or "Tool execution is blocked by the circuit breaker"
        terminal = session.circuit_blocks > 0 and session.classifier.recovery_exhausted()
        session.circuit_blocks += 1

        responses.append(
            FunctionResponse(calls[index].name, {"error": message, "circuit_open": True})
        )
        responses.extend(
            FunctionResponse(call.name, {"error": SKIPPED_RESPONSE, "skipped": True})
            for call in calls[index + 1 :]
        )
        session.history.append(Message.tool(responses))
        logger.warning(
            "Circuit breaker blocked %s", calls[index].name,
            extra={"blocked": session.circuit_blocks, "terminal": terminal},
        )

        if terminal:
            suggestion = session.last_error.top_suggestion if session.last_error else None
            return LoopResult.failed(message, iteration, suggestion=suggestion)
        return None

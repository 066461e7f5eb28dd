"""Tool dispatch for recovered invocations.

Only ``Bash`` is executed here.  Every other tool is forwarded to the
consumer as a structured call so it can run it itself.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel

from turnstile.instrumentation import record_error, tool_span
from turnstile.recovery import BASH_TOOL, ToolInvocation
from turnstile.streaming import ToolCall, ToolCallStart, UnifiedChunk, new_chunk_id

logger = logging.getLogger(__name__)


class ExecutionSuccess(BaseModel):
    stdout: str


class ExecutionFailure(BaseModel):
    error_message: str


ExecutionOutcome = Union[ExecutionSuccess, ExecutionFailure]
Executor = Callable[[str], Union[ExecutionOutcome, Awaitable[ExecutionOutcome]]]


@dataclass(frozen=True)
class BashCall:
    """A shell command this process runs itself."""

    command: str


@dataclass(frozen=True)
class ForwardedCall:
    """Any other tool; handed to the consumer uninterpreted."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


KnownCall = Union[BashCall, ForwardedCall]


def classify(invocation: ToolInvocation) -> KnownCall:
    command = invocation.arguments.get("command")
    if invocation.name == BASH_TOOL and isinstance(command, str) and command:
        return BashCall(command=command)
    return ForwardedCall(name=invocation.name, arguments=dict(invocation.arguments))


def format_output(command: str, stdout: str) -> str:
    return f"Here's the output of `{command}`:\n\n```\n{stdout}\n```"


def format_error(command: str, error_message: str) -> str:
    return f"Error executing `{command}`:\n\n```\n{error_message}\n```"


class ToolDispatcher:
    """Turns a resolved invocation into the chunks that end a turn.

    Args:
        execute: The execution collaborator.  May be sync or async and
            is expected to enforce its own timeout and output cap.
    """

    def __init__(self, execute: Executor):
        self.execute = execute

    async def dispatch(
        self, invocation: ToolInvocation, model: str,
        role_emitted: bool = False,
    ) -> AsyncIterator[UnifiedChunk]:
        call = classify(invocation)
        role = None if role_emitted else "assistant"

        if isinstance(call, BashCall):
            outcome = await self._run(call.command)
            if isinstance(outcome, ExecutionSuccess):
                text = format_output(call.command, outcome.stdout)
            else:
                text = format_error(call.command, outcome.error_message)
            yield UnifiedChunk(model=model, role=role, text_delta=text)
            yield UnifiedChunk(model=model, finish_reason="stop")
            return

        logger.info(f"Forwarding {call.name} call to the consumer")
        yield UnifiedChunk(
            model=model, role=role,
            tool_call_start=ToolCallStart(name=call.name),
        )
        yield UnifiedChunk(
            model=model, tool_call_args_delta=json.dumps(call.arguments),
        )
        yield UnifiedChunk(model=model, finish_reason="tool_call")

    async def forward_native(
        self, calls: list[ToolCall], model: str,
        role_emitted: bool = False,
    ) -> AsyncIterator[UnifiedChunk]:
        """Forward tool calls the provider streamed natively."""
        role = None if role_emitted else "assistant"
        for tc in calls:
            yield UnifiedChunk(
                model=model, role=role,
                tool_call_start=ToolCallStart(name=tc.name),
            )
            role = None
            if tc.arguments:
                yield UnifiedChunk(model=model, tool_call_args_delta=tc.arguments)
        yield UnifiedChunk(model=model, finish_reason="tool_call")

    async def _run(self, command: str) -> ExecutionOutcome:
        logger.info(f"Executing {BASH_TOOL} command: {command}")
        async with tool_span(BASH_TOOL, new_chunk_id("call")) as span:
            try:
                outcome = self.execute(command)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except Exception as e:
                logger.error(f"Executor raised for {command!r}: {e}")
                record_error(span, e)
                return ExecutionFailure(error_message=str(e))
        if isinstance(outcome, ExecutionFailure):
            logger.warning(f"Command {command!r} failed: {outcome.error_message}")
        return outcome

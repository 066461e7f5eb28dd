"""Streaming primitives shared by every provider.

The orchestrator yields :class:`UnifiedChunk` objects regardless of the
upstream wire format.  Providers that stream native tool calls send
them as :class:`ToolCallFragment` pieces; the
:class:`ToolCallAccumulator` reassembles them.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Literal

from openai.types.chat import ChatCompletion, ChatCompletionChunk, ChatCompletionMessage
from openai.types.chat.chat_completion import Choice as CompletionChoice
from openai.types.chat.chat_completion_chunk import (
    Choice,
    ChoiceDelta,
    ChoiceDeltaFunctionCall,
)
from openai.types.chat.chat_completion_message import FunctionCall

FinishReason = Literal["stop", "tool_call"]

# OpenAI-compatible consumers know the legacy function-call vocabulary.
_OPENAI_FINISH_REASONS = {"stop": "stop", "tool_call": "function_call"}


def new_chunk_id(prefix: str = "turnstile") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


def now() -> int:
    return int(time.time())


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass
class ToolCall:
    """A resolved tool call assembled from fragments."""

    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments."""

    def __init__(self) -> None:
        self._pending: dict[int, ToolCall] = {}

    def __bool__(self) -> bool:
        return bool(self._pending)

    def feed(self, fragment: ToolCallFragment) -> None:
        if fragment.index not in self._pending:
            self._pending[fragment.index] = ToolCall()
        tc = self._pending[fragment.index]
        if fragment.call_id is not None:
            tc.id = fragment.call_id
        if fragment.name is not None:
            tc.name = fragment.name
        if fragment.arguments_delta is not None:
            tc.arguments += fragment.arguments_delta

    def finalize(self) -> list[ToolCall]:
        """Return completed tool calls in index order."""
        return [self._pending[i] for i in sorted(self._pending)]


@dataclass
class ToolCallStart:
    """Announces a new invocation; arguments follow in later chunks."""

    name: str


@dataclass
class UnifiedChunk:
    """One increment of a completion turn, independent of provider.

    ``text_delta`` and the tool-call fields are mutually exclusive.
    Consumers concatenate ``tool_call_args_delta`` values in arrival
    order to rebuild the JSON argument string.
    """

    model: str
    role: Literal["assistant"] | None = None
    text_delta: str | None = None
    tool_call_start: ToolCallStart | None = None
    tool_call_args_delta: str | None = None
    finish_reason: FinishReason | None = None
    id: str = field(default_factory=new_chunk_id)
    created_at: int = field(default_factory=now)

    def __post_init__(self) -> None:
        if self.text_delta is not None and self.is_tool_call:
            raise ValueError(
                "A chunk cannot carry both text and tool-call fields"
            )

    @property
    def is_tool_call(self) -> bool:
        return (
            self.tool_call_start is not None
            or self.tool_call_args_delta is not None
        )

    def to_openai(self) -> ChatCompletionChunk:
        """Render as an OpenAI ``chat.completion.chunk``."""
        function_call = None
        if self.is_tool_call:
            function_call = ChoiceDeltaFunctionCall(
                name=self.tool_call_start.name if self.tool_call_start else None,
                arguments=self.tool_call_args_delta,
            )
        finish_reason = (
            _OPENAI_FINISH_REASONS[self.finish_reason]
            if self.finish_reason else None
        )
        return ChatCompletionChunk(
            id=self.id,
            object="chat.completion.chunk",
            created=self.created_at,
            model=self.model,
            choices=[Choice(
                index=0,
                delta=ChoiceDelta(
                    role=self.role,
                    content=self.text_delta,
                    function_call=function_call,
                ),
                finish_reason=finish_reason,
            )],
        )


@dataclass
class CompletionResult:
    """A whole turn composed into one object (non-streaming variant)."""

    model: str
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: FinishReason = "stop"
    role: Literal["assistant"] = "assistant"
    id: str = field(default_factory=new_chunk_id)
    created_at: int = field(default_factory=now)

    @classmethod
    def from_chunks(
        cls, chunks: list[UnifiedChunk], model: str,
    ) -> "CompletionResult":
        text: list[str] = []
        calls: list[ToolCall] = []
        finish_reason: FinishReason = "stop"
        for chunk in chunks:
            model = chunk.model or model
            if chunk.text_delta is not None:
                text.append(chunk.text_delta)
            if chunk.tool_call_start is not None:
                calls.append(ToolCall(name=chunk.tool_call_start.name))
            if chunk.tool_call_args_delta is not None and calls:
                calls[-1].arguments += chunk.tool_call_args_delta
            if chunk.finish_reason is not None:
                finish_reason = chunk.finish_reason
        return cls(
            model=model,
            content="".join(text) if text or not calls else None,
            tool_calls=calls,
            finish_reason=finish_reason,
        )

    def to_openai(self) -> ChatCompletion:
        """Render as an OpenAI ``chat.completion``.

        Tool calls use the single ``function_call`` field, so only the
        first call is represented.
        """
        function_call = None
        if self.tool_calls:
            first = self.tool_calls[0]
            function_call = FunctionCall(name=first.name, arguments=first.arguments)
        return ChatCompletion(
            id=self.id,
            object="chat.completion",
            created=self.created_at,
            model=self.model,
            choices=[CompletionChoice(
                index=0,
                message=ChatCompletionMessage(
                    role=self.role,
                    content=self.content,
                    function_call=function_call,
                ),
                finish_reason=_OPENAI_FINISH_REASONS[self.finish_reason],
            )],
        )

"""Wire parsers: one decoded line in, one :class:`ProviderEvent` out.

Two framings are supported:

* **NDJSON** -- one JSON object per line, as sent by Ollama's
  ``/api/chat``::

      {"model": "llama3", "message": {"content": "Hi"}, "done": false}

* **Event stream** -- OpenAI-style Server-Sent Events, ``data: <json>``
  lines terminated by ``data: [DONE]``.

A frame that does not parse is skipped and logged.  One bad frame must
never abort an otherwise healthy turn.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from pydantic import BaseModel, Field, ValidationError

from turnstile.events import ProviderEvent
from turnstile.streaming import ToolCallFragment

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class WireFormat(Enum):
    NDJSON = "ndjson"
    EVENT_STREAM = "event_stream"


# ---------------------------------------------------------------------------
# NDJSON frames
# ---------------------------------------------------------------------------

class NDJSONMessage(BaseModel):
    content: str | None = None


class NDJSONFrame(BaseModel):
    model: str | None = None
    message: NDJSONMessage | None = None
    done: bool = False


def parse_ndjson_line(line: str) -> ProviderEvent | None:
    line = line.strip()
    if not line:
        return None
    try:
        frame = NDJSONFrame.model_validate_json(line)
    except ValidationError as e:
        logger.debug(f"Skipping malformed NDJSON frame: {e}")
        return None
    content = frame.message.content if frame.message else None
    return ProviderEvent(
        content_fragment=content or None,
        is_final=frame.done,
        model_name=frame.model,
    )


# ---------------------------------------------------------------------------
# Event-stream frames
# ---------------------------------------------------------------------------

class FunctionDelta(BaseModel):
    name: str | None = None
    arguments: str | None = None


class ToolCallDelta(BaseModel):
    index: int = 0
    id: str | None = None
    function: FunctionDelta | None = None


class ChunkDelta(BaseModel):
    content: str | None = None
    tool_calls: list[ToolCallDelta] | None = None


class ChunkChoice(BaseModel):
    delta: ChunkDelta = Field(default_factory=ChunkDelta)
    finish_reason: str | None = None


class EventStreamFrame(BaseModel):
    model: str | None = None
    choices: list[ChunkChoice] = Field(default_factory=list)


def _fragments(delta: ChunkDelta) -> list[ToolCallFragment] | None:
    if not delta.tool_calls:
        return None
    return [
        ToolCallFragment(
            index=tc.index,
            call_id=tc.id,
            name=tc.function.name if tc.function else None,
            arguments_delta=tc.function.arguments if tc.function else None,
        )
        for tc in delta.tool_calls
    ]


def parse_event_stream_line(line: str) -> ProviderEvent | None:
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        # event:, id:, retry: and ":" comment lines carry no content
        return None
    payload = line[len(DATA_PREFIX):].strip()
    if not payload or payload == DONE_SENTINEL:
        return None
    try:
        frame = EventStreamFrame.model_validate_json(payload)
    except ValidationError as e:
        logger.debug(f"Skipping malformed event-stream frame: {e}")
        return None
    if not frame.choices:
        return ProviderEvent(model_name=frame.model)
    choice = frame.choices[0]
    return ProviderEvent(
        content_fragment=choice.delta.content or None,
        is_final=choice.finish_reason is not None,
        model_name=frame.model,
        tool_call_fragments=_fragments(choice.delta),
    )


LineParser = Callable[[str], "ProviderEvent | None"]

_PARSERS: dict[WireFormat, LineParser] = {
    WireFormat.NDJSON: parse_ndjson_line,
    WireFormat.EVENT_STREAM: parse_event_stream_line,
}


def parser_for(wire_format: WireFormat) -> LineParser:
    """Return the line parser for a provider's wire format."""
    return _PARSERS[wire_format]

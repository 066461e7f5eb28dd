"""Per-turn orchestration: decode, normalise, recover, dispatch.

A turn moves through :class:`TurnPhase` states::

    STREAMING_PASSTHROUGH -> AWAITING_FINAL -> EMITTING -> DONE
                                  |                ^
                                  +-> RECOVERING --+

Normalised text is buffered until the upstream signals completion (or
the byte stream simply ends).  Only then can recovery decide whether
the turn was really a tool call, in which case the buffered text is
dropped and the tool's chunks are emitted in its place.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass, replace
from enum import Enum
from typing import Union

from turnstile.config import ProviderConfig
from turnstile.decoder import FrameDecoder
from turnstile.events import ProviderEvent
from turnstile.executor import ShellExecutor
from turnstile.instrumentation import record_error, record_recovery, turn_span
from turnstile.normalizer import NormalizerState, normalize
from turnstile.recovery import RecoverySource, recover
from turnstile.streaming import CompletionResult, ToolCallAccumulator, UnifiedChunk
from turnstile.tools import Executor, ToolDispatcher
from turnstile.wire import WireFormat, parser_for

logger = logging.getLogger(__name__)

ByteStream = Union[AsyncIterable[bytes], Iterable[bytes], bytes]


class StreamUnavailableError(RuntimeError):
    """Raised when a turn is started without a readable byte stream."""


class TurnPhase(Enum):
    STREAMING_PASSTHROUGH = "streaming_passthrough"
    AWAITING_FINAL = "awaiting_final"
    RECOVERING = "recovering"
    EMITTING = "emitting"
    DONE = "done"


_TRANSITIONS: dict[TurnPhase, frozenset[TurnPhase]] = {
    TurnPhase.STREAMING_PASSTHROUGH: frozenset({TurnPhase.AWAITING_FINAL}),
    TurnPhase.AWAITING_FINAL: frozenset({TurnPhase.RECOVERING, TurnPhase.EMITTING}),
    TurnPhase.RECOVERING: frozenset({TurnPhase.EMITTING}),
    TurnPhase.EMITTING: frozenset({TurnPhase.DONE}),
    TurnPhase.DONE: frozenset(),
}


@dataclass(frozen=True)
class TurnState:
    """Everything one turn knows.  Never shared between turns.

    Args:
        model: Model stamped on emitted chunks.
        phase: Current position in the turn state machine.
        normalizer: Role tracking for normalised chunks.
        text: All text fragments seen so far, in arrival order.
        role_emitted: Whether a role-bearing chunk reached the consumer.
    """

    model: str
    phase: TurnPhase = TurnPhase.STREAMING_PASSTHROUGH
    normalizer: NormalizerState = NormalizerState()
    text: str = ""
    role_emitted: bool = False


def transition(state: TurnState, phase: TurnPhase) -> TurnState:
    if phase not in _TRANSITIONS[state.phase]:
        raise RuntimeError(
            f"Illegal turn transition {state.phase.name} -> {phase.name}"
        )
    return replace(state, phase=phase)


def accept(
    event: ProviderEvent, state: TurnState, default_model: str,
) -> tuple[UnifiedChunk | None, TurnState]:
    """Fold one provider event into the turn.

    Returns the normalised chunk, if any, and the next state.  A final
    event moves the turn to ``AWAITING_FINAL``.
    """
    if state.phase is not TurnPhase.STREAMING_PASSTHROUGH:
        return None, state
    chunk, normalizer = normalize(event, state.normalizer, default_model)
    state = replace(state, normalizer=normalizer)
    if chunk is not None:
        state = replace(
            state, model=chunk.model, text=state.text + (chunk.text_delta or ""),
        )
    if event.is_final:
        state = transition(state, TurnPhase.AWAITING_FINAL)
    return chunk, state


# ---------------------------------------------------------------------------
# Byte stream access
# ---------------------------------------------------------------------------

async def _iterate(body: ByteStream) -> AsyncIterator[bytes]:
    if isinstance(body, (bytes, bytearray)):
        yield bytes(body)
    elif isinstance(body, AsyncIterable):
        async for data in body:
            yield data
    else:
        for data in body:
            yield data


async def _release(body: ByteStream) -> None:
    close = getattr(body, "aclose", None) or getattr(body, "close", None)
    if close is None:
        return
    result = close()
    if inspect.isawaitable(result):
        await result


@asynccontextmanager
async def open_stream(body: ByteStream):
    """Yield an async byte iterator over *body*; always release it."""
    if body is None:
        raise StreamUnavailableError("Stream is null or undefined")
    try:
        async with aclosing(_iterate(body)) as data:
            yield data
    finally:
        await _release(body)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class TurnOrchestrator:
    """Translates one upstream response into unified chunks.

    Args:
        config: Provider identity and model.  Selects the wire parser.
        execute: Execution collaborator for ``Bash`` calls.  Defaults
            to :class:`~turnstile.executor.ShellExecutor`.
        recover_intent: When ``False``, no recovery is attempted.  NDJSON
            chunks are forwarded as soon as they are normalised; event-stream
            text is held until the final event and dropped if native tool
            calls arrive.
    """

    def __init__(
        self,
        config: ProviderConfig,
        execute: Executor | None = None,
        recover_intent: bool = True,
    ):
        self.config = config
        self.dispatcher = ToolDispatcher(execute or ShellExecutor())
        self.recover_intent = recover_intent

    def stream(self, body: ByteStream | None) -> AsyncIterator[UnifiedChunk]:
        """Start a streaming turn.

        Raises:
            StreamUnavailableError: Immediately, if *body* is ``None``.
        """
        if body is None:
            raise StreamUnavailableError("Stream is null or undefined")
        return self._run(body)

    async def complete(self, body: bytes | None) -> CompletionResult:
        """Translate a whole, already-read response body.

        Raises:
            StreamUnavailableError: If *body* is ``None``.
        """
        if body is None:
            raise StreamUnavailableError("Response body is null or undefined")
        chunks = [chunk async for chunk in self._run(body)]
        return CompletionResult.from_chunks(chunks, model=self.config.model)

    async def _events(self, body: ByteStream) -> AsyncIterator[ProviderEvent]:
        parse = parser_for(self.config.wire_format)
        decoder = FrameDecoder()
        async with open_stream(body) as data:
            async for buffer in data:
                for line in decoder.feed(buffer):
                    event = parse(line)
                    if event is not None:
                        yield event
        for line in decoder.flush():
            event = parse(line)
            if event is not None:
                yield event

    async def _run(self, body: ByteStream) -> AsyncIterator[UnifiedChunk]:
        model = self.config.model
        state = TurnState(model=model)
        native = ToolCallAccumulator()
        held: UnifiedChunk | None = None
        pending: list[UnifiedChunk] = []
        stream_text = (
            not self.recover_intent
            and self.config.wire_format is WireFormat.NDJSON
        )

        async with turn_span(self.config.provider, model) as span:
            try:
                async with aclosing(self._events(body)) as events:
                    async for event in events:
                        for fragment in event.tool_call_fragments or ():
                            native.feed(fragment)
                        chunk, state = accept(event, state, model)
                        if chunk is not None and not self.recover_intent:
                            if chunk.finish_reason is not None:
                                held = chunk
                            elif stream_text:
                                state = replace(
                                    state, role_emitted=state.normalizer.role_emitted,
                                )
                                yield chunk
                            else:
                                pending.append(chunk)
                        if state.phase is TurnPhase.AWAITING_FINAL:
                            break
            except Exception as e:
                record_error(span, e)
                raise

            if state.phase is TurnPhase.STREAMING_PASSTHROUGH:
                logger.info("Upstream ended without a final marker")
                state = transition(state, TurnPhase.AWAITING_FINAL)

            if native:
                calls = native.finalize()
                logger.info(f"Forwarding {len(calls)} native tool call(s)")
                if pending or held:
                    logger.debug("Dropping text superseded by native tool calls")
                record_recovery(span, calls[0].name, RecoverySource.NATIVE.value)
                state = transition(state, TurnPhase.RECOVERING)
                async for chunk in self.dispatcher.forward_native(
                    calls, state.model, state.role_emitted,
                ):
                    yield chunk
                state = transition(state, TurnPhase.EMITTING)

            elif not self.recover_intent:
                state = transition(state, TurnPhase.EMITTING)
                for chunk in pending:
                    yield chunk
                    if chunk.role is not None:
                        state = replace(state, role_emitted=True)
                final = held or UnifiedChunk(model=state.model, finish_reason="stop")
                yield replace(final, role=None if state.role_emitted else "assistant")

            else:
                invocation = recover(state.text, state.model)
                if invocation is None:
                    state = transition(state, TurnPhase.EMITTING)
                    yield UnifiedChunk(
                        model=state.model,
                        role=None if state.role_emitted else "assistant",
                        text_delta=state.text,
                        finish_reason="stop",
                    )
                else:
                    record_recovery(span, invocation.name, invocation.source.value)
                    state = transition(state, TurnPhase.RECOVERING)
                    async for chunk in self.dispatcher.dispatch(
                        invocation, state.model, state.role_emitted,
                    ):
                        yield chunk
                    state = transition(state, TurnPhase.EMITTING)

            state = transition(state, TurnPhase.DONE)
            logger.debug(f"Turn finished for {state.model}")

"""Server-Sent Events adapter for unified chunk streams."""

from __future__ import annotations

from collections.abc import AsyncIterator

from turnstile.streaming import UnifiedChunk

DONE_EVENT = "data: [DONE]\n\n"


def encode_chunk(chunk: UnifiedChunk) -> str:
    payload = chunk.to_openai().model_dump_json(exclude_none=True)
    return f"data: {payload}\n\n"


async def sse_generator(
    chunk_stream: AsyncIterator[UnifiedChunk],
) -> AsyncIterator[str]:
    """Convert a UnifiedChunk async iterator into SSE-formatted strings.

    The output is what an OpenAI-compatible client expects from a
    streaming ``/chat/completions`` call, ``[DONE]`` sentinel included.
    """
    async for chunk in chunk_stream:
        yield encode_chunk(chunk)
    yield DONE_EVENT

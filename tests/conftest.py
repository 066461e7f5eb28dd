import json

import pytest

from turnstile.config import ProviderConfig
from turnstile.orchestrator import TurnOrchestrator
from turnstile.tools import ExecutionFailure, ExecutionSuccess


# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------

class FakeByteStream:
    """Async byte stream that records whether it was released.

    Pass ``error`` to raise after all buffers have been delivered.
    """

    def __init__(self, buffers: list[bytes], error: Exception | None = None):
        self.buffers = list(buffers)
        self.error = error
        self.closed = False
        self.reads = 0

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for buffer in self.buffers:
            self.reads += 1
            yield buffer
        if self.error is not None:
            raise self.error

    async def aclose(self):
        self.closed = True


# ---------------------------------------------------------------------------
# Frame builders
# ---------------------------------------------------------------------------

def ndjson_frame(content: str = "", done: bool = False, model: str = "llama3") -> str:
    return json.dumps({
        "model": model,
        "message": {"role": "assistant", "content": content},
        "done": done,
    }) + "\n"


def ndjson_body(*contents: str, model: str = "llama3") -> bytes:
    """NDJSON body with one frame per content and a closing ``done`` frame."""
    frames = [ndjson_frame(c, model=model) for c in contents]
    frames.append(ndjson_frame("", done=True, model=model))
    return "".join(frames).encode("utf-8")


def sse_frame(
    content: str | None = None,
    finish_reason: str | None = None,
    tool_calls: list[dict] | None = None,
    model: str = "gpt-4o",
) -> str:
    delta: dict = {}
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    payload = {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": model,
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    return f"data: {json.dumps(payload)}\n\n"


def sse_body(*contents: str, model: str = "gpt-4o") -> bytes:
    frames = [sse_frame(c, model=model) for c in contents]
    frames.append(sse_frame(finish_reason="stop", model=model))
    frames.append("data: [DONE]\n\n")
    return "".join(frames).encode("utf-8")


# ---------------------------------------------------------------------------
# Execution collaborators
# ---------------------------------------------------------------------------

class RecordingExecutor:
    """Executor double returning a fixed outcome and logging commands."""

    def __init__(self, outcome=None):
        self.outcome = outcome or ExecutionSuccess(stdout="ok")
        self.commands: list[str] = []

    def __call__(self, command: str):
        self.commands.append(command)
        return self.outcome


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def failing_executor():
    return RecordingExecutor(ExecutionFailure(error_message="fatal: not a git repository"))


@pytest.fixture
def ollama_config():
    return ProviderConfig(provider="ollama", model="llama3")


@pytest.fixture
def openai_config():
    return ProviderConfig(provider="openai", model="gpt-4o")


@pytest.fixture
def make_orchestrator(ollama_config, executor):
    """Factory fixture for orchestrators with test doubles."""
    def _make(config=None, execute=None, recover_intent=True):
        return TurnOrchestrator(
            config or ollama_config,
            execute=execute or executor,
            recover_intent=recover_intent,
        )
    return _make


async def collect(stream) -> list:
    return [chunk async for chunk in stream]

"""Streaming chat-completion translation with tool-call recovery."""

from turnstile.config import ModelCatalog, ModelProfile, ProviderConfig, prepare_messages
from turnstile.executor import ShellExecutor
from turnstile.instrumentation import instrument, uninstrument
from turnstile.orchestrator import StreamUnavailableError, TurnOrchestrator
from turnstile.recovery import ToolInvocation, recover
from turnstile.streaming import CompletionResult, ToolCallStart, UnifiedChunk
from turnstile.tools import ExecutionFailure, ExecutionSuccess
from turnstile.wire import WireFormat

__all__ = [
    "CompletionResult",
    "ExecutionFailure",
    "ExecutionSuccess",
    "ModelCatalog",
    "ModelProfile",
    "ProviderConfig",
    "ShellExecutor",
    "StreamUnavailableError",
    "ToolCallStart",
    "ToolInvocation",
    "TurnOrchestrator",
    "UnifiedChunk",
    "WireFormat",
    "instrument",
    "prepare_messages",
    "recover",
    "uninstrument",
]

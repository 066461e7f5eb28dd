"""Provider-native events produced by the wire parsers."""

from __future__ import annotations

from dataclasses import dataclass

from turnstile.streaming import ToolCallFragment


@dataclass
class ProviderEvent:
    """One decoded frame, before normalisation.

    Only the chunk normaliser and the orchestrator see these; nothing
    provider-specific leaks past them.
    """

    content_fragment: str | None = None
    is_final: bool = False
    model_name: str | None = None
    tool_call_fragments: list[ToolCallFragment] | None = None

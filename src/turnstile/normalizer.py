"""Maps provider events onto :class:`UnifiedChunk`."""

from __future__ import annotations

from dataclasses import dataclass, replace

from turnstile.events import ProviderEvent
from turnstile.streaming import UnifiedChunk


@dataclass(frozen=True)
class NormalizerState:
    """Per-turn normaliser state.

    Args:
        role_emitted: Whether a chunk carrying ``role="assistant"`` has
            already been produced this turn.
    """

    role_emitted: bool = False


def normalize(
    event: ProviderEvent, state: NormalizerState, model: str,
) -> tuple[UnifiedChunk | None, NormalizerState]:
    """Normalise one event.

    Returns the chunk (or ``None`` when the event carries neither
    content nor a completion signal) and the next state.
    """
    content = event.content_fragment
    if not content and not event.is_final:
        return None, state

    role = None
    if content and not state.role_emitted:
        role = "assistant"
        state = replace(state, role_emitted=True)

    chunk = UnifiedChunk(
        model=event.model_name or model,
        role=role,
        text_delta=content or None,
        finish_reason="stop" if event.is_final else None,
    )
    return chunk, state

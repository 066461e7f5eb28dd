"""Configuration collaborator: provider identity, model, system prompts."""

from __future__ import annotations

import logging
import os
from typing import Callable

from pydantic import BaseModel, Field

from turnstile.wire import WireFormat

logger = logging.getLogger(__name__)

ENV_PREFIX = "TURNSTILE_"
OLLAMA = "ollama"

SystemPromptLookup = Callable[[str], "str | None"]


def configure_logging(
    level: int = logging.INFO, log_file: str | None = "turnstile.log",
) -> None:
    """Install the standard turnstile log format on the root logger."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s:%(name)s:%(levelname)s:%(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers,
        force=True,
    )


class ProviderConfig(BaseModel):
    """The resolved upstream for a turn.

    Args:
        model: Model identifier sent upstream and stamped on chunks.
        provider: Provider name, e.g. ``"ollama"`` or ``"openai"``.
        base_url: Upstream base URL, if configured.
    """

    model: str
    provider: str = "openai"
    base_url: str | None = None

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, **overrides) -> "ProviderConfig":
        values = {
            "model": os.getenv(f"{prefix}MODEL"),
            "provider": os.getenv(f"{prefix}PROVIDER"),
            "base_url": os.getenv(f"{prefix}BASE_URL"),
        }
        values.update(overrides)
        return cls(**{k: v for k, v in values.items() if v is not None})

    @property
    def is_ollama(self) -> bool:
        if self.provider.lower() == OLLAMA:
            return True
        if self.base_url and OLLAMA in self.base_url.lower():
            return True
        model = self.model.lower()
        return OLLAMA in model or model.startswith("hf.co/")

    @property
    def wire_format(self) -> WireFormat:
        return WireFormat.NDJSON if self.is_ollama else WireFormat.EVENT_STREAM


class ModelProfile(BaseModel):
    model: str
    custom_system_prompt: str | None = None


class ModelCatalog(BaseModel):
    """Known models and their per-model overrides.

    Instances are callable and satisfy :data:`SystemPromptLookup`.
    """

    profiles: list[ModelProfile] = Field(default_factory=list)

    def get(self, model: str) -> ModelProfile | None:
        for profile in self.profiles:
            if profile.model == model:
                return profile
        return None

    def __call__(self, model: str) -> str | None:
        profile = self.get(model)
        return profile.custom_system_prompt if profile else None


def prepare_messages(
    messages: list[dict],
    model: str,
    lookup: SystemPromptLookup | None = None,
) -> list[dict]:
    """Swap every system message for the model's custom prompt, if any.

    Messages with empty content are dropped; the upstream rejects them.
    """
    prepared = [m for m in messages if m and m.get("content")]
    prompt = lookup(model) if lookup else None
    if not prompt:
        return prepared
    logger.info(f"Using custom system prompt for model: {model}")
    return [
        {"role": "system", "content": prompt},
        *[m for m in prepared if m.get("role") != "system"],
    ]

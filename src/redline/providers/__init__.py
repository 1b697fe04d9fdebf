from __future__ import annotations

from redline.errors import RedlineConfigError
from redline.providers.base import ChatProvider

PROVIDER_ALIASES: dict[str, str] = {
    "anthropic": "anthropic",
    "claude": "anthropic",
    "openai": "openai",
    "chatgpt": "openai",
    "gpt": "openai",
}


def canonical_provider(name: str) -> str:
    key = (name or "").strip().lower()
    if key not in PROVIDER_ALIASES:
        raise RedlineConfigError(f"Unsupported llm.provider: {name!r}")
    return PROVIDER_ALIASES[key]


def build_provider(name: str) -> ChatProvider:
    """Instantiate the streaming provider for `name` (SDKs are imported lazily)."""

    provider = canonical_provider(name)
    if provider == "anthropic":
        from redline.providers.anthropic_provider import AnthropicProvider

        return AnthropicProvider()

    from redline.providers.openai_provider import OpenAIProvider

    return OpenAIProvider()


__all__ = ["PROVIDER_ALIASES", "build_provider", "canonical_provider"]

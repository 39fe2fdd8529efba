from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@runtime_checkable
class StatelessBackend(Protocol):
    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        messages: list[dict],
    ) -> str:
        """Complete a full ``{role, content}`` transcript and return the answer text."""
        ...


@dataclass(frozen=True)
class StatefulReply:
    text: str
    message_id: str
    conversation_id: str | None


@runtime_checkable
class StatefulConversation(Protocol):
    async def send(
        self,
        text: str,
        *,
        parent_message_id: str | None = None,
        conversation_id: str | None = None,
    ) -> StatefulReply:
        """Send one turn; the backend keeps the history server-side."""
        ...


@runtime_checkable
class StatefulBackend(Protocol):
    def open_conversation(self) -> StatefulConversation:
        """Create the per-session conversation handle."""
        ...


def create_provider(provider_name: str, api_key: str) -> StatelessBackend:
    """Factory: create a stateless backend by name."""
    name = provider_name.strip().lower()
    if name == "openai":
        from reply_chain_bot.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key)
    if name == "anthropic":
        from reply_chain_bot.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'openai', 'anthropic'")


def create_stateful_provider(api_key: str, model: str) -> StatefulBackend:
    from reply_chain_bot.providers.openai_responses_provider import OpenAIResponsesProvider
    return OpenAIResponsesProvider(api_key, model)

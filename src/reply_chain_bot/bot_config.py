from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from reply_chain_bot.app_config import EnabledBackends
from reply_chain_bot.conversation import ConversationState
from reply_chain_bot.provider import StatefulBackend, StatelessBackend


@dataclass
class BotConfig:
    transport: Any
    state: ConversationState = field(default_factory=ConversationState)
    stateless_backend: StatelessBackend | None = None
    stateful_backend: StatefulBackend | None = None
    model: str = "gpt-4o-mini"
    max_tokens: int = 4096
    temperature: float = 0.9
    allowed_chat_ids: frozenset[int] = frozenset()
    enabled_backends: EnabledBackends = field(default_factory=EnabledBackends)
    backend_attempts: int = 3
    retry_wait: Any = None
    typing_refresh_seconds: float = 4.0

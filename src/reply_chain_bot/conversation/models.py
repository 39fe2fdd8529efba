from __future__ import annotations

from dataclasses import dataclass
from typing import Any

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"


@dataclass(frozen=True)
class StatelessContext:
    """Marker for messages handled by a stateless completion backend."""

    def __repr__(self) -> str:
        return "NO_CONTEXT"


NO_CONTEXT = StatelessContext()


@dataclass(frozen=True)
class StatefulRef:
    """Ids a stateful backend needs to continue from this message."""

    parent_backend_message_id: str | None
    backend_conversation_id: str | None = None


BackendContext = StatelessContext | StatefulRef


@dataclass
class MessageRecord:
    id: int
    next_id: int | None = None
    content: str | None = None
    backend_context: BackendContext = NO_CONTEXT


class Session:
    __slots__ = ("_start_id", "end_id", "idle_ticks", "backend_handle")

    def __init__(self, start_id: int, end_id: int | None = None, *, backend_handle: Any = None):
        self._start_id = start_id
        self.end_id = start_id if end_id is None else end_id
        self.idle_ticks = 0
        self.backend_handle = backend_handle

    @property
    def start_id(self) -> int:
        return self._start_id

    def __repr__(self) -> str:
        return f"Session(start={self._start_id}, end={self.end_id}, idle={self.idle_ticks})"


@dataclass(frozen=True)
class AdvanceResult:
    extended: bool
    start_id: int


@dataclass(frozen=True)
class StatefulAdvanceResult:
    extended: bool
    start_id: int
    backend_handle: Any


@dataclass(frozen=True)
class ChatTurn:
    role: str
    content: str

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from reply_chain_bot.conversation.context_builder import ContextBuilder
from reply_chain_bot.conversation.message_store import MessageStore
from reply_chain_bot.conversation.models import (
    NO_CONTEXT,
    AdvanceResult,
    BackendContext,
    ChatTurn,
    StatefulRef,
)
from reply_chain_bot.conversation.session_index import SessionIndex


@dataclass(frozen=True)
class StatefulThread:
    extended: bool
    start_id: int
    backend_handle: Any
    parent_context: StatefulRef | None


class ConversationState:
    """Owns the message store, the session index and the lock guarding both.

    Created once at startup. Backend calls must never run while the lock is
    held: read what the request needs, release, call, then record the reply.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._store = MessageStore()
        self._index = SessionIndex()
        self._builder = ContextBuilder(self._store, self._index)

    @property
    def store(self) -> MessageStore:
        return self._store

    @property
    def index(self) -> SessionIndex:
        return self._index

    def record_message(
        self,
        message_id: int,
        content: str | None,
        reply_to_id: int | None = None,
        backend_context: BackendContext = NO_CONTEXT,
    ) -> AdvanceResult:
        with self._lock:
            self._store.append(message_id, content, backend_context)
            if reply_to_id is None:
                session = self._index.open(message_id)
                return AdvanceResult(extended=False, start_id=session.start_id)
            result = self._index.advance(reply_to_id, message_id)
            self._link_if_extended(result.extended, reply_to_id, message_id)
            return result

    def record_stateful_message(
        self,
        message_id: int,
        content: str | None,
        reply_to_id: int | None,
        backend_context: BackendContext,
        handle_factory: Callable[[], Any],
    ) -> StatefulThread:
        with self._lock:
            self._store.append(message_id, content, backend_context)
            if reply_to_id is None:
                session = self._index.open(message_id)
                if session.backend_handle is None:
                    session.backend_handle = handle_factory()
                return StatefulThread(False, session.start_id, session.backend_handle, None)

            result = self._index.advance_stateful(reply_to_id, message_id, handle_factory)
            self._link_if_extended(result.extended, reply_to_id, message_id)
            parent = self._store.get(reply_to_id)
            parent_context = None
            if parent is not None and isinstance(parent.backend_context, StatefulRef):
                parent_context = parent.backend_context
            return StatefulThread(result.extended, result.start_id, result.backend_handle, parent_context)

    def backend_context_of(self, message_id: int) -> BackendContext | None:
        with self._lock:
            record = self._store.get(message_id)
            return None if record is None else record.backend_context

    def build_context(self, message_id: int) -> list[ChatTurn]:
        with self._lock:
            return self._builder.build(message_id)

    def build_payload(self, message_id: int) -> list[dict[str, str]]:
        with self._lock:
            return self._builder.build_payload(message_id)

    def tick_and_evict(self, timeout: int) -> list[int]:
        with self._lock:
            self._index.tick()
            evicted = self._index.evict_expired(timeout)
            for start_id in evicted:
                removed = self._store.remove_chain(start_id)
                logger.info(f"Session {start_id} expired; removed {removed} message(s)")
            return evicted

    def snapshot(self) -> tuple[list[str], list[str]]:
        with self._lock:
            sessions = [f"{s.start_id} -> {s.end_id} \t {s.idle_ticks}" for s in self._index.sessions()]
            records = [f"{r.id} -> {r.next_id} \t: {r.content}" for r in self._store.records()]
            return sessions, records

    def _link_if_extended(self, extended: bool, parent_id: int, child_id: int) -> None:
        if extended:
            self._store.link(parent_id, child_id)
        else:
            # Only the session frontier may be continued; anything else roots a new thread.
            logger.debug(f"Message {child_id} replies to {parent_id} outside a live frontier; new thread")

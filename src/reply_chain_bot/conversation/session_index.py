from __future__ import annotations

from collections.abc import Callable
from typing import Any

from loguru import logger

from reply_chain_bot.conversation.models import AdvanceResult, Session, StatefulAdvanceResult
from reply_chain_bot.errors import SessionNotFoundError


class SessionIndex:
    """Live conversations, addressable by their anchor and by their frontier.

    ``_sessions`` keeps creation order (keyed by start id); ``_by_end`` is
    kept in step with every mutation so that at most one live session owns
    any given end id.
    """

    def __init__(self) -> None:
        self._sessions: dict[int, Session] = {}
        self._by_end: dict[int, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def lookup_end(self, end_id: int) -> Session | None:
        return self._by_end.get(end_id)

    def find_by_end(self, end_id: int) -> int:
        session = self._by_end.get(end_id)
        if session is None:
            raise SessionNotFoundError(end_id)
        return session.start_id

    def open(self, message_id: int, *, backend_handle: Any = None) -> Session:
        existing = self._sessions.get(message_id)
        if existing is not None:
            logger.warning(f"Session anchored at {message_id} already exists; keeping it")
            return existing
        session = Session(message_id, backend_handle=backend_handle)
        self._sessions[message_id] = session
        self._index_end(session)
        return session

    def advance(self, end_id: int, new_id: int) -> AdvanceResult:
        session = self._extend(end_id, new_id)
        if session is not None:
            return AdvanceResult(extended=True, start_id=session.start_id)
        session = self.open(new_id)
        return AdvanceResult(extended=False, start_id=session.start_id)

    def advance_stateful(
        self,
        end_id: int,
        new_id: int,
        handle_factory: Callable[[], Any],
    ) -> StatefulAdvanceResult:
        session = self._extend(end_id, new_id)
        if session is not None:
            if session.backend_handle is None:
                session.backend_handle = handle_factory()
            return StatefulAdvanceResult(True, session.start_id, session.backend_handle)
        session = self.open(new_id)
        if session.backend_handle is None:
            session.backend_handle = handle_factory()
        return StatefulAdvanceResult(False, session.start_id, session.backend_handle)

    def tick(self) -> None:
        for session in self._sessions.values():
            session.idle_ticks += 1

    def evict_expired(self, timeout: int) -> list[int]:
        expired = [s for s in self._sessions.values() if s.idle_ticks > timeout]
        for session in expired:
            del self._sessions[session.start_id]
            if self._by_end.get(session.end_id) is session:
                self._release_end(session.end_id)
        return [s.start_id for s in expired]

    def _extend(self, end_id: int, new_id: int) -> Session | None:
        session = self._by_end.get(end_id)
        if session is None:
            return None
        session.end_id = new_id
        self._release_end(end_id)
        session.idle_ticks = 0
        self._index_end(session)
        return session

    def _position(self, session: Session) -> int:
        return list(self._sessions).index(session.start_id)

    def _index_end(self, session: Session) -> None:
        holder = self._by_end.get(session.end_id)
        if holder is None or holder is session:
            self._by_end[session.end_id] = session
            return
        winner, loser = (session, holder) if self._position(session) < self._position(holder) else (holder, session)
        logger.warning(
            f"Sessions {winner.start_id} and {loser.start_id} both end at message {session.end_id}; "
            f"session {loser.start_id} will not be found by it"
        )
        self._by_end[session.end_id] = winner

    def _release_end(self, end_id: int) -> None:
        del self._by_end[end_id]
        # A session shadowed on this end id takes the slot over.
        for other in self._sessions.values():
            if other.end_id == end_id:
                self._by_end[end_id] = other
                break

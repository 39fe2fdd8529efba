from __future__ import annotations

from loguru import logger

from reply_chain_bot.conversation.message_store import MessageStore
from reply_chain_bot.conversation.models import ASSISTANT_ROLE, USER_ROLE, ChatTurn
from reply_chain_bot.conversation.session_index import SessionIndex


class ContextBuilder:
    def __init__(self, store: MessageStore, index: SessionIndex):
        self._store = store
        self._index = index

    def build(self, message_id: int) -> list[ChatTurn]:
        """Rebuild the transcript of the chain that ends at ``message_id``.

        Roles alternate by position starting with the user, regardless of
        who actually sent each message. An unknown session degrades to a
        single-turn context.
        """
        session = self._index.lookup_end(message_id)
        if session is None:
            logger.warning(f"No session ends at message {message_id}; using single-turn context")
            start_id = message_id
        else:
            start_id = session.start_id

        turns: list[ChatTurn] = []
        seen: set[int] = set()
        current: int | None = start_id
        while current is not None:
            if current in seen:
                logger.warning(f"Cycle at message {current} in chain {start_id}")
                break
            seen.add(current)
            record = self._store.get(current)
            if record is None:
                logger.warning(f"Chain {start_id} is broken at message {current}")
                break
            role = USER_ROLE if len(turns) % 2 == 0 else ASSISTANT_ROLE
            turns.append(ChatTurn(role=role, content=record.content or ""))
            current = record.next_id
        return turns

    def build_payload(self, message_id: int) -> list[dict[str, str]]:
        return [turn.as_dict() for turn in self.build(message_id)]

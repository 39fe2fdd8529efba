from __future__ import annotations

from collections.abc import Iterator

from loguru import logger

from reply_chain_bot.conversation.models import NO_CONTEXT, BackendContext, MessageRecord
from reply_chain_bot.errors import DuplicateMessageError


class MessageStore:
    """Message records keyed by transport id, chained through ``next_id``.

    Knows nothing about sessions. Not thread-safe on its own; callers go
    through ``ConversationState``.
    """

    def __init__(self) -> None:
        self._records: dict[int, MessageRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._records

    def get(self, message_id: int) -> MessageRecord | None:
        return self._records.get(message_id)

    def records(self) -> Iterator[MessageRecord]:
        return iter(list(self._records.values()))

    def append(
        self,
        message_id: int,
        content: str | None = None,
        backend_context: BackendContext = NO_CONTEXT,
    ) -> MessageRecord:
        if message_id in self._records:
            raise DuplicateMessageError(message_id)
        record = MessageRecord(id=message_id, content=content, backend_context=backend_context)
        self._records[message_id] = record
        return record

    def link(self, parent_id: int, child_id: int) -> bool:
        """Point ``parent_id`` at ``child_id``.

        Returns False when the parent is unknown (the child starts a new
        thread) or already continues with a different child.
        """
        parent = self._records.get(parent_id)
        if parent is None:
            return False
        if parent.next_id is not None and parent.next_id != child_id:
            logger.warning(
                f"Message {parent_id} already continues with {parent.next_id}; "
                f"not relinking to {child_id}"
            )
            return False
        parent.next_id = child_id
        return True

    def remove(self, message_id: int) -> int | None:
        record = self._records.pop(message_id, None)
        if record is None:
            return None
        return record.next_id

    def remove_chain(self, start_id: int) -> int:
        # Removed records drop out of the map, so a cycle terminates too.
        removed = 0
        current: int | None = start_id
        while current is not None and current in self._records:
            current = self.remove(current)
            removed += 1
        return removed

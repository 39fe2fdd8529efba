from reply_chain_bot.conversation.context_builder import ContextBuilder
from reply_chain_bot.conversation.lifecycle import LifecycleManager
from reply_chain_bot.conversation.message_store import MessageStore
from reply_chain_bot.conversation.models import (
    NO_CONTEXT,
    AdvanceResult,
    ChatTurn,
    MessageRecord,
    Session,
    StatefulAdvanceResult,
    StatefulRef,
)
from reply_chain_bot.conversation.session_index import SessionIndex
from reply_chain_bot.conversation.state import ConversationState, StatefulThread

__all__ = [
    "NO_CONTEXT",
    "AdvanceResult",
    "ChatTurn",
    "ContextBuilder",
    "ConversationState",
    "LifecycleManager",
    "MessageRecord",
    "MessageStore",
    "Session",
    "SessionIndex",
    "StatefulAdvanceResult",
    "StatefulRef",
    "StatefulThread",
]

import asyncio
import unittest

from loguru import logger
from tenacity import wait_none

from reply_chain_bot.app_config import EnabledBackends
from reply_chain_bot.bot import ChatBot
from reply_chain_bot.bot_config import BotConfig
from reply_chain_bot.conversation import ConversationState, StatefulRef
from reply_chain_bot.errors import DeliveryError, TelegramApiError
from reply_chain_bot.provider import StatefulReply
from reply_chain_bot.transport.telegram import InboundMessage

CHAT = -100


class _FakeTransport:
    def __init__(self, *, first_id: int = 1000, fail_markdown: bool = False, fail_plain: bool = False):
        self.sent: list[dict] = []
        self.actions: list[int] = []
        self._next_id = first_id
        self._fail_markdown = fail_markdown
        self._fail_plain = fail_plain

    async def send_message(self, chat_id, text, *, reply_to_message_id=None, parse_mode=None, message_thread_id=None):
        if parse_mode == "MarkdownV2" and self._fail_markdown:
            raise TelegramApiError("sendMessage", 400, "can't parse entities")
        if parse_mode is None and self._fail_plain:
            raise TelegramApiError("sendMessage", 400, "message is too long")
        self._next_id += 1
        self.sent.append(
            {"id": self._next_id, "chat_id": chat_id, "text": text, "reply_to": reply_to_message_id, "parse_mode": parse_mode}
        )
        return self._next_id

    async def send_chat_action(self, chat_id, action="typing", *, message_thread_id=None):
        self.actions.append(chat_id)


class _BrokenTypingTransport(_FakeTransport):
    async def send_chat_action(self, chat_id, action="typing", *, message_thread_id=None):
        raise RuntimeError("unexpected chat action failure")


class _FakeStateless:
    def __init__(self, answers: list[str] | None = None, failures: int = 0):
        self.calls: list[list[dict]] = []
        self._answers = answers or ["answer"]
        self._failures = failures

    async def create_message(self, model, max_tokens, temperature, messages):
        self.calls.append(messages)
        if len(self.calls) <= self._failures:
            raise ConnectionError("backend down")
        return self._answers[(len(self.calls) - 1) % len(self._answers)]


class _SlowStateless(_FakeStateless):
    async def create_message(self, model, max_tokens, temperature, messages):
        await asyncio.sleep(0.05)
        return await super().create_message(model, max_tokens, temperature, messages)


class _FakeConversation:
    def __init__(self, owner: "_FakeStateful"):
        self._owner = owner

    async def send(self, text, *, parent_message_id=None, conversation_id=None):
        self._owner.calls.append({"text": text, "parent": parent_message_id, "conversation": conversation_id})
        if self._owner.fail:
            raise TimeoutError("slow backend")
        n = len(self._owner.calls)
        return StatefulReply(text=f"stateful {n}", message_id=f"m{n}", conversation_id=conversation_id or "c1")


class _FakeStateful:
    def __init__(self, fail: bool = False):
        self.calls: list[dict] = []
        self.opened = 0
        self.fail = fail

    def open_conversation(self) -> _FakeConversation:
        self.opened += 1
        return _FakeConversation(self)


def _make_bot(transport=None, stateless=None, stateful=None, enabled=None) -> tuple[ChatBot, ConversationState]:
    state = ConversationState()
    bot = ChatBot(
        BotConfig(
            transport=transport or _FakeTransport(),
            state=state,
            stateless_backend=stateless,
            stateful_backend=stateful,
            allowed_chat_ids=frozenset({CHAT}),
            enabled_backends=enabled or EnabledBackends(),
            retry_wait=wait_none(),
            typing_refresh_seconds=0.01,
        )
    )
    return bot, state


def _msg(message_id: int, text: str, reply_to: int | None = None, chat_id: int = CHAT) -> InboundMessage:
    return InboundMessage(id=message_id, chat_id=chat_id, text=text, reply_to_id=reply_to)


class StatelessTurnTests(unittest.TestCase):
    def test_thread_replays_full_transcript(self) -> None:
        transport = _FakeTransport()
        backend = _FakeStateless(["Hi there", "Doing well"])
        bot, state = _make_bot(transport, stateless=backend)

        async def scenario() -> None:
            await bot.handle(_msg(101, "/chat Hello"))
            reply_id = transport.sent[-1]["id"]
            await bot.handle(_msg(103, "How are you?", reply_to=reply_id))

        asyncio.run(scenario())

        self.assertEqual([{"role": "user", "content": "Hello"}], backend.calls[0])
        self.assertEqual(
            [
                {"role": "user", "content": "Hello"},
                {"role": "assistant", "content": "Hi there"},
                {"role": "user", "content": "How are you?"},
            ],
            backend.calls[1],
        )
        last_reply = transport.sent[-1]
        self.assertEqual(103, last_reply["reply_to"])
        self.assertEqual(101, state.index.find_by_end(last_reply["id"]))
        self.assertEqual(4, len(state.store))

    def test_backend_failure_still_closes_the_turn(self) -> None:
        transport = _FakeTransport()
        backend = _FakeStateless(failures=10)
        bot, state = _make_bot(transport, stateless=backend)

        asyncio.run(bot.handle(_msg(1, "/chat Hello")))

        self.assertEqual(3, len(backend.calls))
        self.assertEqual(1, len(transport.sent))
        self.assertIn("failed after 3 attempt(s)", transport.sent[0]["text"])
        self.assertEqual(1, state.index.find_by_end(transport.sent[0]["id"]))

    def test_markdown_failure_falls_back_to_plain_text(self) -> None:
        transport = _FakeTransport(fail_markdown=True)
        bot, state = _make_bot(transport, stateless=_FakeStateless(["a_b"]))

        asyncio.run(bot.handle(_msg(1, "/chat Hello")))

        self.assertEqual(1, len(transport.sent))
        self.assertIsNone(transport.sent[0]["parse_mode"])
        self.assertIn(transport.sent[0]["id"], state.store)

    def test_delivery_failure_is_raised(self) -> None:
        transport = _FakeTransport(fail_markdown=True, fail_plain=True)
        bot, state = _make_bot(transport, stateless=_FakeStateless())

        with self.assertRaises(DeliveryError):
            asyncio.run(bot.handle(_msg(1, "/chat Hello")))
        self.assertEqual(1, len(state.store))

    def test_empty_answer_is_replaced(self) -> None:
        transport = _FakeTransport()
        bot, _ = _make_bot(transport, stateless=_FakeStateless([""]))
        asyncio.run(bot.handle(_msg(1, "/chat Hello")))
        self.assertEqual("(empty response)", transport.sent[0]["text"])

    def test_typing_failure_does_not_hide_answer(self) -> None:
        transport = _BrokenTypingTransport()
        bot, _ = _make_bot(transport, stateless=_SlowStateless(["still here"]))
        asyncio.run(bot.handle(_msg(1, "/chat Hello")))
        self.assertEqual("still here", transport.sent[0]["text"])

    def test_turn_logs_carry_chat_and_session(self) -> None:
        transport = _FakeTransport()
        bot, _ = _make_bot(transport, stateless=_FakeStateless())
        extras: list[dict] = []
        sink_id = logger.add(lambda m: extras.append(dict(m.record["extra"])), level="DEBUG")
        try:
            asyncio.run(bot.handle(_msg(7, "/chat Hello")))
        finally:
            logger.remove(sink_id)
        self.assertIn({"chat_id": CHAT, "session": 7}, extras)


class RoutingTests(unittest.TestCase):
    def test_reply_to_stateful_message_routes_to_stateful_backend(self) -> None:
        transport = _FakeTransport()
        stateless = _FakeStateless()
        stateful = _FakeStateful()
        bot, state = _make_bot(transport, stateless=stateless, stateful=stateful)
        state.record_message(300, "question")
        state.record_message(301, "earlier answer", reply_to_id=300, backend_context=StatefulRef("m1", "c1"))

        asyncio.run(bot.handle(_msg(302, "tell me more", reply_to=301)))

        self.assertEqual([], stateless.calls)
        self.assertEqual([{"text": "tell me more", "parent": "m1", "conversation": "c1"}], stateful.calls)
        reply = transport.sent[-1]
        self.assertEqual(StatefulRef("m1", "c1"), state.backend_context_of(reply["id"]))
        self.assertEqual(300, state.index.find_by_end(reply["id"]))

    def test_stateful_thread_carries_returned_ids_forward(self) -> None:
        transport = _FakeTransport()
        stateful = _FakeStateful()
        bot, state = _make_bot(transport, stateful=stateful)

        async def scenario() -> None:
            await bot.handle(_msg(1, "/stateful Hello"))
            await bot.handle(_msg(3, "again", reply_to=transport.sent[-1]["id"]))

        asyncio.run(scenario())

        self.assertEqual({"text": "Hello", "parent": None, "conversation": None}, stateful.calls[0])
        self.assertEqual({"text": "again", "parent": "m1", "conversation": "c1"}, stateful.calls[1])
        self.assertEqual(1, stateful.opened)
        self.assertEqual(StatefulRef("m2", "c1"), state.backend_context_of(transport.sent[-1]["id"]))

    def test_stateful_failure_keeps_parent_reference(self) -> None:
        transport = _FakeTransport()
        bot, state = _make_bot(transport, stateful=_FakeStateful(fail=True))
        state.record_message(300, "question")
        state.record_message(301, "answer", reply_to_id=300, backend_context=StatefulRef("m1", "c1"))

        asyncio.run(bot.handle(_msg(302, "more", reply_to=301)))

        notice = transport.sent[-1]
        self.assertIn("stateful backend failed", notice["text"])
        self.assertEqual(StatefulRef("m1", "c1"), state.backend_context_of(notice["id"]))

    def test_reply_to_plain_message_routes_to_stateless_backend(self) -> None:
        stateless = _FakeStateless()
        stateful = _FakeStateful()
        bot, state = _make_bot(stateless=stateless, stateful=stateful)
        state.record_message(10, "hello")

        asyncio.run(bot.handle(_msg(11, "follow", reply_to=10)))

        self.assertEqual(1, len(stateless.calls))
        self.assertEqual([], stateful.calls)

    def test_unrelated_messages_are_ignored(self) -> None:
        transport = _FakeTransport()
        stateless = _FakeStateless()
        bot, state = _make_bot(transport, stateless=stateless)

        async def scenario() -> None:
            await bot.handle(_msg(1, "just chatting"))
            await bot.handle(_msg(2, "reply to a stranger", reply_to=999))
            await bot.handle(_msg(3, "/chat from elsewhere", chat_id=12345))

        asyncio.run(scenario())

        self.assertEqual([], stateless.calls)
        self.assertEqual([], transport.sent)
        self.assertEqual(0, len(state.store))

    def test_disabled_backend_ignores_command(self) -> None:
        transport = _FakeTransport()
        stateful = _FakeStateful()
        bot, state = _make_bot(transport, stateful=stateful, enabled=EnabledBackends(stateless=True, stateful=False))

        asyncio.run(bot.handle(_msg(1, "/stateful Hello")))

        self.assertEqual([], stateful.calls)
        self.assertEqual(0, len(state.store))

    def test_help_is_sent_without_recording(self) -> None:
        transport = _FakeTransport()
        bot, state = _make_bot(transport, stateless=_FakeStateless())

        asyncio.run(bot.handle(_msg(1, "/help")))

        self.assertEqual(1, len(transport.sent))
        self.assertIn("/chat", transport.sent[0]["text"])
        self.assertEqual(0, len(state.store))


if __name__ == "__main__":
    unittest.main()

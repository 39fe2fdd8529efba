from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
from loguru import logger

from reply_chain_bot.bot_config import BotConfig
from reply_chain_bot.commands.router import CommandRouter
from reply_chain_bot.conversation.models import NO_CONTEXT, StatefulRef
from reply_chain_bot.errors import BackendError, DeliveryError, TelegramApiError
from reply_chain_bot.providers.common import RetryOutcome, call_with_retry
from reply_chain_bot.transport.telegram import InboundMessage

T = TypeVar("T")

_TRANSPORT_ERRORS = (TelegramApiError, httpx.HTTPError)


class ChatBot:
    _EMPTY_ANSWER = "(empty response)"
    _HELP_TEXT = (
        "/chat <text> - start a conversation that replays the whole thread on every turn\n"
        "/stateful <text> - start a conversation whose history is kept by the backend\n"
        "Reply to any of my answers to continue that conversation."
    )

    def __init__(self, config: BotConfig):
        self._transport = config.transport
        self._state = config.state
        self._stateless = config.stateless_backend
        self._stateful = config.stateful_backend
        self._model = config.model
        self._max_tokens = config.max_tokens
        self._temperature = config.temperature
        self._allowed_chat_ids = config.allowed_chat_ids
        self._enabled = config.enabled_backends
        self._attempts = config.backend_attempts
        self._retry_wait = config.retry_wait
        self._typing_refresh_seconds = config.typing_refresh_seconds

        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_stateless=self.stateless_turn,
            on_stateful=self.stateful_turn,
            on_unknown=self._on_unknown_command,
        )

    @property
    def stateless_enabled(self) -> bool:
        return self._enabled.stateless and self._stateless is not None

    @property
    def stateful_enabled(self) -> bool:
        return self._enabled.stateful and self._stateful is not None

    def is_allowed(self, chat_id: int) -> bool:
        return chat_id in self._allowed_chat_ids

    async def handle(self, message: InboundMessage) -> None:
        log = logger.bind(chat_id=message.chat_id)
        if not self.is_allowed(message.chat_id):
            log.info(f"Discarding message {message.id}")
            return

        if await self._command_router.try_handle(message):
            return

        if message.reply_to_id is None:
            return

        context = self._state.backend_context_of(message.reply_to_id)
        if context is None:
            log.debug(f"Message {message.id} replies to unknown message {message.reply_to_id}; ignored")
            return

        if isinstance(context, StatefulRef):
            await self.stateful_turn(message, message.text or "")
        else:
            await self.stateless_turn(message, message.text or "")

    async def stateless_turn(self, message: InboundMessage, text: str) -> None:
        if not self.stateless_enabled:
            logger.bind(chat_id=message.chat_id).info(f"Stateless backend disabled; ignoring message {message.id}")
            return

        advanced = self._state.record_message(message.id, text, message.reply_to_id)
        log = logger.bind(chat_id=message.chat_id, session=advanced.start_id)
        transcript = self._state.build_payload(message.id)
        log.debug(f"Stateless turn for message {message.id}: {len(transcript)} message(s) of context")

        outcome = await self._call_backend(
            message,
            lambda: self._stateless.create_message(self._model, self._max_tokens, self._temperature, transcript),
        )
        if outcome.ok:
            answer = outcome.value or self._EMPTY_ANSWER
        else:
            answer = self._failure_notice("stateless", outcome, log)

        reply_id = await self._deliver(message, answer)
        self._state.record_message(reply_id, answer, message.id)

    async def stateful_turn(self, message: InboundMessage, text: str) -> None:
        if not self.stateful_enabled:
            logger.bind(chat_id=message.chat_id).info(f"Stateful backend disabled; ignoring message {message.id}")
            return

        thread = self._state.record_stateful_message(
            message.id,
            text,
            message.reply_to_id,
            NO_CONTEXT,
            self._stateful.open_conversation,
        )
        parent = thread.parent_context
        parent_message_id = parent.parent_backend_message_id if parent else None
        conversation_id = parent.backend_conversation_id if parent else None
        log = logger.bind(chat_id=message.chat_id, session=thread.start_id)
        log.debug(
            f"Stateful turn for message {message.id}: "
            f"parent={parent_message_id}, conversation={conversation_id}"
        )

        outcome = await self._call_backend(
            message,
            lambda: thread.backend_handle.send(
                text,
                parent_message_id=parent_message_id,
                conversation_id=conversation_id,
            ),
        )
        if outcome.ok:
            answer = outcome.value.text or self._EMPTY_ANSWER
            reply_context = StatefulRef(outcome.value.message_id, outcome.value.conversation_id)
        else:
            answer = self._failure_notice("stateful", outcome, log)
            # Replying to the notice retries from the same point of the conversation.
            reply_context = parent or StatefulRef(None, None)

        reply_id = await self._deliver(message, answer)
        self._state.record_stateful_message(
            reply_id,
            answer,
            message.id,
            reply_context,
            self._stateful.open_conversation,
        )

    async def _call_backend(
        self,
        message: InboundMessage,
        fn: Callable[[], Awaitable[T]],
    ) -> RetryOutcome[T]:
        typing_task = asyncio.create_task(self._keep_typing(message))
        try:
            return await call_with_retry(fn, attempts=self._attempts, wait=self._retry_wait)
        finally:
            typing_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await typing_task

    async def _keep_typing(self, message: InboundMessage) -> None:
        while True:
            try:
                await self._transport.send_chat_action(
                    message.chat_id, "typing", message_thread_id=message.thread_id
                )
            except Exception as ex:
                logger.debug(f"sendChatAction failed: {ex}")
            await asyncio.sleep(self._typing_refresh_seconds)

    def _failure_notice(self, backend: str, outcome: RetryOutcome, log: Any) -> str:
        error = BackendError(backend, outcome.attempts, outcome.error)
        log.error(str(error))
        return f"Sorry, the {backend} backend failed after {outcome.attempts} attempt(s). Reply to try again."

    async def _deliver(self, message: InboundMessage, text: str) -> int:
        """Send ``text`` as a reply to ``message``; returns the transport-assigned id."""
        try:
            return await self._transport.send_message(
                message.chat_id,
                text,
                reply_to_message_id=message.id,
                parse_mode="MarkdownV2",
                message_thread_id=message.thread_id,
            )
        except _TRANSPORT_ERRORS as ex:
            logger.warning(f"MarkdownV2 delivery failed, retrying as plain text: {ex}")

        try:
            return await self._transport.send_message(
                message.chat_id,
                text,
                reply_to_message_id=message.id,
                message_thread_id=message.thread_id,
            )
        except _TRANSPORT_ERRORS as ex:
            raise DeliveryError(f"Could not deliver reply to message {message.id}: {ex}") from ex

    async def _on_help(self, message: InboundMessage) -> None:
        try:
            await self._transport.send_message(
                message.chat_id,
                self._HELP_TEXT,
                reply_to_message_id=message.id,
                message_thread_id=message.thread_id,
            )
        except _TRANSPORT_ERRORS as ex:
            logger.warning(f"Could not send help: {ex}")

    async def _on_unknown_command(self, message: InboundMessage, command: str) -> None:
        logger.debug(f"Ignoring command {command.split()[0]!r} in chat {message.chat_id}")

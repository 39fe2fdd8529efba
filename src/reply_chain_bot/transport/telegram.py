from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from reply_chain_bot.errors import TelegramApiError

DEFAULT_API_URL = "https://api.telegram.org"
_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class InboundMessage:
    id: int
    chat_id: int
    text: str | None
    reply_to_id: int | None = None
    thread_id: int | None = None


def parse_update(update: dict[str, Any]) -> InboundMessage | None:
    message = update.get("message")
    if not isinstance(message, dict):
        return None
    chat = message.get("chat") or {}
    if "message_id" not in message or "id" not in chat:
        return None
    reply = message.get("reply_to_message")
    return InboundMessage(
        id=int(message["message_id"]),
        chat_id=int(chat["id"]),
        text=message.get("text"),
        reply_to_id=int(reply["message_id"]) if isinstance(reply, dict) and "message_id" in reply else None,
        thread_id=message.get("message_thread_id"),
    )


class TelegramTransport:
    """Minimal Telegram Bot API client: long polling, send, chat actions."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        poll_timeout: int = 10,
    ) -> None:
        self._base = f"{(base_url or DEFAULT_API_URL).rstrip('/')}/bot{token}"
        self._client = client or httpx.AsyncClient(timeout=_TIMEOUT_SECONDS + poll_timeout)
        self._poll_timeout = poll_timeout
        self._offset: int | None = None
        self._stopped = asyncio.Event()

    async def close(self) -> None:
        self._stopped.set()
        await self._client.aclose()

    def stop(self) -> None:
        self._stopped.set()

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        body = {k: v for k, v in payload.items() if v is not None}
        response = await self._client.post(f"{self._base}/{method}", json=body)
        try:
            data = response.json()
        except ValueError:
            raise TelegramApiError(method, response.status_code, response.text[:200]) from None
        if not isinstance(data, dict):
            raise TelegramApiError(method, response.status_code, f"unexpected response body: {response.text[:200]}")

        if response.status_code >= 400 or not data.get("ok", False):
            raise TelegramApiError(method, data.get("error_code", response.status_code), data.get("description", ""))
        return data.get("result")

    async def get_updates(self, offset: int | None = None) -> list[dict[str, Any]]:
        result = await self._call(
            "getUpdates",
            {"offset": offset, "timeout": self._poll_timeout, "allowed_updates": ["message"]},
        )
        return list(result or [])

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to_message_id: int | None = None,
        parse_mode: str | None = None,
        message_thread_id: int | None = None,
    ) -> int:
        result = await self._call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": text,
                "reply_to_message_id": reply_to_message_id,
                "parse_mode": parse_mode,
                "message_thread_id": message_thread_id,
            },
        )
        return int(result["message_id"])

    async def send_chat_action(
        self,
        chat_id: int,
        action: str = "typing",
        *,
        message_thread_id: int | None = None,
    ) -> None:
        await self._call(
            "sendChatAction",
            {"chat_id": chat_id, "action": action, "message_thread_id": message_thread_id},
        )

    async def poll(
        self,
        handler: Callable[[InboundMessage], Awaitable[None]],
        *,
        interval_seconds: float = 2.0,
    ) -> None:
        """Long-poll for updates until ``stop()``; each message is handled as its own task."""
        pending: set[asyncio.Task] = set()
        while not self._stopped.is_set():
            try:
                updates = await self.get_updates(self._offset)
            except (httpx.HTTPError, TelegramApiError) as ex:
                logger.warning(f"getUpdates failed: {ex}")
                await asyncio.sleep(interval_seconds)
                continue

            for update in updates:
                self._offset = int(update["update_id"]) + 1
                inbound = parse_update(update)
                if inbound is None:
                    continue
                task = asyncio.create_task(self._dispatch(handler, inbound))
                pending.add(task)
                task.add_done_callback(pending.discard)

            if not updates:
                await asyncio.sleep(interval_seconds)

        for task in list(pending):
            task.cancel()

    async def _dispatch(self, handler: Callable[[InboundMessage], Awaitable[None]], inbound: InboundMessage) -> None:
        try:
            await handler(inbound)
        except Exception as ex:
            logger.error(f"Unhandled error for message {inbound.id} in chat {inbound.chat_id}: {ex}")

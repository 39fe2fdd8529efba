from __future__ import annotations

import re
from collections.abc import Awaitable, Callable

from reply_chain_bot.transport.telegram import InboundMessage

# "/cmd text", "/cmd@BotName text"; the text may span lines.
_COMMAND_RE = re.compile(r"^/(?P<name>[A-Za-z_]+)(?:@\S+)?(?:\s+(?P<text>[\s\S]*))?$")

TurnHandler = Callable[[InboundMessage, str], Awaitable[None]]


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[InboundMessage], Awaitable[None]],
        on_stateless: TurnHandler,
        on_stateful: TurnHandler,
        on_unknown: Callable[[InboundMessage, str], Awaitable[None]],
    ) -> None:
        self._on_help = on_help
        self._on_stateless = on_stateless
        self._on_stateful = on_stateful
        self._on_unknown = on_unknown

    async def try_handle(self, message: InboundMessage) -> bool:
        trimmed = (message.text or "").strip()
        if not trimmed.startswith("/"):
            return False

        match = _COMMAND_RE.match(trimmed)
        if match is None:
            await self._on_unknown(message, trimmed)
            return True

        name = match.group("name").lower()
        body = (match.group("text") or "").strip()

        if name in ("help", "start"):
            await self._on_help(message)
            return True
        if name == "chat" and body:
            await self._on_stateless(message, body)
            return True
        if name == "stateful" and body:
            await self._on_stateful(message, body)
            return True

        await self._on_unknown(message, trimmed)
        return True

from __future__ import annotations

import asyncio

from loguru import logger

from reply_chain_bot.conversation.state import ConversationState


class LifecycleManager:
    def __init__(
        self,
        state: ConversationState,
        *,
        timeout_ticks: int,
        interval_seconds: float = 1.0,
        debug_dump_ticks: int = 30,
    ):
        self._state = state
        self._timeout_ticks = timeout_ticks
        self._interval_seconds = max(0.01, interval_seconds)
        self._debug_dump_ticks = debug_dump_ticks
        self._ticks_since_dump = 0
        self._task: asyncio.Task | None = None

    @property
    def timeout_ticks(self) -> int:
        return self._timeout_ticks

    @property
    def is_running(self) -> bool:
        return self._task is not None

    def run_once(self) -> list[int]:
        evicted = self._state.tick_and_evict(self._timeout_ticks)
        self._maybe_dump()
        return evicted

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                self.run_once()
            except Exception as ex:
                logger.error(f"Lifecycle tick failed: {ex}")

    def _maybe_dump(self) -> None:
        if self._debug_dump_ticks <= 0:
            return
        self._ticks_since_dump += 1
        if self._ticks_since_dump < self._debug_dump_ticks:
            return
        self._ticks_since_dump = 0
        sessions, records = self._state.snapshot()
        if not sessions and not records:
            return
        logger.debug("sessions:\n" + "\n".join(sessions))
        logger.debug("messages:\n" + "\n".join(records))

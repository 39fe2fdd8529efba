from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from reply_chain_bot.app_config import AppConfig, RuntimeEnv
from reply_chain_bot.bot import ChatBot
from reply_chain_bot.bot_config import BotConfig
from reply_chain_bot.conversation import ConversationState, LifecycleManager
from reply_chain_bot.logging_config import setup_logging
from reply_chain_bot.provider import (
    StatefulBackend,
    StatelessBackend,
    create_provider,
    create_stateful_provider,
)
from reply_chain_bot.transport.telegram import TelegramTransport


@dataclass
class AppRuntime:
    bot: ChatBot
    transport: TelegramTransport
    lifecycle: LifecycleManager
    state: ConversationState
    log_descriptions: list[str]


def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    stateless: StatelessBackend | None = None
    if app.enabled_backends.stateless:
        api_key = env.stateless_api_key(app.provider_name)
        if api_key:
            stateless = create_provider(app.provider_name, api_key)
        else:
            logger.warning(f"No API key for provider {app.provider_name!r}; stateless backend disabled")

    stateful: StatefulBackend | None = None
    if app.enabled_backends.stateful:
        if env.openai_api_key:
            stateful = create_stateful_provider(env.openai_api_key, app.stateful_model)
        else:
            logger.warning("OPENAI_API_KEY is not set; stateful backend disabled")

    state = ConversationState()
    transport = TelegramTransport(env.telegram_token, base_url=app.telegram_api_url)
    lifecycle = LifecycleManager(
        state,
        timeout_ticks=app.session_timeout_ticks,
        interval_seconds=app.tick_interval_seconds,
        debug_dump_ticks=app.debug_dump_ticks,
    )

    bot = ChatBot(
        BotConfig(
            transport=transport,
            state=state,
            stateless_backend=stateless,
            stateful_backend=stateful,
            model=app.model,
            max_tokens=app.max_tokens,
            temperature=app.temperature,
            allowed_chat_ids=app.allowed_chat_ids,
            enabled_backends=app.enabled_backends,
            backend_attempts=app.backend_attempts,
        )
    )

    return AppRuntime(
        bot=bot,
        transport=transport,
        lifecycle=lifecycle,
        state=state,
        log_descriptions=log_descriptions,
    )

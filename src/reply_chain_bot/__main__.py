import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from reply_chain_bot.app_config import load_json_config, parse_app_config, resolve_runtime_env
from reply_chain_bot.bootstrap import bootstrap_runtime


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env()
    runtime = bootstrap_runtime(app, env)

    if not env.telegram_token:
        logger.error("TELEGRAM_BOT_TOKEN environment variable is required.")
        await runtime.transport.close()
        sys.exit(1)
    if not app.allowed_chat_ids:
        logger.warning("AllowedChatIds is empty; every message will be discarded")

    logger.info(
        f"Starting reply-chain-bot (model={app.model}, stateless={runtime.bot.stateless_enabled}, "
        f"stateful={runtime.bot.stateful_enabled}, session timeout={app.session_timeout_ticks} ticks)"
    )
    if runtime.log_descriptions:
        logger.info(f"Logging: {', '.join(runtime.log_descriptions)}")

    await runtime.lifecycle.start()
    try:
        await runtime.transport.poll(runtime.bot.handle)
    finally:
        await runtime.lifecycle.close()
        await runtime.transport.close()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

# Records logged outside a chat turn carry these placeholders.
_UNBOUND = {"chat_id": "-", "session": "-"}

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> <level>{level:<8}</level> "
    "<magenta>chat={extra[chat_id]} session={extra[session]}</magenta> "
    "| <level>{message}</level>\n{exception}"
)
_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | chat={extra[chat_id]} session={extra[session]} "
    "| {name}:{line} - {message}\n{exception}"
)


@dataclass
class ConsoleSink:
    level: str | None = None

    def attach(self, default_level: str) -> str:
        level = self.level or default_level
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT)
        return f"console (stderr, {level})"


@dataclass
class FileSink:
    path: str = "bot.log"
    rotation: str = "10 MB"
    retention: int = 3
    level: str | None = None

    def attach(self, default_level: str) -> str:
        level = self.level or default_level
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self.path,
            level=level,
            format=_FILE_FORMAT,
            rotation=self.rotation,
            retention=self.retention,
            enqueue=True,
        )
        return f"file ({self.path}, {level})"


_SINKS: dict[str, type] = {"console": ConsoleSink, "file": FileSink}


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Point loguru at the sinks listed under ``LogConsumers``.

    Every record shows the chat and session it belongs to; ``ChatBot`` binds
    them with ``logger.bind``. A missing list means console only.
    """
    logger.remove()
    logger.configure(extra=dict(_UNBOUND))

    if consumers is None:
        consumers = [{"type": "console"}]

    attached: list[str] = []
    for entry in consumers:
        options = dict(entry)
        kind = options.pop("type", "")
        sink_cls = _SINKS.get(kind)
        if sink_cls is None:
            logger.warning(f"Unknown log consumer type: {kind!r}")
            continue
        attached.append(sink_cls(**options).attach(level))
    return attached

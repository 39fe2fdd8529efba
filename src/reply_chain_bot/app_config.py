from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_SESSION_TIMEOUT_TICKS = 600


@dataclass(frozen=True)
class EnabledBackends:
    stateless: bool = True
    stateful: bool = True


@dataclass
class RuntimeEnv:
    telegram_token: str
    openai_api_key: str
    anthropic_api_key: str

    def stateless_api_key(self, provider_name: str) -> str:
        if provider_name == "anthropic":
            return self.anthropic_api_key
        return self.openai_api_key


@dataclass
class AppConfig:
    allowed_chat_ids: frozenset[int]
    telegram_api_url: str | None
    provider_name: str
    model: str
    stateful_model: str
    temperature: float
    max_tokens: int
    enabled_backends: EnabledBackends
    session_timeout_ticks: int
    tick_interval_seconds: float
    backend_attempts: int
    debug_dump_ticks: int
    log_level: str
    log_consumers: list | None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _session_timeout(config: dict) -> int:
    # The default applies only when the key is missing; 0 is a valid timeout.
    raw = config.get("SessionTimeoutTicks")
    if raw is None:
        return DEFAULT_SESSION_TIMEOUT_TICKS
    return max(0, int(raw))


def parse_app_config(config: dict) -> AppConfig:
    model = config.get("Model", "gpt-4o-mini")
    return AppConfig(
        allowed_chat_ids=frozenset(int(c) for c in config.get("AllowedChatIds", [])),
        telegram_api_url=config.get("TelegramApiUrl"),
        provider_name=str(config.get("Provider", "openai")).strip().lower(),
        model=model,
        stateful_model=config.get("StatefulModel", model),
        temperature=float(config.get("Temperature", 0.9)),
        max_tokens=int(config.get("MaxTokens", 4096)),
        enabled_backends=EnabledBackends(
            stateless=not _to_bool(config.get("DisableStateless", False)),
            stateful=not _to_bool(config.get("DisableStateful", False)),
        ),
        session_timeout_ticks=_session_timeout(config),
        tick_interval_seconds=float(config.get("TickIntervalSeconds", 1.0)),
        backend_attempts=max(1, int(config.get("BackendAttempts", 3))),
        debug_dump_ticks=int(config.get("DebugDumpTicks", 30)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        telegram_token=os.environ.get("TELEGRAM_BOT_TOKEN", ""),
        openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
        anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
    )

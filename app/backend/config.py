from __future__ import annotations

import logging
import os
from typing import List, Literal

from app.backend import constants
from app.backend.errors import ConfigurationError


ProviderMode = Literal["auto", "openai", "local"]

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int, minimum: int = 1) -> int:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = int(raw)
	except ValueError:
		logger.warning("Ignoring non-integer %s=%r", name, raw)
		return default
	return value if value >= minimum else default


def _float_env(name: str, default: float, minimum: float = 0.0) -> float:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = float(raw)
	except ValueError:
		logger.warning("Ignoring non-numeric %s=%r", name, raw)
		return default
	return value if value > minimum else default


def _list_env(name: str, default: List[str]) -> List[str]:
	raw = os.getenv(name, "").strip()
	items = [item.strip() for item in raw.split(",") if item.strip()]
	return items or list(default)


def log_level() -> str:
	return os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"


def cors_allow_origins() -> List[str]:
	return _list_env("CHAT_CORS_ALLOW_ORIGINS", constants.DEFAULT_CORS_ALLOW_ORIGINS)


def trusted_hosts() -> List[str]:
	return _list_env("CHAT_TRUSTED_HOSTS", constants.DEFAULT_TRUSTED_HOSTS)


def provider_mode() -> ProviderMode:
	mode = os.getenv("ASSISTANT_PROVIDER_MODE", "auto").strip().lower() or "auto"
	if mode not in {"auto", "openai", "local"}:
		raise ConfigurationError("ASSISTANT_PROVIDER_MODE must be one of: auto, openai, local.")
	return mode  # type: ignore[return-value]


def openai_api_key() -> str:
	return os.getenv("OPENAI_API_KEY", "").strip()


def resolved_provider_mode() -> ProviderMode:
	configured = provider_mode()
	if configured != "auto":
		return configured
	return "openai" if openai_api_key() else "local"


def openai_model() -> str:
	return os.getenv("ASSISTANT_OPENAI_MODEL", "").strip() or constants.DEFAULT_OPENAI_MODEL


def openai_timeout_s() -> float:
	return _float_env("ASSISTANT_OPENAI_TIMEOUT_S", constants.DEFAULT_OPENAI_TIMEOUT_S)


def default_assistant_id() -> str:
	configured = os.getenv("OPENAI_ASSISTANT_ID", "").strip()
	if configured:
		return configured
	if resolved_provider_mode() == "local":
		return constants.LOCAL_ASSISTANT_ID
	return ""


def run_poll_interval_s() -> float:
	return _float_env("CHAT_RUN_POLL_INTERVAL_S", constants.DEFAULT_RUN_POLL_INTERVAL_S)


def run_timeout_s() -> float:
	return _float_env("CHAT_RUN_TIMEOUT_S", constants.DEFAULT_RUN_TIMEOUT_S)


def run_max_polls() -> int:
	derived = max(1, int(-(-run_timeout_s() // run_poll_interval_s())))
	return _int_env("CHAT_RUN_MAX_POLLS", derived)


def session_ttl_s() -> int:
	return _int_env("CHAT_SESSION_TTL_S", constants.DEFAULT_SESSION_TTL_S, minimum=0)


def stream_history_turns() -> int:
	return _int_env("CHAT_STREAM_HISTORY_TURNS", constants.DEFAULT_STREAM_HISTORY_TURNS, minimum=0)


def stream_batch_chars() -> int:
	return _int_env("CHAT_STREAM_BATCH_CHARS", constants.DEFAULT_STREAM_BATCH_CHARS)


def max_text_chars() -> int:
	return _int_env("CHAT_MAX_TEXT_CHARS", constants.DEFAULT_MAX_TEXT_CHARS)


def local_stream_delay_ms() -> int:
	return _int_env("CHAT_LOCAL_STREAM_DELAY_MS", constants.DEFAULT_LOCAL_STREAM_DELAY_MS, minimum=0)

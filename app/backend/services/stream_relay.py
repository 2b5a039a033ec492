from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Sequence

from app.backend import config
from app.backend.adapters.upstream_adapter import UpstreamAdapter, get_upstream_adapter
from app.backend.errors import ChatRelayError
from app.backend.persona import PERSONA, Persona


logger = logging.getLogger(__name__)

StreamEvent = Dict[str, str]

_STREAM_FAILED_MESSAGE = "Assistant stream failed."


def delta_event(text: str) -> StreamEvent:
	return {"type": "delta", "delta": text}


def done_event() -> StreamEvent:
	return {"type": "done"}


def error_event(message: str) -> StreamEvent:
	return {"type": "error", "message": message}


def encode_sse(event: Mapping[str, Any]) -> str:
	payload = json.dumps(dict(event), ensure_ascii=False)
	return f"data: {payload}\n\n"


def build_prompt(
	user_text: str,
	history: Sequence[Mapping[str, Any]] | None = None,
	*,
	history_turns: int | None = None,
	persona: Persona = PERSONA,
) -> List[Dict[str, str]]:
	limit = config.stream_history_turns() if history_turns is None else history_turns
	turns: List[Dict[str, str]] = []
	for item in history or []:
		role = item.get("role")
		content = item.get("content")
		if role not in {"user", "assistant"} or not isinstance(content, str) or not content.strip():
			continue
		turns.append({"role": role, "content": content})
	recent = turns[-limit:] if limit > 0 else []
	return [
		{"role": "system", "content": persona.system_preamble()},
		*recent,
		{"role": "user", "content": user_text},
	]


def _batched(tokens: Iterable[str], batch_chars: int) -> Iterator[str]:
	if batch_chars <= 1:
		yield from tokens
		return
	buffer: List[str] = []
	size = 0
	try:
		for token in tokens:
			buffer.append(token)
			size += len(token)
			if size >= batch_chars:
				chunk = "".join(buffer)
				buffer, size = [], 0
				yield chunk
	except Exception:
		# Tokens already produced are still delivered before the failure.
		if buffer:
			yield "".join(buffer)
		raise
	if buffer:
		yield "".join(buffer)


def open_stream(
	user_text: str,
	history: Sequence[Mapping[str, Any]] | None = None,
	*,
	adapter_factory: Callable[[], UpstreamAdapter] = get_upstream_adapter,
	history_turns: int | None = None,
	batch_chars: int | None = None,
) -> Iterator[StreamEvent]:
	"""Relay upstream tokens as ``delta`` events followed by one terminal event.

	Every failure, including one raised before the first token, is reported as
	a single ``error`` event. Closing the returned generator closes the
	upstream token iterator.
	"""
	size = config.stream_batch_chars() if batch_chars is None else batch_chars
	tokens: Iterator[str] | None = None
	batches: Iterator[str] | None = None
	try:
		adapter = adapter_factory()
		prompt = build_prompt(user_text, history, history_turns=history_turns)
		tokens = iter(adapter.stream_tokens(prompt))
		batches = _batched(tokens, size)
		for chunk in batches:
			if chunk:
				yield delta_event(chunk)
	except ChatRelayError as exc:
		logger.warning("Stream relay failed: %s (%s)", exc.code, exc.message)
		yield error_event(exc.message)
		return
	except Exception:
		logger.exception("Stream relay failed unexpectedly")
		yield error_event(_STREAM_FAILED_MESSAGE)
		return
	finally:
		for source in (batches, tokens):
			close = getattr(source, "close", None)
			if callable(close):
				close()
	yield done_event()

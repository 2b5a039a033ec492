from __future__ import annotations

import itertools
import logging
import time
import uuid
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, Iterator, List, Protocol, Sequence

from app.backend import config
from app.backend.errors import ConfigurationError, TransportError, UpstreamTimeout
from app.backend.persona import PERSONA, canned_reply


logger = logging.getLogger(__name__)


@dataclass
class RunState:
	id: str
	conversation_id: str
	status: str


@dataclass
class ContentPart:
	type: str
	text: str = ""


@dataclass
class UpstreamMessage:
	id: str
	role: str
	parts: List[ContentPart] = field(default_factory=list)


class UpstreamAdapter(Protocol):
	def create_conversation(self) -> str: ...

	def append_message(self, conversation_id: str, text: str) -> None: ...

	def start_run(self, conversation_id: str, assistant_id: str) -> RunState: ...

	def get_run(self, conversation_id: str, run_id: str) -> RunState: ...

	def list_messages(self, conversation_id: str) -> List[UpstreamMessage]:
		"""Messages of the conversation, newest first."""
		...

	def stream_tokens(self, messages: Sequence[Dict[str, str]]) -> Iterator[str]:
		"""Lazily yield reply tokens; closing the iterator closes the upstream call."""
		...


def _upstream_error(exc: Exception) -> Exception:
	name = exc.__class__.__name__
	if isinstance(exc, TimeoutError) or name == "APITimeoutError":
		return UpstreamTimeout("Assistant provider timed out.")
	return TransportError("Assistant provider request failed.")


def _build_openai_client(*, api_key: str, timeout_s: float):
	try:
		from openai import OpenAI
	except ImportError as exc:
		raise ConfigurationError("OpenAI SDK not installed. Add 'openai' dependency.") from exc
	return OpenAI(api_key=api_key, timeout=timeout_s)


def _field(obj: Any, name: str, default: Any = None) -> Any:
	if isinstance(obj, dict):
		return obj.get(name, default)
	return getattr(obj, name, default)


def _content_parts(content: Any) -> List[ContentPart]:
	parts: List[ContentPart] = []
	if not isinstance(content, list):
		return parts
	for item in content:
		part_type = str(_field(item, "type", "") or "")
		text = _field(item, "text")
		# Assistants API nests text as {"value": ..., "annotations": [...]}.
		value = _field(text, "value") if text is not None and not isinstance(text, str) else text
		parts.append(ContentPart(type=part_type, text=value if isinstance(value, str) else ""))
	return parts


class OpenAIUpstreamAdapter:
	"""Threads/runs for the polled lifecycle, chat completions for token streaming."""

	def __init__(self, client: Any, *, model: str):
		self._client = client
		self._model = model

	def _call(self, fn: Callable[..., Any], **kwargs: Any) -> Any:
		try:
			return fn(**kwargs)
		except Exception as exc:
			logger.warning("Upstream call %s failed: %s", getattr(fn, "__qualname__", fn), exc.__class__.__name__)
			raise _upstream_error(exc) from exc

	def create_conversation(self) -> str:
		thread = self._call(self._client.beta.threads.create)
		return str(thread.id)

	def append_message(self, conversation_id: str, text: str) -> None:
		self._call(
			self._client.beta.threads.messages.create,
			thread_id=conversation_id,
			role="user",
			content=text,
		)

	def start_run(self, conversation_id: str, assistant_id: str) -> RunState:
		run = self._call(
			self._client.beta.threads.runs.create,
			thread_id=conversation_id,
			assistant_id=assistant_id,
		)
		return RunState(id=str(run.id), conversation_id=conversation_id, status=str(run.status))

	def get_run(self, conversation_id: str, run_id: str) -> RunState:
		run = self._call(
			self._client.beta.threads.runs.retrieve,
			run_id=run_id,
			thread_id=conversation_id,
		)
		return RunState(id=str(run.id), conversation_id=conversation_id, status=str(run.status))

	def list_messages(self, conversation_id: str) -> List[UpstreamMessage]:
		page = self._call(
			self._client.beta.threads.messages.list,
			thread_id=conversation_id,
			order="desc",
		)
		data = _field(page, "data", []) or []
		return [
			UpstreamMessage(
				id=str(_field(item, "id", "")),
				role=str(_field(item, "role", "")),
				parts=_content_parts(_field(item, "content")),
			)
			for item in data
		]

	def stream_tokens(self, messages: Sequence[Dict[str, str]]) -> Iterator[str]:
		stream = self._call(
			self._client.chat.completions.create,
			model=self._model,
			messages=list(messages),
			stream=True,
		)
		try:
			for chunk in stream:
				choices = _field(chunk, "choices") or []
				if not choices:
					continue
				delta = _field(choices[0], "delta")
				token = _field(delta, "content") if delta is not None else None
				if isinstance(token, str) and token:
					yield token
		except Exception as exc:
			logger.warning("Upstream token stream failed: %s", exc.__class__.__name__)
			raise _upstream_error(exc) from exc
		finally:
			close = getattr(stream, "close", None)
			if callable(close):
				close()


@dataclass
class _LocalRun:
	state: RunState
	reply: str


class LocalUpstreamAdapter:
	"""In-process provider answering with the persona's canned replies.

	Runs complete on their first status poll. Streaming emits the reply one
	character at a time, optionally pausing between characters.
	"""

	def __init__(self, *, delay_ms: int = 0, sleep: Callable[[float], None] = time.sleep):
		self._delay_ms = delay_ms
		self._sleep = sleep
		self._lock = Lock()
		self._conversations: Dict[str, List[UpstreamMessage]] = {}
		self._runs: Dict[str, _LocalRun] = {}
		self._ids = itertools.count(1)

	def _next_id(self, prefix: str) -> str:
		return f"{prefix}_{next(self._ids)}_{uuid.uuid4().hex[:8]}"

	def _messages(self, conversation_id: str) -> List[UpstreamMessage]:
		messages = self._conversations.get(conversation_id)
		if messages is None:
			logger.warning("Unknown local conversation %s", conversation_id)
			raise TransportError("Unknown conversation.")
		return messages

	def create_conversation(self) -> str:
		conversation_id = self._next_id("thread")
		with self._lock:
			self._conversations[conversation_id] = []
		return conversation_id

	def append_message(self, conversation_id: str, text: str) -> None:
		with self._lock:
			messages = self._conversations.setdefault(conversation_id, [])
			messages.append(
				UpstreamMessage(id=self._next_id("msg"), role="user", parts=[ContentPart("text", text)])
			)

	def start_run(self, conversation_id: str, assistant_id: str) -> RunState:
		with self._lock:
			messages = self._messages(conversation_id)
			last_user = next((m for m in reversed(messages) if m.role == "user"), None)
			prompt = last_user.parts[0].text if last_user and last_user.parts else ""
			state = RunState(id=self._next_id("run"), conversation_id=conversation_id, status="queued")
			self._runs[state.id] = _LocalRun(state=state, reply=canned_reply(prompt, PERSONA))
			return RunState(id=state.id, conversation_id=conversation_id, status=state.status)

	def get_run(self, conversation_id: str, run_id: str) -> RunState:
		with self._lock:
			run = self._runs.get(run_id)
			if run is None or run.state.conversation_id != conversation_id:
				logger.warning("Unknown local run %s in conversation %s", run_id, conversation_id)
				raise TransportError("Unknown run.")
			if run.state.status != "completed":
				run.state.status = "completed"
				self._messages(conversation_id).append(
					UpstreamMessage(
						id=self._next_id("msg"),
						role="assistant",
						parts=[ContentPart("text", run.reply)],
					)
				)
			return RunState(id=run.state.id, conversation_id=conversation_id, status=run.state.status)

	def list_messages(self, conversation_id: str) -> List[UpstreamMessage]:
		with self._lock:
			return list(reversed(self._messages(conversation_id)))

	def stream_tokens(self, messages: Sequence[Dict[str, str]]) -> Iterator[str]:
		last_user = next((m for m in reversed(messages) if m.get("role") == "user"), None)
		reply = canned_reply(last_user.get("content", "") if last_user else "", PERSONA)
		for char in reply:
			if self._delay_ms:
				self._sleep(self._delay_ms / 1000)
			yield char


_LOCAL_ADAPTER: LocalUpstreamAdapter | None = None
_LOCAL_LOCK = Lock()


def local_adapter() -> LocalUpstreamAdapter:
	global _LOCAL_ADAPTER
	with _LOCAL_LOCK:
		if _LOCAL_ADAPTER is None:
			_LOCAL_ADAPTER = LocalUpstreamAdapter(delay_ms=config.local_stream_delay_ms())
		return _LOCAL_ADAPTER


def get_upstream_adapter() -> UpstreamAdapter:
	mode = config.resolved_provider_mode()
	if mode == "local":
		return local_adapter()
	api_key = config.openai_api_key()
	if not api_key:
		raise ConfigurationError("OpenAI API key not configured. Set OPENAI_API_KEY.")
	client = _build_openai_client(api_key=api_key, timeout_s=config.openai_timeout_s())
	return OpenAIUpstreamAdapter(client, model=config.openai_model())

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Iterable, Iterator, List, Optional

import httpx

from app.client.delivery import ChatMessage, DeliveryStatus, DeliveryTracker
from app.client.transcript import Transcript


logger = logging.getLogger(__name__)


class ClientTransportError(Exception):
	def __init__(self, message: str, *, status_code: int | None = None):
		super().__init__(message)
		self.message = message
		self.status_code = status_code


def parse_sse(chunks: Iterable[str]) -> Iterator[Dict[str, Any]]:
	"""Decode ``data: <json>`` frames separated by blank lines."""
	buffer = ""
	for chunk in chunks:
		buffer += chunk.replace("\r\n", "\n")
		*frames, buffer = buffer.split("\n\n")
		for frame in frames:
			data_lines = [line[5:].strip() for line in frame.splitlines() if line.startswith("data:")]
			if not data_lines:
				continue
			try:
				event = json.loads("\n".join(data_lines))
			except json.JSONDecodeError:
				logger.warning("Skipping malformed stream frame: %r", frame[:80])
				continue
			if not isinstance(event, dict):
				logger.warning("Skipping non-object stream frame: %r", frame[:80])
				continue
			yield event


def _error_message(response: httpx.Response) -> str:
	try:
		payload = response.json()
	except ValueError:
		return f"HTTP {response.status_code}"
	message = payload.get("error") if isinstance(payload, dict) else None
	return message if isinstance(message, str) and message else f"HTTP {response.status_code}"


class RelayClient:
	def __init__(self, http: httpx.Client, *, chat_path: str = "/api/chat", stream_path: str = "/api/avery"):
		self.http = http
		self.chat_path = chat_path
		self.stream_path = stream_path

	def send_turn(
		self,
		text: str,
		*,
		thread_id: str | None = None,
		session_id: str | None = None,
		assistant_id: str | None = None,
	) -> Dict[str, Any]:
		body: Dict[str, Any] = {"text": text}
		if thread_id:
			body["threadId"] = thread_id
		if session_id:
			body["sessionId"] = session_id
		if assistant_id:
			body["assistantId"] = assistant_id
		try:
			response = self.http.post(self.chat_path, json=body)
		except httpx.HTTPError as exc:
			raise ClientTransportError(f"Request failed: {exc.__class__.__name__}") from exc
		if response.status_code != 200:
			raise ClientTransportError(_error_message(response), status_code=response.status_code)
		try:
			payload = response.json()
		except ValueError as exc:
			raise ClientTransportError("Malformed reply body.", status_code=response.status_code) from exc
		if not isinstance(payload, dict):
			raise ClientTransportError("Malformed reply body.", status_code=response.status_code)
		return payload

	def open_stream(self, message: str, history: List[Dict[str, str]]) -> httpx.Response:
		request = self.http.build_request("POST", self.stream_path, json={"message": message, "history": history})
		try:
			response = self.http.send(request, stream=True)
		except httpx.HTTPError as exc:
			raise ClientTransportError(f"Request failed: {exc.__class__.__name__}") from exc
		if response.status_code != 200:
			response.read()
			response.close()
			raise ClientTransportError(_error_message(response), status_code=response.status_code)
		return response


class StreamingTurn:
	"""One in-flight streamed reply.

	Iterating yields each delta as it arrives and grows the assistant message
	in the transcript. The user message ends ``read`` on ``done`` and
	``failed`` on an ``error`` event, a transport failure, or :meth:`abort`.
	Text already received is kept in every case.
	"""

	def __init__(self, widget: "ChatWidget", message: ChatMessage, response: httpx.Response):
		self.widget = widget
		self.message = message
		self.reply: Optional[ChatMessage] = None
		self.error: Optional[str] = None
		self._response = response
		self._finished = False

	@property
	def finished(self) -> bool:
		return self._finished

	def _finish(self, status: DeliveryStatus, error: str | None = None) -> None:
		if self._finished:
			return
		self._finished = True
		self.error = error
		self._response.close()
		self.widget._set_status(self.message, status)
		if self.widget._active is self:
			self.widget._active = None

	def _grow(self, delta: str) -> None:
		if self.reply is None:
			self.reply = self.widget.transcript.append(self.widget.tracker.reply(delta))
		else:
			self.reply.text += delta
			self.widget.transcript.save()

	def __iter__(self) -> Iterator[str]:
		if self._finished:
			return
		try:
			for event in parse_sse(self._response.iter_text()):
				if self._finished:
					return
				self.widget._tick(self.message)
				kind = event.get("type")
				if kind == "delta":
					delta = str(event.get("delta", ""))
					self.widget._set_status(self.message, DeliveryStatus.DELIVERED)
					self._grow(delta)
					yield delta
				elif kind == "done":
					self._finish(DeliveryStatus.READ)
					return
				elif kind == "error":
					self._finish(DeliveryStatus.FAILED, str(event.get("message", "Stream failed.")))
					return
		except (httpx.HTTPError, httpx.StreamError) as exc:
			if self._finished:
				return
			logger.warning("Stream interrupted: %s", exc.__class__.__name__)
			self._finish(DeliveryStatus.FAILED, "Stream interrupted.")
			return
		self._finish(DeliveryStatus.FAILED, "Stream ended without a terminal event.")

	def run(self) -> str:
		for _delta in self:
			pass
		return self.reply.text if self.reply else ""

	def abort(self) -> None:
		self._finish(DeliveryStatus.FAILED, "Aborted.")


class ChatWidget:
	"""Browser-side chat state: transcript, delivery statuses, one active stream."""

	def __init__(
		self,
		relay: RelayClient,
		transcript: Transcript | None = None,
		*,
		tracker: DeliveryTracker | None = None,
		session_id: str | None = None,
		assistant_id: str | None = None,
	):
		self.relay = relay
		self.transcript = transcript or Transcript()
		self.tracker = tracker or DeliveryTracker()
		self.session_id = session_id or uuid.uuid4().hex
		self.assistant_id = assistant_id
		self._active: Optional[StreamingTurn] = None

	@property
	def active_stream(self) -> Optional[StreamingTurn]:
		return self._active

	def _set_status(self, message: ChatMessage, status: DeliveryStatus) -> None:
		if status is DeliveryStatus.READ:
			# Read implies every earlier acknowledgement.
			for step in (DeliveryStatus.SENT, DeliveryStatus.DELIVERED):
				self.tracker.advance(message, step)
		if self.tracker.advance(message, status):
			self.transcript.save()

	def _tick(self, message: ChatMessage) -> None:
		if self.tracker.tick(message):
			self.transcript.save()

	def _submit(self, text: str) -> ChatMessage:
		cleaned = text.strip()
		if not cleaned:
			raise ValueError("Message text must not be empty.")
		return self.transcript.append(self.tracker.submit(cleaned))

	def send(self, text: str) -> ChatMessage:
		"""Send one turn and wait for the whole reply. Returns the user message."""
		message = self._submit(text)
		return self._deliver(message)

	def _deliver(self, message: ChatMessage) -> ChatMessage:
		try:
			payload = self.relay.send_turn(
				message.text,
				thread_id=self.transcript.thread_id,
				session_id=self.session_id,
				assistant_id=self.assistant_id,
			)
		except ClientTransportError as exc:
			logger.warning("Turn failed: %s", exc.message)
			self._set_status(message, DeliveryStatus.FAILED)
			return message
		self._tick(message)
		thread_id = payload.get("threadId")
		if isinstance(thread_id, str) and thread_id:
			self.transcript.thread_id = thread_id
		self.transcript.append(self.tracker.reply(str(payload.get("reply", ""))))
		self._set_status(message, DeliveryStatus.READ)
		return message

	def send_streaming(self, text: str) -> StreamingTurn | ChatMessage:
		"""Open a streamed turn, aborting any stream still in flight.

		Returns the :class:`StreamingTurn` to iterate, or the failed user
		message when the stream could not be opened.
		"""
		if self._active is not None:
			self._active.abort()
		message = self._submit(text)
		return self._open(message)

	def _open(self, message: ChatMessage) -> StreamingTurn | ChatMessage:
		history = self.transcript.history(before=message.id)
		try:
			response = self.relay.open_stream(message.text, history)
		except ClientTransportError as exc:
			logger.warning("Stream could not be opened: %s", exc.message)
			self._set_status(message, DeliveryStatus.FAILED)
			return message
		self._set_status(message, DeliveryStatus.SENT)
		self._active = StreamingTurn(self, message, response)
		return self._active

	def retry(self, message: ChatMessage, *, streaming: bool = False) -> StreamingTurn | ChatMessage:
		"""Resend a failed message's text as a new message."""
		fresh = self.transcript.append(self.tracker.retry(message))
		if streaming:
			if self._active is not None:
				self._active.abort()
			return self._open(fresh)
		return self._deliver(fresh)

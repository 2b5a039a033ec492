from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from app.client.delivery import ChatMessage


logger = logging.getLogger(__name__)


class Transcript:
	"""Append-only message list persisted as one JSON blob.

	The file holds ``{"messages": [...], "threadId": ...}``. It is read once
	by :meth:`load` and rewritten by :meth:`save` after every change.
	"""

	def __init__(self, path: Path | None = None, *, messages: List[ChatMessage] | None = None, thread_id: str | None = None):
		self.path = path
		self.messages: List[ChatMessage] = list(messages or [])
		self.thread_id = thread_id

	@classmethod
	def load(cls, path: Path) -> "Transcript":
		try:
			raw = json.loads(path.read_text(encoding="utf-8"))
			messages = [ChatMessage.from_dict(item) for item in raw.get("messages", [])]
			thread_id = raw.get("threadId")
			if thread_id is not None and not isinstance(thread_id, str):
				raise ValueError("threadId must be a string.")
		except FileNotFoundError:
			return cls(path)
		except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
			logger.warning("Discarding unreadable chat state at %s: %s", path, exc)
			return cls(path)
		return cls(path, messages=messages, thread_id=thread_id)

	def as_dict(self) -> Dict[str, Any]:
		payload: Dict[str, Any] = {"messages": [message.as_dict() for message in self.messages]}
		if self.thread_id:
			payload["threadId"] = self.thread_id
		return payload

	def save(self) -> None:
		if self.path is None:
			return
		try:
			self.path.parent.mkdir(parents=True, exist_ok=True)
			self.path.write_text(json.dumps(self.as_dict(), ensure_ascii=False), encoding="utf-8")
		except OSError as exc:
			logger.warning("Could not persist chat state to %s: %s", self.path, exc)

	def append(self, message: ChatMessage) -> ChatMessage:
		self.messages.append(message)
		self.save()
		return message

	def history(self, *, before: str | None = None) -> List[Dict[str, str]]:
		turns: List[Dict[str, str]] = []
		for message in self.messages:
			if before is not None and message.id == before:
				break
			if message.text:
				turns.append({"role": message.role, "content": message.text})
		return turns

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Literal, Optional


logger = logging.getLogger(__name__)

Role = Literal["user", "assistant"]


class DeliveryStatus(str, Enum):
	SENDING = "sending"
	SENT = "sent"
	DELIVERED = "delivered"
	READ = "read"
	FAILED = "failed"


_RANK = {
	DeliveryStatus.SENDING: 0,
	DeliveryStatus.SENT: 1,
	DeliveryStatus.DELIVERED: 2,
	DeliveryStatus.READ: 3,
}
TERMINAL_STATUSES = frozenset({DeliveryStatus.READ, DeliveryStatus.FAILED})


class InvalidRetry(Exception):
	pass


def now_ms() -> int:
	return int(time.time() * 1000)


def new_message_id() -> str:
	return uuid.uuid4().hex


@dataclass
class ChatMessage:
	id: str
	role: Role
	text: str
	timestamp_ms: int
	status: Optional[DeliveryStatus] = None

	def as_dict(self) -> Dict[str, Any]:
		payload: Dict[str, Any] = {
			"id": self.id,
			"role": self.role,
			"text": self.text,
			"timestampMs": self.timestamp_ms,
		}
		if self.status is not None:
			payload["status"] = self.status.value
		return payload

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
		role = data["role"]
		if role not in {"user", "assistant"}:
			raise ValueError(f"Unknown role {role!r}.")
		status = data.get("status")
		return cls(
			id=str(data["id"]),
			role=role,
			text=str(data.get("text", "")),
			timestamp_ms=int(data.get("timestampMs", 0)),
			status=DeliveryStatus(status) if status is not None and role == "user" else None,
		)


def can_transition(current: DeliveryStatus, target: DeliveryStatus) -> bool:
	if current in TERMINAL_STATUSES:
		return False
	if target is DeliveryStatus.FAILED:
		return True
	return _RANK[target] > _RANK[current]


@dataclass(frozen=True)
class OptimisticDelayPolicy:
	"""Fixed-delay stand-ins for acknowledgements the server never sends.

	A user message is shown as ``sent`` ``sent_after_ms`` after submission and
	as ``delivered`` after ``delivered_after_ms``, unless a real signal got
	there first. Set ``enabled=False`` to rely on real signals only.
	"""

	sent_after_ms: int = 200
	delivered_after_ms: int = 600
	enabled: bool = True

	def status_after(self, elapsed_ms: int) -> Optional[DeliveryStatus]:
		if not self.enabled:
			return None
		if elapsed_ms >= self.delivered_after_ms:
			return DeliveryStatus.DELIVERED
		if elapsed_ms >= self.sent_after_ms:
			return DeliveryStatus.SENT
		return None


class DeliveryTracker:
	def __init__(
		self,
		*,
		policy: OptimisticDelayPolicy | None = None,
		clock_ms: Callable[[], int] = now_ms,
	):
		self.policy = policy or OptimisticDelayPolicy()
		self._clock_ms = clock_ms

	def submit(self, text: str) -> ChatMessage:
		return ChatMessage(
			id=new_message_id(),
			role="user",
			text=text,
			timestamp_ms=self._clock_ms(),
			status=DeliveryStatus.SENDING,
		)

	def reply(self, text: str = "") -> ChatMessage:
		return ChatMessage(id=new_message_id(), role="assistant", text=text, timestamp_ms=self._clock_ms())

	def advance(self, message: ChatMessage, target: DeliveryStatus) -> bool:
		if message.role != "user" or message.status is None:
			return False
		if not can_transition(message.status, target):
			logger.debug("Ignoring %s -> %s for message %s", message.status.value, target.value, message.id)
			return False
		message.status = target
		return True

	def fail(self, message: ChatMessage) -> bool:
		return self.advance(message, DeliveryStatus.FAILED)

	def tick(self, message: ChatMessage) -> bool:
		target = self.policy.status_after(self._clock_ms() - message.timestamp_ms)
		if target is None:
			return False
		return self.advance(message, target)

	def retry(self, message: ChatMessage) -> ChatMessage:
		if message.status is not DeliveryStatus.FAILED:
			raise InvalidRetry(f"Only failed messages can be retried (status={message.status}).")
		return self.submit(message.text)

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional, Protocol

from app.backend import config
from app.backend.adapters.upstream_adapter import UpstreamAdapter


logger = logging.getLogger(__name__)


class SessionStore(Protocol):
	def get(self, session_id: str) -> Optional[str]: ...

	def set(self, session_id: str, conversation_id: str) -> None: ...


@dataclass
class _Entry:
	conversation_id: str
	updated_at: float


class InMemorySessionStore:
	"""Process-lifetime session map. ``ttl_s == 0`` keeps entries forever."""

	def __init__(self, *, ttl_s: int = 0, clock: Callable[[], float] = time.monotonic):
		self._ttl_s = ttl_s
		self._clock = clock
		self._entries: Dict[str, _Entry] = {}
		self._lock = Lock()

	def _evict_expired_locked(self) -> None:
		if self._ttl_s <= 0:
			return
		now = self._clock()
		expired = [key for key, entry in self._entries.items() if now - entry.updated_at > self._ttl_s]
		for key in expired:
			self._entries.pop(key, None)

	def get(self, session_id: str) -> Optional[str]:
		with self._lock:
			self._evict_expired_locked()
			entry = self._entries.get(session_id)
			if entry is None:
				return None
			entry.updated_at = self._clock()
			return entry.conversation_id

	def set(self, session_id: str, conversation_id: str) -> None:
		with self._lock:
			self._evict_expired_locked()
			self._entries[session_id] = _Entry(conversation_id=conversation_id, updated_at=self._clock())

	def __len__(self) -> int:
		with self._lock:
			self._evict_expired_locked()
			return len(self._entries)


class SessionIndex:
	def __init__(self, store: SessionStore):
		self.store = store

	def resolve(
		self,
		session_id: str | None,
		adapter: UpstreamAdapter,
		supplied_conversation_id: str | None = None,
	) -> str:
		supplied = (supplied_conversation_id or "").strip()
		if not session_id:
			# Anonymous turns are not indexed.
			return supplied or adapter.create_conversation()
		if supplied:
			self.store.set(session_id, supplied)
			return supplied
		existing = self.store.get(session_id)
		if existing:
			return existing
		# The store lock is not held across the upstream call; two concurrent
		# first calls may each create a conversation and the later write wins.
		conversation_id = adapter.create_conversation()
		self.store.set(session_id, conversation_id)
		logger.info("Created conversation %s for session %s", conversation_id, session_id)
		return conversation_id


_INDEX: SessionIndex | None = None
_INDEX_LOCK = Lock()


def default_index() -> SessionIndex:
	global _INDEX
	with _INDEX_LOCK:
		if _INDEX is None:
			_INDEX = SessionIndex(InMemorySessionStore(ttl_s=config.session_ttl_s()))
		return _INDEX


def reset_default_index(index: SessionIndex | None = None) -> None:
	global _INDEX
	with _INDEX_LOCK:
		_INDEX = index

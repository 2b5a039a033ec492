from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Sequence

from app.backend import config, constants
from app.backend.adapters.upstream_adapter import RunState, UpstreamAdapter, UpstreamMessage
from app.backend.errors import ConfigurationError, UpstreamRunError, UpstreamTimeout


logger = logging.getLogger(__name__)


class PollPhase(str, Enum):
	PENDING = "pending"
	TERMINAL = "terminal"
	TIMED_OUT = "timed_out"


@dataclass
class TurnResult:
	reply: str
	run_id: str
	status: str


@dataclass
class RunPoller:
	"""Bounded poll loop for a single run.

	Each attempt sleeps ``interval_s`` and then retrieves the run status. The
	loop stops on a terminal status, after ``max_polls`` attempts, or once the
	clock passes ``timeout_s`` from the first call to :meth:`wait`.
	"""

	adapter: UpstreamAdapter
	run: RunState
	interval_s: float
	timeout_s: float
	max_polls: int
	clock: Callable[[], float] = time.monotonic
	sleep: Callable[[float], None] = time.sleep
	attempts: int = 0
	phase: PollPhase = PollPhase.PENDING
	history: List[str] = field(default_factory=list)

	def _observe(self, state: RunState) -> None:
		self.run = state
		self.history.append(state.status)
		if state.status in constants.TERMINAL_RUN_STATUSES:
			self.phase = PollPhase.TERMINAL

	def step(self) -> RunState:
		self.sleep(self.interval_s)
		self.attempts += 1
		self._observe(self.adapter.get_run(self.run.conversation_id, self.run.id))
		return self.run

	def wait(self) -> RunState:
		deadline = self.clock() + self.timeout_s
		self._observe(self.run)
		while self.phase is PollPhase.PENDING:
			if self.attempts >= self.max_polls or self.clock() >= deadline:
				self.phase = PollPhase.TIMED_OUT
				break
			self.step()
		if self.phase is PollPhase.TIMED_OUT:
			logger.warning(
				"Run %s still %s after %d polls",
				self.run.id,
				self.run.status,
				self.attempts,
			)
			raise UpstreamTimeout("Upstream run timed out.", attempts=self.attempts)
		return self.run


def resolve_assistant_id(requested: str | None) -> str:
	candidate = (requested or "").strip() or config.default_assistant_id()
	if not candidate:
		raise ConfigurationError("Assistant id not configured. Set OPENAI_ASSISTANT_ID or pass assistantId.")
	return candidate


def extract_reply(messages: Sequence[UpstreamMessage]) -> str:
	latest = next((message for message in messages if message.role == "assistant"), None)
	if latest is None:
		return constants.EMPTY_REPLY
	text = "\n".join(part.text for part in latest.parts if part.type == "text").strip()
	return text or constants.EMPTY_REPLY


def run_turn(
	adapter: UpstreamAdapter,
	*,
	conversation_id: str,
	user_text: str,
	assistant_id: str,
	interval_s: float | None = None,
	timeout_s: float | None = None,
	max_polls: int | None = None,
	clock: Callable[[], float] = time.monotonic,
	sleep: Callable[[float], None] = time.sleep,
) -> TurnResult:
	adapter.append_message(conversation_id, user_text)
	run = adapter.start_run(conversation_id, assistant_id)
	logger.info("Started run %s on conversation %s", run.id, conversation_id)

	poller = RunPoller(
		adapter=adapter,
		run=run,
		interval_s=interval_s if interval_s is not None else config.run_poll_interval_s(),
		timeout_s=timeout_s if timeout_s is not None else config.run_timeout_s(),
		max_polls=max_polls if max_polls is not None else config.run_max_polls(),
		clock=clock,
		sleep=sleep,
	)
	final = poller.wait()
	if final.status != "completed":
		logger.warning("Run %s ended with status %s", final.id, final.status)
		raise UpstreamRunError(final.status)

	reply = extract_reply(adapter.list_messages(conversation_id))
	return TurnResult(reply=reply, run_id=final.id, status=final.status)

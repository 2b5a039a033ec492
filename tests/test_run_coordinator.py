import os
from typing import List
from unittest import TestCase
from unittest.mock import patch

from app.backend import constants
from app.backend.adapters.upstream_adapter import ContentPart, RunState, UpstreamMessage
from app.backend.errors import ConfigurationError, UpstreamRunError, UpstreamTimeout
from app.backend.services import run_coordinator


class _FakeClock:
	def __init__(self) -> None:
		self.now = 0.0
		self.sleeps: List[float] = []

	def __call__(self) -> float:
		return self.now

	def sleep(self, seconds: float) -> None:
		self.sleeps.append(seconds)
		self.now += seconds


class _ScriptedUpstream:
	def __init__(self, statuses: List[str], messages: List[UpstreamMessage] | None = None, *, start_status: str = "queued"):
		self.statuses = list(statuses)
		self.messages = messages or []
		self.start_status = start_status
		self.calls: List[str] = []
		self.get_run_calls = 0

	def create_conversation(self) -> str:
		self.calls.append("create")
		return "thread_new"

	def append_message(self, conversation_id: str, text: str) -> None:
		self.calls.append(f"append:{text}")

	def start_run(self, conversation_id: str, assistant_id: str) -> RunState:
		self.calls.append(f"start:{assistant_id}")
		return RunState(id="run_1", conversation_id=conversation_id, status=self.start_status)

	def get_run(self, conversation_id: str, run_id: str) -> RunState:
		self.get_run_calls += 1
		status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
		return RunState(id=run_id, conversation_id=conversation_id, status=status)

	def list_messages(self, conversation_id: str) -> List[UpstreamMessage]:
		self.calls.append("list")
		return list(self.messages)


def _assistant(text_parts, message_id="msg_a") -> UpstreamMessage:
	return UpstreamMessage(id=message_id, role="assistant", parts=[ContentPart("text", t) for t in text_parts])


class RunCoordinatorTests(TestCase):
	def _run(self, upstream, *, max_polls=10, timeout_s=30.0):
		clock = _FakeClock()
		result = run_coordinator.run_turn(
			upstream,
			conversation_id="thread_1",
			user_text="help me with a workshop",
			assistant_id="asst_1",
			interval_s=0.5,
			timeout_s=timeout_s,
			max_polls=max_polls,
			clock=clock,
			sleep=clock.sleep,
		)
		return result, clock

	def test_completed_run_returns_latest_assistant_reply(self) -> None:
		upstream = _ScriptedUpstream(
			["in_progress", "completed"],
			messages=[
				_assistant(["  cool. ", "ready?  "], message_id="msg_new"),
				UpstreamMessage(id="msg_user", role="user", parts=[ContentPart("text", "hi")]),
				_assistant(["older reply"], message_id="msg_old"),
			],
		)
		result, clock = self._run(upstream)
		self.assertEqual(result.reply, "cool. \nready?")
		self.assertEqual(result.status, "completed")
		self.assertEqual(upstream.calls[:2], ["append:help me with a workshop", "start:asst_1"])
		self.assertEqual(upstream.calls[-1], "list")
		self.assertEqual(clock.sleeps, [0.5, 0.5])

	def test_non_text_segments_are_skipped(self) -> None:
		message = UpstreamMessage(
			id="msg",
			role="assistant",
			parts=[ContentPart("image_file"), ContentPart("text", "caption")],
		)
		upstream = _ScriptedUpstream(["completed"], messages=[message])
		result, _clock = self._run(upstream)
		self.assertEqual(result.reply, "caption")

	def test_missing_assistant_message_returns_sentinel(self) -> None:
		upstream = _ScriptedUpstream(
			["completed"],
			messages=[UpstreamMessage(id="u", role="user", parts=[ContentPart("text", "hi")])],
		)
		result, _clock = self._run(upstream)
		self.assertEqual(result.reply, constants.EMPTY_REPLY)

	def test_failed_run_raises_with_status(self) -> None:
		upstream = _ScriptedUpstream(["in_progress", "in_progress", "failed"], messages=[_assistant(["nope"])])
		with self.assertRaises(UpstreamRunError) as ctx:
			self._run(upstream)
		self.assertEqual(ctx.exception.status, "failed")
		self.assertEqual(ctx.exception.message, "failed")
		self.assertNotIn("list", upstream.calls)

	def test_cancelled_and_expired_are_failures(self) -> None:
		for status in ("cancelled", "expired"):
			upstream = _ScriptedUpstream([status])
			with self.assertRaises(UpstreamRunError) as ctx:
				self._run(upstream)
			self.assertEqual(ctx.exception.status, status)

	def test_timeout_respects_max_polls(self) -> None:
		upstream = _ScriptedUpstream(["in_progress"])
		with self.assertRaises(UpstreamTimeout) as ctx:
			self._run(upstream, max_polls=4)
		self.assertEqual(upstream.get_run_calls, 4)
		self.assertEqual(ctx.exception.attempts, 4)

	def test_timeout_respects_wall_clock_deadline(self) -> None:
		upstream = _ScriptedUpstream(["queued"])
		with self.assertRaises(UpstreamTimeout):
			self._run(upstream, max_polls=100, timeout_s=2.0)
		self.assertEqual(upstream.get_run_calls, 4)

	def test_unknown_status_is_treated_as_pending(self) -> None:
		upstream = _ScriptedUpstream(["requires_action", "completed"], messages=[_assistant(["ok"])])
		result, _clock = self._run(upstream)
		self.assertEqual(result.reply, "ok")
		self.assertEqual(upstream.get_run_calls, 2)

	def test_run_already_terminal_on_start_skips_polling(self) -> None:
		upstream = _ScriptedUpstream(["in_progress"], messages=[_assistant(["instant"])], start_status="completed")
		result, clock = self._run(upstream)
		self.assertEqual(result.reply, "instant")
		self.assertEqual(upstream.get_run_calls, 0)
		self.assertEqual(clock.sleeps, [])

	def test_reply_extraction_is_repeatable(self) -> None:
		messages = [_assistant(["same answer"])]
		self.assertEqual(run_coordinator.extract_reply(messages), run_coordinator.extract_reply(messages))

	def test_poller_records_status_history(self) -> None:
		upstream = _ScriptedUpstream(["queued", "in_progress", "completed"])
		clock = _FakeClock()
		poller = run_coordinator.RunPoller(
			adapter=upstream,
			run=RunState(id="run_1", conversation_id="thread_1", status="queued"),
			interval_s=1.0,
			timeout_s=10.0,
			max_polls=10,
			clock=clock,
			sleep=clock.sleep,
		)
		final = poller.wait()
		self.assertEqual(final.status, "completed")
		self.assertEqual(poller.history, ["queued", "queued", "in_progress", "completed"])
		self.assertIs(poller.phase, run_coordinator.PollPhase.TERMINAL)


class AssistantIdResolutionTests(TestCase):
	def test_caller_id_wins_over_configured_default(self) -> None:
		with patch.dict(os.environ, {"OPENAI_ASSISTANT_ID": "asst_default"}, clear=False):
			self.assertEqual(run_coordinator.resolve_assistant_id("asst_caller"), "asst_caller")
			self.assertEqual(run_coordinator.resolve_assistant_id(None), "asst_default")

	def test_missing_id_in_openai_mode_is_configuration_error(self) -> None:
		with patch.dict(
			os.environ,
			{"ASSISTANT_PROVIDER_MODE": "openai", "OPENAI_API_KEY": "test-key"},
			clear=False,
		):
			os.environ.pop("OPENAI_ASSISTANT_ID", None)
			with self.assertRaises(ConfigurationError):
				run_coordinator.resolve_assistant_id("  ")

	def test_local_mode_has_builtin_assistant(self) -> None:
		with patch.dict(os.environ, {"ASSISTANT_PROVIDER_MODE": "local"}, clear=False):
			os.environ.pop("OPENAI_ASSISTANT_ID", None)
			self.assertEqual(run_coordinator.resolve_assistant_id(None), constants.LOCAL_ASSISTANT_ID)

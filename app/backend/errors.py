from __future__ import annotations


class ChatRelayError(Exception):
	status_code = 500
	code = "internal_error"

	def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None):
		super().__init__(message)
		self.message = message
		if status_code is not None:
			self.status_code = status_code
		if code is not None:
			self.code = code


class ValidationError(ChatRelayError):
	status_code = 400
	code = "validation_error"


class ConfigurationError(ChatRelayError):
	status_code = 500
	code = "configuration_error"


class UpstreamRunError(ChatRelayError):
	"""The run reached a terminal state other than ``completed``."""

	status_code = 500
	code = "upstream_run_failed"

	def __init__(self, status: str):
		super().__init__(status)
		self.status = status


class UpstreamTimeout(ChatRelayError):
	status_code = 500
	code = "upstream_timeout"

	def __init__(self, message: str = "Upstream run timed out.", *, attempts: int = 0):
		super().__init__(message)
		self.attempts = attempts


class TransportError(ChatRelayError):
	status_code = 500
	code = "transport_error"

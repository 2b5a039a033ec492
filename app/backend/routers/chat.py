from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from app.backend import config, constants
from app.backend.adapters.upstream_adapter import get_upstream_adapter
from app.backend.errors import ChatRelayError, ValidationError
from app.backend.response import success_response
from app.backend.schemas import ApiError, ChatStreamRequest, ChatTurnRequest, ChatTurnResponse
from app.backend.services import run_coordinator, session_index, stream_relay


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

_ERROR_RESPONSES = {400: {"model": ApiError}, 500: {"model": ApiError}}


def _session_id(request: Request, supplied: str | None) -> str | None:
	session_id = (supplied or "").strip() or request.headers.get("X-Session-ID", "").strip()
	return session_id or None


def _check_length(text: str, field: str) -> None:
	limit = config.max_text_chars()
	if len(text) > limit:
		raise ValidationError(f"{field} must be at most {limit} characters.")


def _http_error(exc: ChatRelayError) -> HTTPException:
	return HTTPException(
		status_code=exc.status_code,
		detail={"code": exc.code, "message": exc.message},
	)


@router.post("/chat", response_model=ChatTurnResponse, responses=_ERROR_RESPONSES)
def chat(request: Request, payload: ChatTurnRequest):
	session_id = _session_id(request, payload.session_id)
	response_session_id = session_id or uuid.uuid4().hex
	try:
		_check_length(payload.text, "text")
		assistant_id = run_coordinator.resolve_assistant_id(payload.assistant_id)
		adapter = get_upstream_adapter()
		conversation_id = session_index.default_index().resolve(
			session_id,
			adapter,
			supplied_conversation_id=payload.thread_id,
		)
		result = run_coordinator.run_turn(
			adapter,
			conversation_id=conversation_id,
			user_text=payload.text,
			assistant_id=assistant_id,
		)
	except ChatRelayError as exc:
		logger.warning("Chat turn failed for session %s: %s", response_session_id, exc.code)
		raise _http_error(exc) from exc

	return success_response(
		request=request,
		reply=result.reply,
		threadId=conversation_id,
		sessionId=response_session_id,
	)


@router.post("/avery", responses={400: {"model": ApiError}})
def avery(payload: ChatStreamRequest):
	try:
		_check_length(payload.message, "message")
	except ChatRelayError as exc:
		raise _http_error(exc) from exc
	history = [turn.model_dump() for turn in payload.history]

	def generate() -> Iterator[str]:
		events = stream_relay.open_stream(
			payload.message,
			history,
			adapter_factory=get_upstream_adapter,
		)
		try:
			for event in events:
				yield stream_relay.encode_sse(event)
		finally:
			events.close()

	return StreamingResponse(
		generate(),
		media_type="text/event-stream",
		headers=dict(constants.STREAM_HEADERS),
	)

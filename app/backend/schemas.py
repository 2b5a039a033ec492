from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ApiError(BaseModel):
	model_config = ConfigDict(extra="allow")

	ok: Literal[False] = False
	error: str
	code: str
	evidence: List[str] = Field(default_factory=list)
	generated_at: str
	request_id: Optional[str] = None


class ChatTurnRequest(BaseModel):
	model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, populate_by_name=True)

	text: str = Field(..., min_length=1, description="User message text.")
	thread_id: Optional[str] = Field(default=None, alias="threadId", description="Upstream conversation id.")
	session_id: Optional[str] = Field(default=None, alias="sessionId", description="Opaque client session id.")
	assistant_id: Optional[str] = Field(default=None, alias="assistantId", description="Assistant override.")


class ChatTurnResponse(BaseModel):
	model_config = ConfigDict(extra="allow", populate_by_name=True)

	ok: bool = True
	reply: str
	thread_id: str = Field(alias="threadId")
	session_id: str = Field(alias="sessionId")
	generated_at: str
	request_id: Optional[str] = None


class HistoryTurn(BaseModel):
	"""One prior turn. Turns that are not user/assistant text are dropped from the prompt."""

	model_config = ConfigDict(extra="ignore")

	role: Any = None
	content: Any = None


class ChatStreamRequest(BaseModel):
	model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

	message: str = Field(..., min_length=1, description="User message text.")
	history: List[HistoryTurn] = Field(default_factory=list)


class HealthData(BaseModel):
	model_config = ConfigDict(extra="forbid")

	ok: bool = True
	app: str
	version: str
	provider_mode: Literal["auto", "openai", "local"]
	effective_provider_mode: Literal["openai", "local"]

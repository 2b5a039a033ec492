APP_NAME = "Gen Z Chat Relay"
APP_VERSION = "1.0.0"
DEFAULT_CORS_ALLOW_ORIGINS = ["*"]
DEFAULT_TRUSTED_HOSTS = ["*"]

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OPENAI_TIMEOUT_S = 30.0
LOCAL_ASSISTANT_ID = "local-persona"

DEFAULT_RUN_POLL_INTERVAL_S = 0.75
DEFAULT_RUN_TIMEOUT_S = 30.0
DEFAULT_SESSION_TTL_S = 0
DEFAULT_STREAM_HISTORY_TURNS = 16
DEFAULT_STREAM_BATCH_CHARS = 1
DEFAULT_MAX_TEXT_CHARS = 2000
DEFAULT_LOCAL_STREAM_DELAY_MS = 0

EMPTY_REPLY = "(no reply)"

TERMINAL_RUN_STATUSES = frozenset({"completed", "failed", "cancelled", "expired"})

STREAM_HEADERS = {
	"Cache-Control": "no-cache",
	"Connection": "keep-alive",
	"X-Accel-Buffering": "no",
}

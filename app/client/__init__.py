from app.client.chat_client import ChatWidget, ClientTransportError, RelayClient, StreamingTurn, parse_sse
from app.client.delivery import ChatMessage, DeliveryStatus, DeliveryTracker, OptimisticDelayPolicy
from app.client.transcript import Transcript

__all__ = [
	"ChatMessage",
	"ChatWidget",
	"ClientTransportError",
	"DeliveryStatus",
	"DeliveryTracker",
	"OptimisticDelayPolicy",
	"RelayClient",
	"StreamingTurn",
	"Transcript",
	"parse_sse",
]

from chat_relay.schemas.response import ErrorResponse
from chat_relay.schemas.chat import (
    Character,
    HistoryMessage,
    InboundChatRequest,
    UpstreamMessage,
    UpstreamChatRequest,
)

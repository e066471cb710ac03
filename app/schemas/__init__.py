"""
app.schemas
~~~~~~~~~~~
Pydantic schemas and models for the API and the WebSocket protocol.
"""
from app.schemas.live_interactions import (
    ChatHistoryResponse,
    ChatMessage,
    ChatStats,
    StoredChatMessage,
    ViewerCountEvent,
    ViewerStats,
    WsEnvelope,
)

__all__ = [
    "ChatHistoryResponse",
    "ChatMessage",
    "ChatStats",
    "StoredChatMessage",
    "ViewerCountEvent",
    "ViewerStats",
    "WsEnvelope",
]

"""
app.services.room_relay
~~~~~~~~~~~~~~~~~~~~~~~

房间广播器 —— 维护「会话 → WebSocket」与「直播流 → 订阅会话」两张表，
把观众人数和聊天消息推送给订阅了同一直播流的所有会话。

投递是尽力而为（at-most-once）：发送失败或超时的连接会被记录日志并从广播器中移除，
不做重试。每次发送都有超时，一个不再读取数据的客户端不会卡住整个广播。
"""
from __future__ import annotations

import asyncio
from typing import Any

from fastapi import WebSocket

from app.core.logging import get_logger
from app.schemas.live_interactions import (
    CHAT_MESSAGE,
    VIEWER_COUNT,
    ChatMessage,
    ViewerCountEvent,
    WsEnvelope,
)

logger = get_logger(__name__)


class RoomRelay:
    """按直播流分组的 WebSocket 广播器。

    Attributes:
        connections: 会话 ID → WebSocket 连接。
        rooms: 直播流 → 订阅该直播流的会话 ID 集合。
        send_timeout: 单个连接发送一帧的超时（秒）。
    """

    def __init__(self, send_timeout: float = 5.0) -> None:
        self.send_timeout = send_timeout
        self.connections: dict[str, WebSocket] = {}
        self.rooms: dict[str, set[str]] = {}

    def register(self, session_id: str, websocket: WebSocket) -> None:
        """登记新会话的连接（连接需已 accept）。"""
        self.connections[session_id] = websocket

    def unregister(self, session_id: str) -> None:
        """移除会话的连接及其全部订阅。"""
        self.connections.pop(session_id, None)
        for stream_key in list(self.rooms):
            self.unsubscribe(session_id, stream_key)

    def subscribe(self, session_id: str, stream_key: str) -> None:
        """把会话加入直播流的广播组。"""
        self.rooms.setdefault(stream_key, set()).add(session_id)

    def unsubscribe(self, session_id: str, stream_key: str) -> None:
        """把会话移出直播流的广播组，空组随之删除。"""
        members = self.rooms.get(stream_key)
        if members is None:
            return
        members.discard(session_id)
        if not members:
            del self.rooms[stream_key]

    def subscribers(self, stream_key: str) -> set[str]:
        """返回直播流当前的订阅会话（副本）。"""
        return set(self.rooms.get(stream_key, ()))

    async def broadcast_viewer_count(self, stream_key: str, current: int, peak: int) -> None:
        """向直播流的所有订阅者推送 ``viewer-count`` 事件。"""
        payload = ViewerCountEvent(stream_key=stream_key, viewers=current, peak_viewers=peak)
        await self.emit(stream_key, VIEWER_COUNT, payload.model_dump(by_alias=True))

    async def broadcast_chat_message(self, stream_key: str, message: ChatMessage) -> None:
        """向直播流的所有订阅者（包括发送者本人）推送 ``chat-message`` 事件。"""
        await self.emit(stream_key, CHAT_MESSAGE, message.to_broadcast())

    async def emit(self, stream_key: str, event: str, data: Any) -> None:
        """向直播流的所有订阅者发送一个事件。"""
        targets = [
            (session_id, self.connections[session_id])
            for session_id in self.rooms.get(stream_key, ())
            if session_id in self.connections
        ]
        if not targets:
            return

        frame = WsEnvelope(event=event, data=data).model_dump()
        results = await asyncio.gather(
            *(
                asyncio.wait_for(ws.send_json(frame), timeout=self.send_timeout)
                for _, ws in targets
            ),
            return_exceptions=True,
        )
        for (session_id, _), result in zip(targets, results):
            if isinstance(result, Exception):
                reason = "发送超时" if isinstance(result, asyncio.TimeoutError) else result
                logger.warning(
                    "广播失败，移除断开的连接 | stream=%s | session=%s | %s",
                    stream_key, session_id, reason,
                )
                self.unregister(session_id)

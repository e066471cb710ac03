"""
app.api.live_stream_ws
~~~~~~~~~~~~~~~~~~~~~~

WebSocket 实时交互接口 —— 观众在线统计与聊天转发。

每条连接即一个会话。连接内的每个文本帧格式为 ``{"event": ..., "data": ...}``:

客户端 → 服务端:
  - ``join-stream``   data: ``"<streamKey>"``
  - ``leave-stream``  data: ``"<streamKey>"``
  - ``chat-message``  data: ``{"streamKey", "username", "message"}``

服务端 → 客户端:
  - ``viewer-count``  data: ``{"streamKey", "viewers", "peakViewers"}``
  - ``chat-message``  data: ``{"id", "username", "message", "timestamp"}``

本端点只负责收帧、解析和限流，所有状态修改都交给 ``SessionLifecycleHandler`` 的有序队列。
"""
from __future__ import annotations

import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.config import settings
from app.core.logging import get_logger, request_id_ctx_var
from app.core.rate_limit import WebSocketRateLimiter
from app.services.session_lifecycle import (
    ChatSubmit,
    Connect,
    Disconnect,
    SessionLifecycleHandler,
    parse_frame,
)

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/ws")
async def websocket_session_endpoint(websocket: WebSocket) -> None:
    """WebSocket 会话端点。

    连接建立即创建会话；断开（主动关闭或传输中断）时自动退出所有房间。
    格式错误的帧和发送过快的聊天消息会被静默丢弃，事件队列已满时新到的帧也会丢弃。
    """
    session_id = uuid.uuid4().hex[:12]
    token = request_id_ctx_var.set(session_id)

    try:
        handler: SessionLifecycleHandler = websocket.app.state.session_lifecycle
        ws_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_RATE_LIMIT_INTERVAL)

        await websocket.accept()
        await handler.submit(Connect(session_id, websocket))

        try:
            while True:
                raw: str = await websocket.receive_text()
                event = parse_frame(session_id, raw)
                if event is None:
                    continue
                if isinstance(event, ChatSubmit) and not ws_limiter.is_allowed(session_id):
                    logger.info("聊天发送过快，已丢弃 | session=%s", session_id)
                    continue
                handler.try_submit(event)
        except WebSocketDisconnect:
            pass  # 正常断开
        except Exception as e:
            logger.error("WebSocket 接收异常: %s | session=%s", e, session_id, exc_info=True)
        finally:
            ws_limiter.remove_client(session_id)
            await handler.submit(Disconnect(session_id))

    finally:
        request_id_ctx_var.reset(token)

"""
app.core.rate_limit
~~~~~~~~~~~~~~~~~~~

HTTP API 与 WebSocket 聊天的限流配置。
"""
from __future__ import annotations

import time

from slowapi import Limiter
from slowapi.util import get_remote_address

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)


# --------- WebSocket 聊天限流器 ---------
class WebSocketRateLimiter:
    """基于内存的简单聊天限流器。

    记录每个会话上一次发送聊天消息的时间，发送过快的消息会被拒绝。
    ``interval_seconds`` 为 0 时不限流。
    """

    def __init__(self, interval_seconds: float = 2.0) -> None:
        self.interval_seconds = interval_seconds
        self._last_message_time: dict[str, float] = {}

    def is_allowed(self, session_id: str) -> bool:
        """检查会话是否允许发送消息。

        Args:
            session_id: 会话唯一标识。

        Returns:
            是否允许发送。如果允许，则同时更新上次发送时间。
        """
        if self.interval_seconds <= 0:
            return True

        now = time.monotonic()
        last_time = self._last_message_time.get(session_id)

        if last_time is None or now - last_time >= self.interval_seconds:
            self._last_message_time[session_id] = now
            return True
        return False

    def remove_client(self, session_id: str) -> None:
        """清理断开连接的会话记录。"""
        self._last_message_time.pop(session_id, None)

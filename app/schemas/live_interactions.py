"""
app.schemas.live_interactions
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播间相关的 Pydantic 模型：WebSocket 事件载荷、聊天记录、观众统计以及 REST 响应。

对外字段沿用前端约定的 camelCase（``streamKey``、``peakViewers`` 等），
Python 侧使用 snake_case 属性名，通过 ``alias`` 映射。
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ── WebSocket 事件名 ──────────────────────────────────────────────────

JOIN_STREAM = "join-stream"
LEAVE_STREAM = "leave-stream"
CHAT_MESSAGE = "chat-message"
VIEWER_COUNT = "viewer-count"


class _CamelModel(BaseModel):
    """允许按属性名或别名构造的基类。"""

    model_config = ConfigDict(populate_by_name=True)


class WsEnvelope(BaseModel):
    """WebSocket 文本帧的统一外层结构：``{"event": ..., "data": ...}``。"""

    event: str = Field(..., description="事件名")
    data: Any = Field(default=None, description="事件载荷")


# ── 聊天 ──────────────────────────────────────────────────────────────

class ChatSubmission(_CamelModel):
    """客户端提交的聊天消息（``chat-message`` 事件载荷）。"""

    stream_key: str = Field(..., alias="streamKey", description="目标直播流")
    username: str = Field(..., description="昵称（客户端自填，无校验）")
    message: str = Field(..., description="消息正文")


class ChatMessage(_CamelModel):
    """一条已受理的聊天消息，持久化与广播共用。"""

    message_id: str = Field(..., description="消息 ID：提交时间戳 + 会话 ID")
    stream_key: str = Field(..., description="所属直播流")
    username: str = Field(..., description="昵称")
    message: str = Field(..., description="消息正文")
    timestamp: int = Field(..., description="提交时间（毫秒时间戳）")

    def to_broadcast(self) -> dict[str, Any]:
        """转换为服务端 ``chat-message`` 事件载荷。"""
        return {
            "id": self.message_id,
            "username": self.username,
            "message": self.message,
            "timestamp": self.timestamp,
        }


class StoredChatMessage(BaseModel):
    """从数据库读出的聊天记录。"""

    message_id: str = Field(..., description="消息 ID")
    stream_key: str = Field(..., description="所属直播流")
    username: str = Field(..., description="昵称")
    message: str = Field(..., description="消息正文")
    timestamp: int = Field(..., description="提交时间（毫秒时间戳）")
    created_at: datetime | None = Field(default=None, description="入库时间")


class ChatStats(BaseModel):
    """某个直播流的聊天统计。"""

    total_messages: int = Field(default=0, description="消息总数")
    first_message: int | None = Field(default=None, description="最早消息时间戳")
    last_message: int | None = Field(default=None, description="最新消息时间戳")
    unique_users: int = Field(default=0, description="发言昵称去重数")


class StreamChatSummary(ChatStats):
    """有聊天记录的直播流摘要。"""

    stream_key: str = Field(..., description="直播流")


class ChatHistoryResponse(_CamelModel):
    """``GET /api/chat/{streamKey}`` 响应。"""

    stream_key: str = Field(..., alias="streamKey", description="直播流")
    stats: ChatStats = Field(..., description="聊天统计")
    messages: list[StoredChatMessage] = Field(..., description="消息列表（时间正序）")


class ChatSearchResponse(_CamelModel):
    """``GET /api/chat/{streamKey}/search`` 响应。"""

    stream_key: str = Field(..., alias="streamKey", description="直播流")
    keyword: str = Field(..., description="搜索关键字")
    messages: list[StoredChatMessage] = Field(..., description="命中消息（时间倒序）")


class CleanupResponse(_CamelModel):
    """``POST /api/chat/cleanup`` 响应。"""

    deleted: int = Field(..., description="删除的消息条数")
    days_to_keep: int = Field(..., alias="daysToKeep", description="保留天数")


# ── 观众在线统计 ──────────────────────────────────────────────────────

class ViewerCountEvent(_CamelModel):
    """服务端 ``viewer-count`` 事件载荷。"""

    stream_key: str = Field(..., alias="streamKey", description="直播流")
    viewers: int = Field(..., description="当前在线人数")
    peak_viewers: int = Field(..., alias="peakViewers", description="峰值在线人数")


class ViewerStats(_CamelModel):
    """单个房间的在线统计快照。"""

    viewers: int = Field(default=0, description="当前在线人数")
    peak_viewers: int = Field(default=0, alias="peakViewers", description="峰值在线人数")
    start_time: int | None = Field(default=None, alias="startTime", description="首位观众进入时间（毫秒）")


class StreamViewerStats(ViewerStats):
    """``GET /api/viewers/{streamKey}`` 响应。"""

    stream_key: str = Field(..., alias="streamKey", description="直播流")


# ── 系统 ──────────────────────────────────────────────────────────────

class MediaConfigData(_CamelModel):
    """``GET /api/config`` 响应：前端播放与推流所需地址。"""

    media_server_url: str = Field(..., alias="mediaServerUrl")
    rtmp_url: str = Field(..., alias="rtmpUrl")
    default_stream_key: str = Field(..., alias="defaultStreamKey")


class MediaServerStatus(_CamelModel):
    """``GET /api/status`` 响应。"""

    status: Literal["online", "offline"] = Field(..., description="媒体服务器状态")
    media_server: Any = Field(
        default=None, alias="mediaServer", description="媒体服务器原始状态",
    )
    error: str | None = Field(default=None, description="离线原因")

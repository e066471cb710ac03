"""
app.services.session_lifecycle
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话生命周期处理器 —— 连接、进入/离开直播流、聊天、断线事件的唯一处理者。

架构设计:
  - 每个 WebSocket 连接的接收协程只负责把原始帧解析成类型化事件，
    并投递到本处理器的 **同一个** 有序队列
  - 处理器内只有一个消费协程，按到达顺序逐个处理事件：
    修改 ``PresenceRegistry`` → 持久化（仅聊天）→ 通过 ``RoomRelay`` 广播
  - 因此任意两个会话的事件都不会在「修改人数 + 读取人数 + 广播」中途交错

会话状态机: ``CONNECTED`` → ``JOINED`` → ``DISCONNECTED``。
"""
from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from fastapi import WebSocket
from pydantic import ValidationError

from app.core.logging import get_logger, request_id_ctx_var
from app.db.chat_repository import ChatRepository
from app.schemas.live_interactions import (
    CHAT_MESSAGE,
    JOIN_STREAM,
    LEAVE_STREAM,
    ChatMessage,
    ChatSubmission,
    WsEnvelope,
)
from app.services.presence_registry import PresenceRegistry
from app.services.room_relay import RoomRelay

logger = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionState(str, Enum):
    """会话状态。"""

    CONNECTED = "connected"
    JOINED = "joined"
    DISCONNECTED = "disconnected"


@dataclass
class Session:
    """一个在线会话（一条 WebSocket 连接）。"""

    session_id: str
    state: SessionState = SessionState.CONNECTED
    stream_keys: set[str] = field(default_factory=set)


# ── 类型化事件 ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Connect:
    session_id: str
    websocket: WebSocket


@dataclass(frozen=True)
class JoinStream:
    session_id: str
    stream_key: Any


@dataclass(frozen=True)
class LeaveStream:
    session_id: str
    stream_key: Any


@dataclass(frozen=True)
class ChatSubmit:
    session_id: str
    payload: Any


@dataclass(frozen=True)
class Disconnect:
    session_id: str


SessionEvent = Union[Connect, JoinStream, LeaveStream, ChatSubmit, Disconnect]

_CLIENT_EVENTS: dict[str, Callable[[str, Any], SessionEvent]] = {
    JOIN_STREAM: JoinStream,
    LEAVE_STREAM: LeaveStream,
    CHAT_MESSAGE: ChatSubmit,
}


def parse_frame(session_id: str, raw: str) -> SessionEvent | None:
    """把客户端文本帧解析为类型化事件。

    帧格式为 ``{"event": "<name>", "data": <payload>}``。
    非法 JSON、缺字段或未知事件名返回 ``None``（直接丢弃）。
    """
    try:
        envelope = WsEnvelope.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError):
        logger.debug("丢弃无法解析的帧 | session=%s", session_id)
        return None

    factory = _CLIENT_EVENTS.get(envelope.event)
    if factory is None:
        logger.debug("丢弃未知事件 | session=%s | event=%s", session_id, envelope.event)
        return None
    return factory(session_id, envelope.data)


def _valid_stream_key(value: Any) -> str | None:
    return value if isinstance(value, str) else None


class SessionLifecycleHandler:
    """会话生命周期处理器（单消费者 actor）。

    Attributes:
        registry: 观众在线登记表。
        relay: 房间广播器。
        repo: 聊天持久化仓库，为 None 时聊天只广播不落库。
        sessions: 当前在线会话。
    """

    def __init__(
        self,
        registry: PresenceRegistry,
        relay: RoomRelay,
        repo: ChatRepository | None = None,
        username_max_length: int = 50,
        message_max_length: int = 500,
        queue_maxsize: int = 1000,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.registry = registry
        self.relay = relay
        self.repo = repo
        self.username_max_length = username_max_length
        self.message_max_length = message_max_length
        self._clock = clock
        self.sessions: dict[str, Session] = {}
        # 客户端帧走 try_submit，满时丢弃
        self._queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue(maxsize=queue_maxsize)
        self._worker: asyncio.Task[None] | None = None

    # ── actor 生命周期 ────────────────────────────────────────────────

    def start(self) -> None:
        """启动消费协程。应在 lifespan startup 中调用。"""
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name="session-lifecycle")
            logger.info("会话处理器已启动")

    async def stop(self) -> None:
        """处理完已入队的事件后停止消费协程。"""
        if self._worker is None:
            return
        await self._queue.put(None)
        await self._worker
        self._worker = None
        logger.info("会话处理器已停止")

    async def submit(self, event: SessionEvent) -> None:
        """把事件投递到有序队列，队列满时等待。

        用于连接与断线事件，它们不能丢失。
        """
        await self._queue.put(event)

    def try_submit(self, event: SessionEvent) -> bool:
        """投递客户端帧事件；队列已满时丢弃并返回 False。"""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "会话事件队列已满，丢弃事件 | session=%s | event=%s",
                event.session_id, type(event).__name__,
            )
            return False
        return True

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                break
            await self.dispatch(event)

    async def dispatch(self, event: SessionEvent) -> None:
        """处理单个事件。任何异常都只记录日志，不会终止处理器。"""
        token = request_id_ctx_var.set(event.session_id)
        try:
            if isinstance(event, Connect):
                self.on_connect(event.session_id, event.websocket)
            elif isinstance(event, JoinStream):
                await self.on_join(event.session_id, event.stream_key)
            elif isinstance(event, LeaveStream):
                await self.on_leave(event.session_id, event.stream_key)
            elif isinstance(event, ChatSubmit):
                await self.on_chat(event.session_id, event.payload)
            elif isinstance(event, Disconnect):
                await self.on_disconnect(event.session_id)
        except Exception as e:
            logger.error("会话事件处理异常: %s | event=%s", e, type(event).__name__, exc_info=True)
        finally:
            request_id_ctx_var.reset(token)

    # ── 事件处理 ──────────────────────────────────────────────────────

    def on_connect(self, session_id: str, websocket: WebSocket) -> None:
        """新连接：创建会话并登记到广播器。"""
        self.sessions[session_id] = Session(session_id=session_id)
        self.relay.register(session_id, websocket)
        logger.info("客户端已连接 | session=%s", session_id)

    async def on_join(self, session_id: str, stream_key: Any) -> None:
        """``join-stream``：登记在线 → 订阅广播组 → 广播人数。"""
        session = self.sessions.get(session_id)
        key = _valid_stream_key(stream_key)
        if session is None or key is None:
            logger.debug("丢弃无效的 join-stream | session=%s", session_id)
            return

        counts = self.registry.join(key, session_id)
        session.stream_keys.add(key)
        session.state = SessionState.JOINED
        self.relay.subscribe(session_id, key)
        logger.info(
            "观众进入直播间 | stream=%s | 在线: %d | 峰值: %d",
            key, counts.current, counts.peak,
        )
        await self.relay.broadcast_viewer_count(key, counts.current, counts.peak)

    async def on_leave(self, session_id: str, stream_key: Any) -> None:
        """``leave-stream``：注销在线 → 退订广播组 → 向剩余观众广播人数。"""
        key = _valid_stream_key(stream_key)
        if key is None:
            logger.debug("丢弃无效的 leave-stream | session=%s", session_id)
            return

        counts = self.registry.leave(key, session_id)
        session = self.sessions.get(session_id)
        if session is not None:
            session.stream_keys.discard(key)
            if not session.stream_keys:
                session.state = SessionState.CONNECTED
        self.relay.unsubscribe(session_id, key)
        logger.info("观众离开直播间 | stream=%s | 在线: %d", key, counts.current)
        await self.relay.broadcast_viewer_count(key, counts.current, counts.peak)

    async def on_chat(self, session_id: str, payload: Any) -> ChatMessage | None:
        """``chat-message``：校验 → 截断 → 持久化 → 广播。

        任一字段缺失或去除首尾空白后为空时静默丢弃，不回复发送者。

        Returns:
            被受理的消息；丢弃时返回 None。
        """
        message = self.build_message(session_id, payload)
        if message is None:
            logger.debug("丢弃无效的聊天消息 | session=%s", session_id)
            return None

        await self._persist(message)
        await self.relay.broadcast_chat_message(message.stream_key, message)
        return message

    async def on_disconnect(self, session_id: str) -> None:
        """断线：退出全部房间并逐个广播人数，随后丢弃会话。"""
        affected = self.registry.leave_all(session_id)
        self.relay.unregister(session_id)

        session = self.sessions.pop(session_id, None)
        if session is not None:
            session.state = SessionState.DISCONNECTED
            session.stream_keys.clear()

        for room in affected:
            await self.relay.broadcast_viewer_count(room.stream_key, room.current, room.peak)
        logger.info("客户端已断开 | session=%s | 影响房间: %d", session_id, len(affected))

    # ── 内部方法 ──────────────────────────────────────────────────────

    def build_message(self, session_id: str, payload: Any) -> ChatMessage | None:
        """校验聊天载荷并生成带 ID 与时间戳的消息。"""
        if not isinstance(payload, dict):
            return None
        try:
            submission = ChatSubmission.model_validate(payload)
        except ValidationError:
            return None

        username = submission.username.strip()
        body = submission.message.strip()
        if not submission.stream_key.strip() or not username or not body:
            return None

        timestamp = self._clock()
        return ChatMessage(
            message_id=f"{timestamp}-{session_id}",
            stream_key=submission.stream_key,
            username=username[: self.username_max_length],
            message=body[: self.message_max_length],
            timestamp=timestamp,
        )

    async def _persist(self, message: ChatMessage) -> None:
        """保存聊天消息；失败只记录日志，不阻塞广播。"""
        if self.repo is None:
            return
        try:
            await self.repo.save_message(message)
        except Exception as e:
            logger.warning(
                "聊天持久化失败，消息仅实时广播 | stream=%s | %s",
                message.stream_key, e, exc_info=True,
            )

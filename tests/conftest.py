"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 内存版 MongoDB（mongomock-motor）、假 WebSocket、
可注入假依赖的 FastAPI 应用，使测试无需真实数据库即可运行。
"""
from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI, WebSocket
from mongomock_motor import AsyncMongoMockClient

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")

from app.core.rate_limit import limiter  # noqa: E402
from app.db.chat_repository import ChatRepository  # noqa: E402
from app.main import create_app  # noqa: E402
from app.schemas.live_interactions import ChatMessage  # noqa: E402
from app.services.presence_registry import PresenceRegistry  # noqa: E402
from app.services.room_relay import RoomRelay  # noqa: E402
from app.services.session_lifecycle import SessionLifecycleHandler  # noqa: E402


@pytest.fixture(autouse=True)
def reset_rate_limits() -> None:
    """每个测试前清空 HTTP 限流计数，避免用例之间互相影响。"""
    limiter.reset()


# ── 假 WebSocket ──────────────────────────────────────────────────────

@pytest.fixture()
def make_websocket() -> Callable[[], MagicMock]:
    """返回一个工厂，每次调用生成一个 ``send_json`` 为 AsyncMock 的假连接。"""

    def _make() -> MagicMock:
        ws = MagicMock(spec=WebSocket)
        ws.send_json = AsyncMock()
        return ws

    return _make


def sent_frames(ws: MagicMock) -> list[dict[str, Any]]:
    """取出假连接收到的全部帧。"""
    return [call.args[0] for call in ws.send_json.call_args_list]


# ── 数据库 ────────────────────────────────────────────────────────────

@pytest.fixture()
def chat_repo() -> ChatRepository:
    """基于 mongomock-motor 的聊天仓库，每个测试一个全新数据库。"""
    client = AsyncMongoMockClient()
    return ChatRepository(client["test_streaming"])


def make_message(
    stream_key: str = "s1",
    username: str = "alice",
    message: str = "hi",
    timestamp: int = 1_700_000_000_000,
    session_id: str = "sess",
) -> ChatMessage:
    return ChatMessage(
        message_id=f"{timestamp}-{session_id}",
        stream_key=stream_key,
        username=username,
        message=message,
        timestamp=timestamp,
    )


# ── FastAPI 应用 ──────────────────────────────────────────────────────

@pytest.fixture()
def app_factory() -> Callable[..., FastAPI]:
    """返回一个工厂：用给定的仓库与登记表组装应用（不连接真实 MongoDB）。"""

    def _factory(
        repo: Any = None,
        registry: PresenceRegistry | None = None,
    ) -> FastAPI:
        presence = registry or PresenceRegistry()

        @asynccontextmanager
        async def fake_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
            lifecycle = SessionLifecycleHandler(
                registry=presence,
                relay=RoomRelay(),
                repo=repo,
            )
            lifecycle.start()
            app.state.presence_registry = presence
            app.state.chat_repository = repo
            app.state.session_lifecycle = lifecycle
            yield
            await lifecycle.stop()

        return create_app(lifespan_handler=fake_lifespan)

    return _factory

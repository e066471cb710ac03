"""
app.api.deps
~~~~~~~~~~~~

FastAPI 依赖：从 ``app.state`` 取出 lifespan 中创建的全局对象。
"""
from fastapi import Request

from app.db.chat_repository import ChatRepository
from app.services.presence_registry import PresenceRegistry


def get_presence_registry(request: Request) -> PresenceRegistry:
    return request.app.state.presence_registry


def get_chat_repository(request: Request) -> ChatRepository:
    return request.app.state.chat_repository

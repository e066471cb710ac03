"""
app.db.chat_repository
~~~~~~~~~~~~~~~~~~~~~~

聊天记录持久化仓库 —— 封装 MongoDB ``chat_messages`` 集合的增查删操作。

每条消息一个文档（扁平设计），字段与前端约定保持一致:
``message_id, stream_key, username, message, timestamp, created_at``。
``timestamp`` 为提交时的毫秒时间戳，``created_at`` 为入库时间。
``stream_key`` 与 ``timestamp`` 两个索引在启动时由 ``app.db.connect_mongo`` 建立。
"""
from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.logging import get_logger
from app.db import CHAT_COLLECTION
from app.schemas.live_interactions import (
    ChatMessage,
    ChatStats,
    StoredChatMessage,
    StreamChatSummary,
)

logger = get_logger(__name__)

# 查询时返回的字段
_PROJECTION = {
    "_id": 0,
    "message_id": 1,
    "stream_key": 1,
    "username": 1,
    "message": 1,
    "timestamp": 1,
    "created_at": 1,
}

_DAY_MS = 24 * 60 * 60 * 1000


class ChatRepository:
    """聊天消息持久化仓库。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._collection = db[CHAT_COLLECTION]

    async def save_message(self, message: ChatMessage) -> None:
        """保存一条聊天消息。

        Args:
            message: 已通过校验和截断的聊天消息。
        """
        doc = {
            "message_id": message.message_id,
            "stream_key": message.stream_key,
            "username": message.username,
            "message": message.message,
            "timestamp": message.timestamp,
            "created_at": datetime.now(timezone.utc),
        }
        await self._collection.insert_one(doc)

    async def get_history(
        self,
        stream_key: str,
        limit: int = 1000,
        offset: int = 0,
        start_date: int | None = None,
        end_date: int | None = None,
    ) -> list[StoredChatMessage]:
        """获取指定直播流的聊天记录（分页，按时间正序）。

        Args:
            stream_key: 直播流。
            limit: 最大返回条数。
            offset: 跳过条数。
            start_date: 起始毫秒时间戳（含）。
            end_date: 结束毫秒时间戳（含）。

        Returns:
            消息列表，按 ``timestamp`` 升序。
        """
        query: dict[str, Any] = {"stream_key": stream_key}
        time_range: dict[str, int] = {}
        if start_date is not None:
            time_range["$gte"] = start_date
        if end_date is not None:
            time_range["$lte"] = end_date
        if time_range:
            query["timestamp"] = time_range

        cursor = (
            self._collection
            .find(query, _PROJECTION)
            .sort([("timestamp", 1), ("created_at", 1)])
            .skip(offset)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        return [StoredChatMessage(**doc) for doc in docs]

    async def get_stats(self, stream_key: str) -> ChatStats:
        """获取指定直播流的聊天统计（总数、首末消息时间、发言人数）。"""
        query = {"stream_key": stream_key}

        total = await self._collection.count_documents(query)
        if total == 0:
            return ChatStats()

        first = await self._edge_timestamp(query, ascending=True)
        last = await self._edge_timestamp(query, ascending=False)
        usernames = await self._collection.distinct("username", query)
        return ChatStats(
            total_messages=total,
            first_message=first,
            last_message=last,
            unique_users=len(usernames),
        )

    async def get_all_streams(self) -> list[StreamChatSummary]:
        """列出所有有聊天记录的直播流，最近有消息的排在前面。"""
        stream_keys = await self._collection.distinct("stream_key")

        summaries: list[StreamChatSummary] = []
        for stream_key in stream_keys:
            stats = await self.get_stats(stream_key)
            summaries.append(StreamChatSummary(stream_key=stream_key, **stats.model_dump()))
        summaries.sort(key=lambda s: s.last_message or 0, reverse=True)
        return summaries

    async def search_messages(
        self,
        stream_key: str,
        keyword: str,
        limit: int = 100,
    ) -> list[StoredChatMessage]:
        """按关键字搜索消息正文（不区分大小写的子串匹配，按时间倒序）。"""
        query = {
            "stream_key": stream_key,
            "message": {"$regex": re.escape(keyword), "$options": "i"},
        }
        cursor = (
            self._collection
            .find(query, _PROJECTION)
            .sort("timestamp", -1)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        return [StoredChatMessage(**doc) for doc in docs]

    async def clean_old_messages(self, days_to_keep: int = 30) -> int:
        """删除早于保留期的消息。

        Args:
            days_to_keep: 保留最近多少天的消息。

        Returns:
            删除的消息条数。
        """
        cutoff = int(time.time() * 1000) - days_to_keep * _DAY_MS
        result = await self._collection.delete_many({"timestamp": {"$lt": cutoff}})
        if result.deleted_count:
            logger.info("已清理过期聊天记录 | deleted=%d | days=%d", result.deleted_count, days_to_keep)
        return result.deleted_count

    async def _edge_timestamp(self, query: dict[str, Any], ascending: bool) -> int | None:
        cursor = (
            self._collection
            .find(query, {"_id": 0, "timestamp": 1})
            .sort("timestamp", 1 if ascending else -1)
            .limit(1)
        )
        docs = await cursor.to_list(length=1)
        return docs[0]["timestamp"] if docs else None

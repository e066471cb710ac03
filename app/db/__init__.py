"""
app.db
~~~~~~

聊天记录存储的 MongoDB 连接。

进程启动时 ``connect_mongo()`` 建立连接池、探活，并为 ``chat_messages``
集合建好查询所需的索引；之后 ``ChatRepository`` 直接复用同一个数据库句柄。
关闭时调用 ``close_mongo()``。
"""
from __future__ import annotations

from urllib.parse import urlparse, urlunparse

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

# 聊天消息集合
CHAT_COLLECTION = "chat_messages"

# 按直播流筛选、按时间范围查询
CHAT_INDEXES: tuple[tuple[str, str], ...] = (
    ("stream_key", "idx_stream_key"),
    ("timestamp", "idx_timestamp"),
)

_client: AsyncIOMotorClient | None = None


def _mask_uri(uri: str) -> str:
    """隐藏 URI 中的密码，只用于日志输出。"""
    parsed = urlparse(uri)
    if not parsed.password:
        return uri
    netloc = f"{parsed.username}:***@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


async def ensure_chat_indexes(db: AsyncIOMotorDatabase) -> None:
    """为聊天集合创建索引（已存在时 MongoDB 直接跳过）。"""
    collection = db[CHAT_COLLECTION]
    for field, name in CHAT_INDEXES:
        await collection.create_index([(field, 1)], name=name)
    logger.debug("%s 索引已就绪", CHAT_COLLECTION)


async def connect_mongo() -> None:
    """连接聊天存储并建好索引。应在 lifespan startup 中调用一次。"""
    global _client
    _client = AsyncIOMotorClient(settings.MONGO_URI)
    db = _client[settings.MONGO_DB_NAME]

    try:
        await db.command("ping")
        await ensure_chat_indexes(db)
    except Exception as e:
        logger.error("聊天存储初始化失败: %s | uri=%s", e, _mask_uri(settings.MONGO_URI), exc_info=True)
        raise

    logger.info(
        "聊天存储已就绪 | uri=%s | db=%s | collection=%s",
        _mask_uri(settings.MONGO_URI),
        settings.MONGO_DB_NAME,
        CHAT_COLLECTION,
    )


async def close_mongo() -> None:
    """关闭连接池。应在 lifespan shutdown 中调用。"""
    global _client
    if _client is None:
        return
    _client.close()
    _client = None
    logger.info("聊天存储连接已关闭")


def get_database() -> AsyncIOMotorDatabase:
    """返回聊天存储所在的数据库。

    Raises:
        RuntimeError: 在 ``connect_mongo()`` 之前调用。
    """
    if _client is None:
        raise RuntimeError("聊天存储尚未连接，请先调用 connect_mongo()")
    return _client[settings.MONGO_DB_NAME]

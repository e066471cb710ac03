"""
app.services.retention
~~~~~~~~~~~~~~~~~~~~~~

聊天记录保留策略 —— 后台周期性删除过期消息。
"""
from __future__ import annotations

import asyncio

from app.core.logging import get_logger
from app.db.chat_repository import ChatRepository

logger = get_logger(__name__)


async def run_retention_loop(
    repo: ChatRepository,
    days_to_keep: int,
    interval_seconds: float,
) -> None:
    """每隔 ``interval_seconds`` 清理一次早于 ``days_to_keep`` 天的消息，直到被取消。

    单次清理失败只记录日志，下一个周期继续。
    """
    logger.info("聊天记录清理任务已启动 | days=%d | interval=%.0fs", days_to_keep, interval_seconds)
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await repo.clean_old_messages(days_to_keep=days_to_keep)
        except Exception as e:
            logger.warning("聊天记录清理失败: %s", e, exc_info=True)

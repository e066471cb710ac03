"""
app.api.chat
~~~~~~~~~~~~

聊天记录 REST 接口 —— 历史回看、文本导出、关键字搜索与过期清理。

端点:
  - ``GET  /chat``                        → 有聊天记录的直播流列表
  - ``GET  /chat/{stream_key}``           → 聊天历史（分页 + 时间范围）
  - ``GET  /chat/{stream_key}/download``  → 纯文本聊天记录下载
  - ``GET  /chat/{stream_key}/search``    → 关键字搜索
  - ``POST /chat/cleanup``                → 删除过期消息
"""
import re
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse

from app.api.deps import get_chat_repository
from app.core.config import settings
from app.core.rate_limit import limiter
from app.db.chat_repository import ChatRepository
from app.schemas.live_interactions import (
    ChatHistoryResponse,
    ChatSearchResponse,
    CleanupResponse,
    StoredChatMessage,
    StreamChatSummary,
)

router: APIRouter = APIRouter()

_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def _format_ms(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).strftime(_TIME_FORMAT)


async def _full_history(repo: ChatRepository, stream_key: str) -> list[StoredChatMessage]:
    """按页读取直播流的全部聊天记录（时间正序）。"""
    page_size = settings.CHAT_HISTORY_DEFAULT_LIMIT
    messages: list[StoredChatMessage] = []
    while True:
        page = await repo.get_history(stream_key, limit=page_size, offset=len(messages))
        messages.extend(page)
        if len(page) < page_size:
            return messages


def render_transcript(stream_key: str, messages: list[StoredChatMessage]) -> str:
    """把聊天记录渲染为纯文本，每条消息一行（UTC 时间）。"""
    lines = [
        f"Chat transcript | stream: {stream_key}",
        f"Exported at: {datetime.now(timezone.utc).strftime(_TIME_FORMAT)} UTC",
        f"Messages: {len(messages)}",
        "",
    ]
    lines.extend(
        f"[{_format_ms(msg.timestamp)}] {msg.username}: {msg.message}"
        for msg in messages
    )
    return "\n".join(lines) + "\n"


# ── 查询端点 ──────────────────────────────────────────────────────────

@router.get("/chat", summary="有聊天记录的直播流列表", response_model=list[StreamChatSummary])
@limiter.limit("10/second")
async def list_streams_with_chat(
    request: Request,
    repo: ChatRepository = Depends(get_chat_repository),
):
    """返回所有有聊天记录的直播流摘要，最近有消息的排在前面。"""
    return await repo.get_all_streams()


@router.get("/chat/{stream_key}", summary="获取聊天历史", response_model=ChatHistoryResponse)
@limiter.limit("10/second")
async def get_chat_history(
    request: Request,
    stream_key: str,
    limit: int = Query(settings.CHAT_HISTORY_DEFAULT_LIMIT, ge=1, le=5000, description="最大条数"),
    offset: int = Query(0, ge=0, description="跳过条数（分页偏移）"),
    start_date: int | None = Query(None, alias="startDate", description="起始毫秒时间戳（含）"),
    end_date: int | None = Query(None, alias="endDate", description="结束毫秒时间戳（含）"),
    repo: ChatRepository = Depends(get_chat_repository),
):
    """获取指定直播流的聊天历史（按时间正序）与统计信息。"""
    messages = await repo.get_history(
        stream_key,
        limit=limit,
        offset=offset,
        start_date=start_date,
        end_date=end_date,
    )
    stats = await repo.get_stats(stream_key)
    return ChatHistoryResponse(stream_key=stream_key, stats=stats, messages=messages)


@router.get("/chat/{stream_key}/download", summary="下载聊天记录", response_class=PlainTextResponse)
@limiter.limit("2/second")
async def download_chat(
    request: Request,
    stream_key: str,
    repo: ChatRepository = Depends(get_chat_repository),
):
    """以纯文本附件形式导出指定直播流的全部聊天记录。"""
    messages = await _full_history(repo, stream_key)
    safe_key = re.sub(r"[^A-Za-z0-9_-]", "_", stream_key)
    filename = f"chat-{safe_key}-{datetime.now(timezone.utc):%Y%m%d}.txt"
    return PlainTextResponse(
        render_transcript(stream_key, messages),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/chat/{stream_key}/search", summary="搜索聊天记录", response_model=ChatSearchResponse)
@limiter.limit("10/second")
async def search_chat(
    request: Request,
    stream_key: str,
    q: str = Query(..., min_length=1, max_length=100, description="关键字"),
    repo: ChatRepository = Depends(get_chat_repository),
):
    """按关键字搜索消息正文（不区分大小写，时间倒序）。"""
    messages = await repo.search_messages(stream_key, q, limit=settings.CHAT_SEARCH_LIMIT)
    return ChatSearchResponse(stream_key=stream_key, keyword=q, messages=messages)


# ── 维护端点 ──────────────────────────────────────────────────────────

@router.post("/chat/cleanup", summary="清理过期聊天记录", response_model=CleanupResponse)
@limiter.limit("1/second")
async def cleanup_chat(
    request: Request,
    days: int = Query(settings.CHAT_RETENTION_DAYS, ge=1, description="保留天数"),
    repo: ChatRepository = Depends(get_chat_repository),
):
    """删除早于保留期的聊天消息。"""
    deleted = await repo.clean_old_messages(days_to_keep=days)
    return CleanupResponse(deleted=deleted, days_to_keep=days)

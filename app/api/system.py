"""
app.api.system
~~~~~~~~~~~~~~

系统信息接口 —— 前端播放配置与媒体服务器探活。

媒体服务器（RTMP 接入 / HLS 转码）是外部协作方，这里只通过其 HTTP API 探测在线状态。
"""
import httpx
from fastapi import APIRouter, Request

from app.core.config import settings
from app.core.logging import get_logger
from app.core.rate_limit import limiter
from app.schemas.live_interactions import MediaConfigData, MediaServerStatus

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.get("/config", summary="播放与推流配置", response_model=MediaConfigData)
async def media_config():
    """返回前端需要的媒体服务器地址、推流地址与默认推流密钥。"""
    return MediaConfigData(
        media_server_url=settings.MEDIA_SERVER_URL,
        rtmp_url=settings.RTMP_URL,
        default_stream_key=settings.DEFAULT_STREAM_KEY,
    )


@router.get("/status", summary="媒体服务器状态", response_model=MediaServerStatus)
@limiter.limit("2/second")
async def media_server_status(request: Request):
    """探测媒体服务器 HTTP API，离线时不报错而是返回 ``offline``。"""
    try:
        async with httpx.AsyncClient(timeout=settings.MEDIA_SERVER_TIMEOUT) as client:
            response = await client.get(settings.MEDIA_SERVER_API_URL)
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("媒体服务器不可用: %s", e)
        return MediaServerStatus(status="offline", error="Media server not running")

    return MediaServerStatus(status="online", media_server=data)

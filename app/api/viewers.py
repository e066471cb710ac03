"""
app.api.viewers
~~~~~~~~~~~~~~~

观众在线统计 REST 接口，数据来自内存中的 ``PresenceRegistry``。

端点:
  - ``GET /viewers``               → 所有房间的统计
  - ``GET /viewers/{stream_key}``  → 单个房间的统计（不存在时返回全零）
"""
from fastapi import APIRouter, Depends, Request

from app.api.deps import get_presence_registry
from app.core.rate_limit import limiter
from app.schemas.live_interactions import StreamViewerStats, ViewerStats
from app.services.presence_registry import PresenceRegistry

router: APIRouter = APIRouter()


@router.get("/viewers", summary="所有房间的在线统计", response_model=dict[str, ViewerStats])
@limiter.limit("10/second")
async def all_viewer_stats(
    request: Request,
    registry: PresenceRegistry = Depends(get_presence_registry),
):
    """返回 ``{streamKey: {viewers, peakViewers, startTime}}``。"""
    return registry.all_stats()


@router.get("/viewers/{stream_key}", summary="单个房间的在线统计", response_model=StreamViewerStats)
@limiter.limit("10/second")
async def viewer_stats(
    request: Request,
    stream_key: str,
    registry: PresenceRegistry = Depends(get_presence_registry),
):
    """返回指定直播流的在线人数、峰值与开播时间。"""
    stats = registry.stats_for(stream_key)
    return StreamViewerStats(stream_key=stream_key, **stats.model_dump())

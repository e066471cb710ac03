"""
app.main
~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api import chat, live_stream_ws, system, viewers
from app.core.config import settings
from app.core.logging import get_logger, setup_logging
from app.core.rate_limit import limiter
from app.db import close_mongo, connect_mongo, get_database
from app.db.chat_repository import ChatRepository
from app.services.presence_registry import PresenceRegistry
from app.services.retention import run_retention_loop
from app.services.room_relay import RoomRelay
from app.services.session_lifecycle import SessionLifecycleHandler

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    await connect_mongo()

    registry = PresenceRegistry(retain_empty_rooms=settings.PRESENCE_RETAIN_EMPTY_ROOMS)
    repo = ChatRepository(get_database())
    lifecycle = SessionLifecycleHandler(
        registry=registry,
        relay=RoomRelay(send_timeout=settings.WS_SEND_TIMEOUT),
        repo=repo,
        username_max_length=settings.CHAT_USERNAME_MAX_LENGTH,
        message_max_length=settings.CHAT_MESSAGE_MAX_LENGTH,
        queue_maxsize=settings.SESSION_EVENT_QUEUE_SIZE,
    )
    lifecycle.start()

    app.state.presence_registry = registry
    app.state.chat_repository = repo
    app.state.session_lifecycle = lifecycle

    cleanup_task: asyncio.Task[None] | None = None
    if settings.CHAT_CLEANUP_INTERVAL_SECONDS > 0:
        cleanup_task = asyncio.create_task(
            run_retention_loop(
                repo,
                days_to_keep=settings.CHAT_RETENTION_DAYS,
                interval_seconds=settings.CHAT_CLEANUP_INTERVAL_SECONDS,
            ),
        )

    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    if cleanup_task is not None:
        cleanup_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await cleanup_task
    await lifecycle.stop()
    await close_mongo()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

def create_app(
    lifespan_handler: Callable[[FastAPI], AbstractAsyncContextManager[None]] = lifespan,
) -> FastAPI:
    """组装 FastAPI 应用。测试可传入自定义 lifespan 以注入假依赖。"""
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="直播观众在线统计与聊天转发 API",
        version=settings.VERSION,
        debug=settings.debug,
        lifespan=lifespan_handler,
    )

    # ── 限流 ──
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # ── CORS ──
    if settings.allow_cors_all_origins:
        # dev / test 环境：允许所有来源，方便本地调试
        application.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    else:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=[],
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    # ── 路由挂载 ──
    application.include_router(chat.router, prefix="/api", tags=["Chat History"])
    application.include_router(viewers.router, prefix="/api", tags=["Viewers"])
    application.include_router(system.router, prefix="/api", tags=["System"])
    application.include_router(live_stream_ws.router, tags=["WebSocket Live"])

    application.add_exception_handler(Exception, global_exception_handler)
    application.add_api_route("/health", health_check, methods=["GET"], tags=["System"])
    return application


# ── 全局异常处理器 ────────────────────────────────────────────────────

async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 JSON 错误体。

    避免 FastAPI 默认返回纯文本错误页面，保持 JSON 响应一致性。
    """
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    return JSONResponse(status_code=500, content={"error": detail})


async def health_check() -> JSONResponse:
    """验证服务是否正常运行。"""
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "debug": settings.debug,
            "log_level": settings.effective_log_level,
        },
    )


app: FastAPI = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )

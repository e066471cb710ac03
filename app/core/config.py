"""
app.core.config
~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Stream Presence Backend", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=3000, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")

    # ── MongoDB ───────────────────────────────────────────────────────
    MONGO_URI: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB 连接串",
    )
    MONGO_DB_NAME: str = Field(default="streaming", description="数据库名称")

    # ── 聊天 ──────────────────────────────────────────────────────────
    CHAT_USERNAME_MAX_LENGTH: int = Field(default=50, description="用户名最大长度（超出截断）")
    CHAT_MESSAGE_MAX_LENGTH: int = Field(default=500, description="消息正文最大长度（超出截断）")
    CHAT_HISTORY_DEFAULT_LIMIT: int = Field(default=1000, description="历史查询默认条数")
    CHAT_SEARCH_LIMIT: int = Field(default=100, description="关键字搜索最大返回条数")
    CHAT_RETENTION_DAYS: int = Field(default=30, description="聊天记录保留天数")
    CHAT_CLEANUP_INTERVAL_SECONDS: float = Field(
        default=0.0,
        description="后台清理过期聊天记录的周期（秒），0 表示关闭",
    )

    # ── 观众在线统计 ──────────────────────────────────────────────────
    PRESENCE_RETAIN_EMPTY_ROOMS: bool = Field(
        default=True,
        description="房间清空后是否保留峰值与开播时间（默认保留，与旧版行为一致）",
    )

    # ── 会话事件处理 ──────────────────────────────────────────────────
    SESSION_EVENT_QUEUE_SIZE: int = Field(
        default=1000,
        description="会话事件队列容量，满时丢弃客户端帧",
    )
    WS_SEND_TIMEOUT: float = Field(
        default=5.0,
        description="单个连接发送一帧的超时（秒），超时视为连接失效",
    )

    # ── 媒体服务器（外部协作方） ──────────────────────────────────────
    MEDIA_SERVER_URL: str = Field(
        default="http://localhost:8000",
        description="HLS 播放地址（下发给前端）",
    )
    MEDIA_SERVER_API_URL: str = Field(
        default="http://localhost:8000/api/server",
        description="媒体服务器状态 API，用于 /api/status 探活",
    )
    MEDIA_SERVER_TIMEOUT: float = Field(default=3.0, description="探活请求超时（秒）")
    RTMP_URL: str = Field(default="rtmp://localhost:1935/live", description="推流地址")
    DEFAULT_STREAM_KEY: str = Field(default="stream", description="默认推流密钥")

    # ── 限流 ──────────────────────────────────────────────────────────
    WS_RATE_LIMIT_INTERVAL: float = Field(
        default=0.0,
        description="同一会话两条聊天消息之间的最小间隔（秒），0 表示不限流",
    )

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 先加载 .env.{env} 再加载 .env，前者优先级更高
    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """根据环境自动推断日志级别。

        - dev  → INFO
        - test → DEBUG（方便排查测试失败）
        - prod → WARNING（减少噪音）

        如果环境变量中显式设置了 LOG_LEVEL，会覆盖此默认推断。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()

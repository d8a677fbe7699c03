"""
应用配置：从环境变量读取配置
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """应用配置类"""

    # 项目根目录
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT.parent / ".env"),  # 从项目根目录读取 .env
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API配置
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "礼物订阅履约服务"
    CORS_ORIGINS: List[str] = ["*"]  # CORS允许的源

    # 数据库配置
    DATABASE_URL: str = ""
    DATABASE_ECHO: bool = False

    # Redis配置
    REDIS_URL: str = "redis://localhost:6379/0"

    # 缓存配置（access_token 等，key 前缀区分）
    CACHE_ENABLED: bool = True
    CACHE_KEY_PREFIX: str = "cache:"

    # Celery配置（不填则与 REDIS_URL 一致，只维护一份 Redis 地址即可）
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    # 安全配置
    JWT_SECRET_KEY: str = "your-jwt-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    # 支付回调共享令牌（网关验签在上游完成，这里只校验转发方）；为空则不校验
    PAYMENT_NOTIFY_TOKEN: str = ""

    # 微信小程序配置
    WECHAT_APPID: str = ""
    WECHAT_SECRET: str = ""
    WECHAT_API_BASE: str = "https://api.weixin.qq.com"
    WECHAT_MINIPROGRAM_STATE: str = "formal"  # developer | trial | formal
    WECHAT_ACCESS_TOKEN_TTL: int = 7000  # 微信 access_token 有效期 7200 秒，提前过期
    WECHAT_HTTP_TIMEOUT: float = 10.0
    WECHAT_TOKEN_WAIT_ROUNDS: int = 10  # 其他 worker 刷新 access_token 时的等待轮数，每轮 0.2 秒

    # 订阅消息配置
    NOTIFICATION_ENABLED: bool = True
    NOTIFICATION_TRANSPORT: str = "wechat"  # wechat | fake
    NOTIFICATION_DRAIN_BATCH: int = 100  # 补偿任务每次处理的待发送通知数
    NOTIFICATION_DRAIN_INTERVAL: float = 60.0  # 补偿任务执行间隔（秒）
    NOTIFICATION_SUBMIT_TIMEOUT: float = 10.0  # 提交 Celery 任务的超时（秒）
    NOTIFICATION_ASYNC: bool = True  # False 时在请求内直接发送（本地开发、测试）

    # 发货计划配置
    ONCE_CUTOFF_HOUR: int = 16  # 16:00 之后下单顺延一天
    ONCE_WINDOW_DAYS: int = 3  # 一次性发货：3天内发货
    INTERVAL_WINDOW_DAYS: int = 7  # 固定间隔：一周内发货
    DEFAULT_DELIVERY_INTERVAL_DAYS: int = 30
    SOLAR_TERM_FALLBACK_INTERVAL_DAYS: int = 90  # 节气不足或不可用时的补充间隔
    DELIVERY_NO_PADDING: int = 5  # 发货编号日序号位数

    # 礼物领取配置
    GIFT_CLAIM_EXPIRE_HOURS: int = 48

    # 操作审计：是否记录关键操作到 audit_log 表
    AUDIT_LOG_ENABLED: bool = True

    # 日志配置
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Path = PROJECT_ROOT / "logs" / "app.log"


# 创建全局配置实例
settings = Settings()

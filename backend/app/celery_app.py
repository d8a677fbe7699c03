"""
Celery应用配置
"""
from urllib.parse import urlparse, urlunparse, parse_qs, urlencode
from celery import Celery
from app.core.config import settings


def _ensure_rediss_ssl_cert_reqs(url: str, default: str = "CERT_NONE") -> str:
    """rediss:// URL 必须带 ssl_cert_reqs 参数，否则 Celery Redis 后端会报错。"""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = [default]
    return urlunparse(parsed._replace(query=urlencode(qs, doseq=True)))


# 未单独配置时与 REDIS_URL 一致
_broker_url = _ensure_rediss_ssl_cert_reqs(settings.CELERY_BROKER_URL or settings.REDIS_URL)
_backend_url = _ensure_rediss_ssl_cert_reqs(settings.CELERY_RESULT_BACKEND or settings.REDIS_URL)

celery_app = Celery(
    "gift_fulfillment",
    broker=_broker_url,
    backend=_backend_url,
    include=["app.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=3600,
    timezone="Asia/Shanghai",
    enable_utc=False,
    worker_concurrency=2,
    # 发送失败由发件箱补偿任务兜底，任务本身不做 acks_late 重投
    task_acks_late=False,
    task_soft_time_limit=30,
    task_time_limit=60,
    task_routes={"notifications.*": {"queue": "notifications"}},
    task_default_queue="default",
    beat_schedule={
        "drain-notification-outbox": {
            "task": "notifications.drain",
            "schedule": settings.NOTIFICATION_DRAIN_INTERVAL,
        },
    },
)

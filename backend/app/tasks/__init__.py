"""
Celery 任务模块：订阅消息发送与补偿
"""
from app.tasks.notification_tasks import (
    dispatch_notification_task,
    drain_notifications_task,
)

__all__ = [
    "dispatch_notification_task",
    "drain_notifications_task",
]

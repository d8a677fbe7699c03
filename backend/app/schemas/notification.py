"""
订阅消息授权Schema
"""
from typing import List

from pydantic import BaseModel, Field


class SubscriptionPermissionRequest(BaseModel):
    """小程序 requestSubscribeMessage 的结果"""
    granted_templates: List[str] = Field(default_factory=list)
    denied_templates: List[str] = Field(default_factory=list)


class SubscriptionPermissionResponse(BaseModel):
    created_count: int
    updated_count: int
    denied_count: int

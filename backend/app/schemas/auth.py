"""
认证相关Schema
"""
from pydantic import BaseModel


class CurrentUser(BaseModel):
    """从访问令牌解析出的当前用户"""
    id: int
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

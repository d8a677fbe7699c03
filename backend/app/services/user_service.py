"""
用户服务：资料、收货地址、用户关系维护
"""
import logging
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_

from app.models.user import User, UserAddress, UserRelation
from app.schemas.order import AddressInfo, ReceiverProfile

logger = logging.getLogger(__name__)


class UserService:
    """用户服务类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: int) -> Optional[User]:
        """获取用户"""
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def update_profile(self, user_id: int, phone: Optional[str], profile: Optional[ReceiverProfile]) -> None:
        """领取礼物时补全收礼人资料，未提供的字段保持不变"""
        user = await self.get_user(user_id)
        if not user:
            return
        if profile and profile.nickname:
            user.nickname = profile.nickname
        if profile and profile.avatar:
            user.avatar = profile.avatar
        if phone:
            user.phone = phone
        await self.db.flush()

    async def upsert_default_address(self, user_id: int, address: AddressInfo) -> UserAddress:
        """用户已有地址则更新第一条，否则新建为默认地址"""
        result = await self.db.execute(
            select(UserAddress).where(UserAddress.user_id == user_id).order_by(UserAddress.id.asc()).limit(1)
        )
        existing = result.scalar_one_or_none()
        fields = address.to_columns()
        if existing:
            for key, value in fields.items():
                setattr(existing, key, value)
            await self.db.flush()
            return existing

        new_address = UserAddress(user_id=user_id, is_default=True, **fields)
        self.db.add(new_address)
        await self.db.flush()
        logger.info("成功维护用户地址: %s, 地址ID: %s", user_id, new_address.id)
        return new_address

    async def ensure_relation(
        self,
        sender_id: int,
        receiver_id: int,
        relation_type: Optional[int] = None,
    ) -> Tuple[bool, Optional[UserRelation]]:
        """建立送礼人与收礼人的双向关系，已存在任一方向则跳过。返回 (是否新建, 送礼人一侧的关系)"""
        result = await self.db.execute(
            select(UserRelation).where(
                or_(
                    (UserRelation.user_id == sender_id) & (UserRelation.friend_user_id == receiver_id),
                    (UserRelation.user_id == receiver_id) & (UserRelation.friend_user_id == sender_id),
                )
            ).limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing:
            logger.debug("用户关系已存在，跳过创建 %s ↔ %s", sender_id, receiver_id)
            return False, existing

        rtype = relation_type or 1  # 默认为好友
        suffix = f"：{relation_type}" if relation_type else ""
        forward = UserRelation(
            user_id=sender_id,
            friend_user_id=receiver_id,
            relation_type=rtype,
            remark=f"通过赠送礼物建立关系{suffix}",
        )
        backward = UserRelation(
            user_id=receiver_id,
            friend_user_id=sender_id,
            relation_type=rtype,
            remark=f"通过接收礼物建立关系{suffix}",
        )
        self.db.add_all([forward, backward])
        await self.db.flush()
        logger.info("成功建立用户关系: %s ↔ %s, 类型: %s", sender_id, receiver_id, rtype)
        return True, forward

"""
订单 / 礼物领取相关Schema
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AddressInfo(BaseModel):
    """收货地址（字段与微信 chooseAddress 返回值一致，接受驼峰或下划线）"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_name: str = Field(..., min_length=1)
    tel_number: str = Field(..., min_length=1)
    detail_info: str = Field(..., min_length=1)
    province_name: Optional[str] = None
    city_name: Optional[str] = None
    county_name: Optional[str] = None
    street_name: Optional[str] = None
    postal_code: Optional[str] = None
    national_code: Optional[str] = None
    national_code_full: Optional[str] = None

    def to_columns(self) -> Dict[str, Optional[str]]:
        """user_addresses 表字段"""
        return self.model_dump()

    def to_receiver_snapshot(self) -> Dict[str, Optional[str]]:
        """delivery_plans 表上的收货信息快照"""
        return {
            "receiver_name": self.user_name,
            "receiver_phone": self.tel_number,
            "receiver_province": self.province_name,
            "receiver_city": self.city_name,
            "receiver_area": self.county_name,
            "receiver_address": self.detail_info,
        }


class ReceiverProfile(BaseModel):
    """收礼人资料"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    selected_relationship: Optional[int] = None
    nickname: Optional[str] = None
    avatar: Optional[str] = None


class ReceiveGiftRequest(BaseModel):
    """领取礼物请求"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    address: AddressInfo
    order_item_id: Optional[int] = None  # 多人领取时可指定商品
    user_info: Optional[ReceiverProfile] = None


class DeliveryPlanBrief(BaseModel):
    id: int
    order_item_id: int
    delivery_sequence: int
    delivery_start_date: datetime
    delivery_end_date: datetime
    status: int
    solar_term_id: Optional[int] = None
    remark: Optional[str] = None

    class Config:
        from_attributes = True


class ReceivedItem(BaseModel):
    id: int
    product_id: int
    quantity: int
    gift_status: int
    receiver_id: Optional[int] = None
    received_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReceiveGiftResponse(BaseModel):
    """领取礼物响应"""
    order_id: int
    order_no: str
    sender_id: int
    received_items: List[ReceivedItem]
    delivery_plans: List[DeliveryPlanBrief]
    message: str = "礼物领取成功"


class ReceiveStatusResponse(BaseModel):
    """礼物可领取状态"""
    order_id: int
    order_no: str
    gift_type: Optional[int] = None
    can_receive: bool
    reason: str = ""
    has_received: bool = False
    available_count: int
    received_count: int
    total_count: int
    expired_at: Optional[datetime] = None

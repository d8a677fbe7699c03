"""
发货计划运营操作Schema
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class BatchConfirmRequest(BaseModel):
    """批量确认发货计划"""
    delivery_plan_ids: List[int] = Field(..., min_length=1)
    # 发货计划ID -> 订阅商品ID
    subscription_product_mappings: Dict[int, int] = Field(default_factory=dict)


class BatchConfirmResponse(BaseModel):
    confirmed_count: int
    delivery_numbers: List[str]
    subscription_mapping_count: int
    message: str = ""


class BatchShipRequest(BaseModel):
    """批量发货"""
    delivery_plan_ids: List[int] = Field(..., min_length=1)
    express_company: str = Field(..., min_length=1)
    express_number: str = Field(..., min_length=1)
    remark: Optional[str] = None


class BatchShipResponse(BaseModel):
    shipped_count: int
    updated_order_items: int
    completed_orders: int
    message: str = ""

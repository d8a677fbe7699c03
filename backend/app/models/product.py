"""
商品模型：可购买商品及其订阅策略、节气轮换的订阅商品
"""
from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime
from sqlalchemy.sql import func
from app.core.database import Base


class Product(Base):
    """商品表"""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    product_name = Column(String(100), nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, default=True)
    # 订阅策略（支付成功时复制到订单项，之后修改商品不影响已购订单）
    is_subscription = Column(Boolean, default=False)
    max_deliveries = Column(Integer, nullable=True)  # 每份商品的发货次数
    delivery_type = Column(String(20), nullable=True)  # once, interval, solar_term
    delivery_interval = Column(Integer, nullable=True)  # 固定间隔天数
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SubscriptionProduct(Base):
    """订阅商品表：运营确认发货时为每次发货指定的实际内容"""
    __tablename__ = "subscription_products"

    id = Column(Integer, primary_key=True, index=True)
    product_name = Column(String(100), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

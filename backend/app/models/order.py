"""
订单模型
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Boolean, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class Order(Base):
    """订单表"""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_no = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(Integer, default=0, index=True)  # 0=待支付 1=已支付 2=已赠送 3=已完成 4=已取消
    is_gift = Column(Boolean, default=False)
    gift_type = Column(Integer, nullable=True)  # 1=单人专属 2=多人领取
    # 下单时采集的收货地址快照（自购订单在支付成功后据此生成发货计划）
    address_snapshot = Column(JSON, nullable=True)
    pay_type = Column(Integer, nullable=True)  # 1=微信支付
    paid_at = Column(DateTime, nullable=True)
    # 支付渠道回传信息
    transaction_id = Column(String(64), nullable=True)
    trade_type = Column(String(32), nullable=True)
    payer_openid = Column(String(64), nullable=True)
    provider_success_time = Column(DateTime, nullable=True)
    payment_info = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # 关系
    user = relationship("User", back_populates="orders", foreign_keys=[user_id])
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")


class OrderItem(Base):
    """订单项表：一个商品 × 数量"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    # 领取状态
    gift_status = Column(Integer, default=0)  # 0=待领取 1=已领取
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    received_at = Column(DateTime, nullable=True)
    # 订阅信息快照（支付成功时从商品复制）
    is_subscription = Column(Boolean, default=False)
    max_deliveries = Column(Integer, default=1)  # 每份商品发货次数
    total_deliveries = Column(Integer, default=1)  # 该订单项应发货总次数（每份次数 × 数量）
    delivered_count = Column(Integer, default=0)
    delivery_type = Column(String(20), default="once")
    delivery_interval = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # 关系
    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    delivery_plans = relationship("DeliveryPlan", back_populates="order_item", order_by="DeliveryPlan.id")

"""
发货计划模型
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class DeliveryPlan(Base):
    """发货计划表：订单项的一次具体发货"""
    __tablename__ = "delivery_plans"

    id = Column(Integer, primary_key=True, index=True)
    delivery_no = Column(String(32), unique=True, nullable=True, index=True)  # 运营确认时生成
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # 下单人
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)  # 收货人
    # 收货信息快照，创建后不随地址修改
    receiver_name = Column(String(64), nullable=True)
    receiver_phone = Column(String(20), nullable=True)
    receiver_province = Column(String(32), nullable=True)
    receiver_city = Column(String(32), nullable=True)
    receiver_area = Column(String(32), nullable=True)
    receiver_address = Column(String(255), nullable=True)
    # 发货窗口
    delivery_start_date = Column(DateTime, nullable=False)
    delivery_end_date = Column(DateTime, nullable=False)
    delivery_sequence = Column(Integer, nullable=False, default=1)
    status = Column(Integer, default=0, index=True)  # 0=待确认 1=已确认 2=已发货 3=已完成 4=已取消
    solar_term_id = Column(Integer, ForeignKey("solar_terms.id"), nullable=True)
    subscription_product_id = Column(Integer, ForeignKey("subscription_products.id"), nullable=True)
    # 物流信息
    express_company = Column(String(64), nullable=True)
    express_number = Column(String(64), nullable=True)
    delivery_date = Column(DateTime, nullable=True)
    remark = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # 关系
    order_item = relationship("OrderItem", back_populates="delivery_plans")
    solar_term = relationship("SolarTerm")
    subscription_product = relationship("SubscriptionProduct")


class DeliveryNoSequence(Base):
    """发货编号日序号：每天一行，原子递增"""
    __tablename__ = "delivery_no_sequences"

    day = Column(String(8), primary_key=True)  # YYYYMMDD
    last_value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

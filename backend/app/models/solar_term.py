"""
节气模型
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from app.core.database import Base


class SolarTerm(Base):
    """节气表：发货节奏使用的日历周期"""
    __tablename__ = "solar_terms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(16), nullable=False)  # 立春、雨水 ...
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    year = Column(Integer, nullable=False, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

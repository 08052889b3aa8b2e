"""
Модель сегментов покупателей
"""
from sqlalchemy import Column, String, DateTime, JSON, Boolean, Index, Text
from sqlalchemy.sql import func
import uuid
from segment_engine.database.connection import Base


DEFAULT_SEGMENT_COLOR = "#007bff"


class CustomerSegment(Base):
    __tablename__ = "customer_segments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    # Критерии сегментации: {"status": "active", "ltv_min": 1000, "health_score_min": 70, ...}
    criteria = Column(JSON, nullable=False, default=dict)

    # Метаданные
    color = Column(String(20), nullable=False, default=DEFAULT_SEGMENT_COLOR)  # цвет для UI
    is_active = Column(Boolean, default=True, nullable=False)
    is_system = Column(Boolean, default=False, nullable=False)  # критерии нельзя менять, сегмент нельзя удалить
    created_by = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('ix_customer_segments_active', 'is_active'),
        Index('ix_customer_segments_system', 'is_system'),
    )

    def __repr__(self) -> str:
        return f"<CustomerSegment(id={self.id}, name={self.name})>"

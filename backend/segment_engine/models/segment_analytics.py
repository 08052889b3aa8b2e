from sqlalchemy import Column, String, Date, DateTime, Float, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
import uuid
from segment_engine.database.connection import Base


class SegmentAnalytics(Base):
    __tablename__ = "segment_analytics"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    segment_id = Column(
        String(36),
        ForeignKey("customer_segments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    metric_date = Column(Date, nullable=False, index=True)
    customer_count = Column(Integer, nullable=False, default=0)
    avg_ltv = Column(Float, nullable=False, default=0)
    avg_health_score = Column(Float, nullable=False, default=50)
    avg_churn_risk = Column(Float, nullable=False, default=0.5)
    total_revenue = Column(Float, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Одна строка на сегмент в день (нужно для upsert)
    __table_args__ = (
        UniqueConstraint('segment_id', 'metric_date', name='uq_segment_analytics_segment_date'),
    )

"""
Связь покупателей с сегментами
"""
from sqlalchemy import Column, String, DateTime, Float, ForeignKey, Index
from sqlalchemy.sql import func
import uuid
from segment_engine.database.connection import Base


class SegmentAssignment(Base):
    __tablename__ = "customer_segment_assignments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    segment_id = Column(
        String(36),
        ForeignKey("customer_segments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    customer_id = Column(String(255), nullable=False, index=True)

    # Насколько покупатель соответствует сегменту (0-1]
    score = Column(Float, nullable=False)
    assigned_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_segment_assignments_segment_customer', 'segment_id', 'customer_id', unique=True),
        Index('ix_segment_assignments_segment_score', 'segment_id', 'score'),
    )

"""
Таблицы покупателей, из которых читает источник метрик.
Движок сегментации их не изменяет: данные заливает синхронизация с биллингом.
"""
from sqlalchemy import Column, String, DateTime, Date, Float, Integer, Boolean, Index
from sqlalchemy.sql import func
from segment_engine.database.connection import Base


class Customer(Base):
    __tablename__ = "customers"

    customer_id = Column(String(255), primary_key=True)  # ID покупателя в биллинге
    email = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    deleted = Column(Boolean, default=False, nullable=False)
    delinquent = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=True)  # дата создания аккаунта в биллинге

    __table_args__ = (
        Index('ix_customers_status', 'deleted', 'delinquent'),
    )


class CustomerMetric(Base):
    """Ежедневный снимок метрик покупателя"""
    __tablename__ = "customer_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String(255), nullable=False, index=True)
    metric_date = Column(Date, nullable=False)
    lifetime_value = Column(Float, nullable=True)
    health_score = Column(Float, nullable=True)  # 0-100
    churn_risk_score = Column(Float, nullable=True)  # 0-1
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('ix_customer_metrics_customer_date', 'customer_id', 'metric_date', unique=True),
    )


class CustomerSubscription(Base):
    __tablename__ = "customer_subscriptions"

    id = Column(String(255), primary_key=True)  # ID подписки в биллинге
    customer_id = Column(String(255), nullable=False, index=True)
    status = Column(String(50), nullable=False)  # active, canceled, past_due, ...
    created_at = Column(DateTime(timezone=True), server_default=func.now())
